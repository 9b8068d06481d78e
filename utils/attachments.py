"""Helpers for turning uploads into embeddable data URLs and back."""

import asyncio
import base64
from typing import List, Tuple

from services.chat_service.models import Attachment


def to_data_url(data: bytes, media_type: str) -> str:
    """Encode raw bytes as a base64 data URL."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{media_type};base64,{encoded}"


def is_image_data_url(url: str) -> bool:
    return url[:len("data:image/")].lower() == "data:image/"


def parse_data_url(url: str) -> Tuple[str, str]:
    """Split a base64 data URL into (media_type, base64 payload).

    Raises:
        ValueError: if the URL is not a base64 data URL.
    """
    if not url.startswith("data:") or ";base64," not in url:
        raise ValueError("Expected a base64 data URL")
    header, payload = url.split(",", 1)
    media_type = header[len("data:"):header.index(";base64")]
    return media_type, payload


async def encode_attachments(attachments: List[Attachment]) -> Tuple[List[str], List[str]]:
    """Encode uploads off the event loop; returns index-aligned (urls, names)."""
    urls: List[str] = []
    names: List[str] = []
    for attachment in attachments:
        url = await asyncio.to_thread(to_data_url, attachment.data, attachment.media_type)
        urls.append(url)
        names.append(attachment.name)
    return urls, names
