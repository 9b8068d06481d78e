"""
Image fetcher - downloads a generated image and turns it into a data URL
that can be stored with the chat.
"""

from typing import Optional

import httpx

from services.errors import FetchError
from utils.attachments import to_data_url
from utils.logging_config import get_logger

DEFAULT_IMAGE_TYPE = "image/png"


class ImageFetcher:
    """
    Materializes remote image URLs.
    Generated-image URLs expire, so the bytes are embedded instead of the link.
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 60.0):
        self.logger = get_logger(__name__)
        self._client = http_client
        self.timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def fetch_as_data_url(self, url: str) -> str:
        """
        Download an image and encode it as a base64 data URL

        Args:
            url: Remote image URL (data URLs are returned unchanged)

        Returns:
            A data: URL embedding the image bytes

        Raises:
            FetchError: if the download fails or the body is not an image
        """
        if url.startswith("data:"):
            return url

        try:
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(f"Image download failed with HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"Image download failed: {e}") from e

        media_type = response.headers.get("content-type", DEFAULT_IMAGE_TYPE).split(";")[0].strip()
        if not media_type.startswith("image/"):
            raise FetchError(f"Expected an image but received {media_type}")
        if not response.content:
            raise FetchError("Downloaded image is empty")

        self.logger.debug(f"Fetched generated image ({len(response.content)} bytes, {media_type})")
        return to_data_url(response.content, media_type)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
