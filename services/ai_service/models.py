"""
AI service data models for provider results and normalized outcomes.
"""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class RawProviderResult:
    """What an adapter got back: reply text or a generated image URL"""
    text: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def from_text(cls, text: str) -> 'RawProviderResult':
        return cls(text=text)

    @classmethod
    def from_image(cls, image_url: str) -> 'RawProviderResult':
        return cls(image_url=image_url)


@dataclass(frozen=True)
class TextOutcome:
    """Plain text reply"""
    text: str


@dataclass(frozen=True)
class GeneratedImageOutcome:
    """Remote URL of a generated image, not yet materialized"""
    url: str


NormalizedOutcome = Union[TextOutcome, GeneratedImageOutcome]
