"""
Response normalizer - turns an adapter's raw result into an assistant message.
"""

from typing import Optional

from infrastructure.external.image_fetcher import ImageFetcher
from services.ai_service.cancellation import CancellationToken
from services.ai_service.models import (
    GeneratedImageOutcome,
    NormalizedOutcome,
    RawProviderResult,
    TextOutcome,
)
from services.chat_service.models import Message, Role, create_image_message, create_message
from services.errors import FetchError, ProviderError, ProviderErrorKind
from utils.logging_config import get_logger

IMAGE_SUCCESS_TEXT = "Image generated successfully"


def normalize(raw: RawProviderResult) -> NormalizedOutcome:
    """
    Resolve a raw result into exactly one outcome

    An image reference wins over text; a result carrying neither is a
    provider error.
    """
    if raw.image_url:
        return GeneratedImageOutcome(url=raw.image_url)
    if raw.text is not None:
        return TextOutcome(text=raw.text)
    raise ProviderError(ProviderErrorKind.PROVIDER_ERROR, "Provider returned neither text nor an image")


class ResponseNormalizer:
    """Builds the assistant message for an outcome, materializing generated images"""

    def __init__(self, image_fetcher: Optional[ImageFetcher] = None):
        self.logger = get_logger(__name__)
        self.image_fetcher = image_fetcher or ImageFetcher()

    async def to_message(self, outcome: NormalizedOutcome, token: CancellationToken) -> Message:
        """
        Assistant message for an outcome

        A failed image download yields an assistant error message rather than
        raising. Cancellation during the download raises ProviderError(CANCELLED).
        """
        if isinstance(outcome, TextOutcome):
            return create_message(Role.ASSISTANT, outcome.text)

        if isinstance(outcome, GeneratedImageOutcome):
            try:
                data_url = await token.run(self.image_fetcher.fetch_as_data_url(outcome.url))
            except FetchError as e:
                self.logger.error(f"Error processing image: {e}")
                return create_message(Role.ASSISTANT, f"Error processing image: {e}")
            return create_image_message(IMAGE_SUCCESS_TEXT, data_url)

        raise TypeError(f"Unknown outcome type: {type(outcome).__name__}")

    async def resolve(self, raw: RawProviderResult, token: CancellationToken) -> Message:
        """normalize() followed by to_message()"""
        return await self.to_message(normalize(raw), token)
