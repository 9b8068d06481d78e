"""
Shared fixtures and fakes for the chat core tests
"""

import asyncio
from typing import List, Optional, Tuple

import pytest

from infrastructure.resilience.retry_service import RetryService
from services.ai_service.models import RawProviderResult
from services.ai_service.provider_adapters import ProviderRegistry
from services.chat_service.models import Chat
from services.ui_service.notifications import NotificationLevel


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class RecordingSink:
    """Persistence sink that keeps every scheduled job"""

    def __init__(self):
        self.saved: List[dict] = []
        self.deleted: List[str] = []

    def schedule_save(self, chat: Chat) -> None:
        self.saved.append(chat.to_document())

    def schedule_delete(self, chat_id: str) -> None:
        self.deleted.append(chat_id)

    @property
    def saved_ids(self) -> List[str]:
        return [document["_id"] for document in self.saved]


class RecordingNotifier:
    """Notifier that keeps notifications in memory, newest last"""

    def __init__(self):
        self.notifications: List[Tuple[str, str, NotificationLevel]] = []

    def notify(self, title: str, description: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        self.notifications.append((title, description, NotificationLevel(level)))

    @property
    def titles(self) -> List[str]:
        return [title for title, _, _ in self.notifications]


class FakeAdapter:
    """
    Adapter double. With a gate it waits for the gate before answering;
    `honour_token=False` ignores cancellation while waiting.
    """

    def __init__(
        self,
        result: Optional[RawProviderResult] = None,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
        honour_token: bool = True,
    ):
        self.result = result or RawProviderResult.from_text("Hi there")
        self.error = error
        self.gate = gate
        self.honour_token = honour_token
        self.calls = []

    async def invoke(self, messages, model, token):
        self.calls.append((list(messages), model))
        if self.gate is not None:
            if self.honour_token:
                await token.run(self.gate.wait())
            else:
                await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


def registry_for(adapter: FakeAdapter, image_adapter: Optional[FakeAdapter] = None) -> ProviderRegistry:
    """Registry that answers every provider with the same fake"""
    return ProviderRegistry(
        adapters={provider: adapter for provider in ("openai", "claude", "llama", "gemini")},
        image_adapters={"openai": image_adapter or adapter},
    )


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Yield to the loop until predicate() holds"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def fast_retry():
    """Retry service without backoff delays"""
    return RetryService(max_retries=2, base_delay=0.0, max_delay=0.0, failure_threshold=5, recovery_timeout=60)
