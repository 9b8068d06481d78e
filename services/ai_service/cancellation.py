"""
Cooperative cancellation for in-flight provider requests.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from services.errors import ProviderError

T = TypeVar("T")


class CancellationToken:
    """
    One-shot cancellation handle armed per send request.

    Network awaits go through `run()`, which races the awaitable against the
    token: when the token fires first the awaitable is cancelled and
    ProviderError(CANCELLED) is raised instead.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Request was cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ProviderError.cancelled(self.reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the token fires first"""
        task = asyncio.ensure_future(awaitable)
        if self.cancelled:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise ProviderError.cancelled(self.reason)

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task.done():
            waiter.cancel()
            return task.result()

        task.cancel()
        # Let the aborted call unwind before reporting
        await asyncio.gather(task, return_exceptions=True)
        raise ProviderError.cancelled(self.reason)
