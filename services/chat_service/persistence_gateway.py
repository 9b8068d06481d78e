"""
Persistence gateway - best-effort durability sink for chats.

The in-memory conversation store is the source of truth for a running
session. The gateway writes snapshots to the chat repository in the
background; failures are logged and never reach the caller.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from services.chat_service.chat_repository import ChatRepository
from services.chat_service.models import Chat
from services.errors import PersistenceError
from utils.logging_config import ErrorTracker, get_logger

_SAVE = "save"
_DELETE = "delete"


class PersistenceGateway:
    """
    Background save/delete of chat snapshots.

    Jobs go through one FIFO queue consumed by a single worker task, so two
    snapshots of the same chat are always written in the order they were
    scheduled. Snapshots are taken when the job is scheduled.
    """

    def __init__(self, repository: ChatRepository, error_tracker: Optional[ErrorTracker] = None):
        self.logger = get_logger(__name__)
        self.repository = repository
        self.error_tracker = error_tracker or ErrorTracker(self.logger)
        self._queue: "asyncio.Queue[Tuple[str, Any]]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Direct operations (awaitable, never raise)
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Establish the store connection once; False when unavailable"""
        try:
            await self.repository.connect()
            return True
        except PersistenceError as e:
            self.error_tracker.track_error(e, "persistence.initialize")
            return False

    async def save(self, chat: Chat) -> bool:
        """Upsert a chat snapshot"""
        return await self._save_document(chat.to_document())

    async def delete(self, chat_id: str) -> bool:
        try:
            return await self.repository.delete(chat_id)
        except PersistenceError as e:
            self.error_tracker.track_error(e, "persistence.delete", chat_id=chat_id)
            return False

    async def load_all(self) -> List[Chat]:
        """Every stored chat, newest first; empty when the store is unavailable"""
        try:
            return await self.repository.find_all()
        except PersistenceError as e:
            self.error_tracker.track_error(e, "persistence.load_all")
            return []

    # ------------------------------------------------------------------
    # Fire-and-forget scheduling
    # ------------------------------------------------------------------

    def schedule_save(self, chat: Chat) -> None:
        """Queue a save of the chat as it is right now"""
        self._queue.put_nowait((_SAVE, chat.to_document()))
        self._ensure_worker()

    def schedule_delete(self, chat_id: str) -> None:
        self._queue.put_nowait((_DELETE, chat_id))
        self._ensure_worker()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def drain(self) -> None:
        """Wait until every scheduled job has been attempted"""
        if self._queue.empty():
            return
        self._ensure_worker()
        await self._queue.join()

    async def close(self) -> None:
        """Flush pending jobs, stop the worker and close the store"""
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self.repository.close()

    # ------------------------------------------------------------------

    def _ensure_worker(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Jobs stay queued until a worker starts inside a running loop
            self.logger.debug("No running event loop; persistence job left queued")
            return
        self._worker = loop.create_task(self._run(), name="chat-persistence-worker")

    async def _run(self) -> None:
        while True:
            operation, payload = await self._queue.get()
            try:
                if operation == _SAVE:
                    await self._save_document(payload)
                else:
                    await self.delete(payload)
            except Exception as e:
                # The worker must outlive any single failed job
                self.error_tracker.track_error(e, f"persistence.{operation}")
            finally:
                self._queue.task_done()

    async def _save_document(self, document: Dict[str, Any]) -> bool:
        try:
            await self.repository.upsert(document)
            self.logger.debug(f"Saved chat {document['_id']}")
            return True
        except PersistenceError as e:
            self.error_tracker.track_error(e, "persistence.save", chat_id=document["_id"])
            return False
