"""
Conversation store - the authoritative in-memory model of all chats.

Every mutation is a single synchronous step, so on one event loop no two
mutations of the same chat can interleave. Mutations of non-temporary chats
hand a snapshot to the persistence sink; temporary chats are never persisted.
"""

from dataclasses import replace
from datetime import datetime, timedelta
from typing import List, Optional, Protocol
import uuid

from config.model_catalog import DEFAULT_MODEL_ID
from services.chat_service.models import Chat, ChatSummary, Message, Role, create_message
from utils.logging_config import get_logger, log_conversation_event

DEFAULT_CHAT_TITLE = "New Chat"
TEMPORARY_CHAT_TITLE = "Temporary Chat"
TITLE_WORD_LIMIT = 6


class PersistenceSink(Protocol):
    """What the store needs from the persistence layer"""

    def schedule_save(self, chat: Chat) -> None: ...

    def schedule_delete(self, chat_id: str) -> None: ...


def generate_chat_title(content: str, word_limit: int = TITLE_WORD_LIMIT) -> str:
    """Derive a chat title from the first words of a message"""
    words = content.split(" ")
    title = " ".join(words[:word_limit])
    if len(words) > word_limit:
        title += "..."
    return title


def _next_timestamp(previous: datetime) -> datetime:
    """Current time, forced strictly past `previous`"""
    now = datetime.now()
    if now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


class ConversationStore:
    """
    Owns the chat list, the active selection and the temporary-mode flags.
    Handles chat creation, switching, message appends and temporary sessions.
    """

    def __init__(
        self,
        persistence: Optional[PersistenceSink] = None,
        default_model_id: str = DEFAULT_MODEL_ID,
    ):
        self.logger = get_logger(__name__)
        self.persistence = persistence
        self.default_model_id = default_model_id

        self._chats: List[Chat] = []  # newest first
        self.active_chat_id: Optional[str] = None
        self.temporary_mode: bool = False
        self.temporary_chat_active: bool = False
        self.is_loading: bool = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def chats(self) -> List[Chat]:
        """Chats in display order (newest first); a copy of the list"""
        return list(self._chats)

    def get_chat(self, chat_id: Optional[str]) -> Optional[Chat]:
        if chat_id is None:
            return None
        for chat in self._chats:
            if chat.id == chat_id:
                return chat
        return None

    @property
    def active_chat(self) -> Optional[Chat]:
        return self.get_chat(self.active_chat_id)

    @property
    def temporary_chats(self) -> List[Chat]:
        return [chat for chat in self._chats if chat.temporary]

    @property
    def session_locked(self) -> bool:
        """True while a temporary session pins the active chat"""
        return self.temporary_mode and self.temporary_chat_active

    def summaries(self) -> List[ChatSummary]:
        return [ChatSummary.from_chat(chat) for chat in self._chats]

    # ------------------------------------------------------------------
    # Chat lifecycle
    # ------------------------------------------------------------------

    def add_chat(self, model_id: Optional[str] = None, initial_message: Optional[str] = None) -> Optional[str]:
        """
        Create a new chat and make it active

        Args:
            model_id: Model the chat is bound to (store default when omitted)
            initial_message: Optional first user message, also used for the title

        Returns:
            The new chat id, or None when a temporary session rejects creation
        """
        if self.session_locked:
            self.logger.debug("Ignoring new chat while a temporary chat is active")
            return None

        now = datetime.now()
        chat = Chat(
            id=str(uuid.uuid4()),
            title=DEFAULT_CHAT_TITLE,
            model_id=model_id or self.default_model_id,
            created_at=now,
            updated_at=now,
            temporary=self.temporary_mode,
        )

        if initial_message:
            message = replace(create_message(Role.USER, initial_message), created_at=now)
            chat.messages.append(message)
            chat.title = generate_chat_title(initial_message)

        self._chats.insert(0, chat)
        self.active_chat_id = chat.id

        log_conversation_event(self.logger, "created", chat.id, temporary=chat.temporary)
        self._persist(chat)
        return chat.id

    def delete_chat(self, chat_id: str) -> bool:
        """Remove a chat; re-points the active chat when needed"""
        chat = self.get_chat(chat_id)
        if chat is None:
            self.logger.warning(f"Chat not found for deletion: {chat_id}")
            return False

        self._chats.remove(chat)
        if self.active_chat_id == chat_id:
            self.active_chat_id = self._chats[0].id if self._chats else None

        log_conversation_event(self.logger, "deleted", chat_id, temporary=chat.temporary)
        if not chat.temporary and self.persistence is not None:
            self.persistence.schedule_delete(chat_id)
        return True

    def set_active_chat(self, chat_id: str) -> bool:
        """Select a chat; a no-op during a temporary session or for unknown ids"""
        if self.session_locked:
            self.logger.debug("Ignoring chat switch while a temporary chat is active")
            return False
        if self.get_chat(chat_id) is None:
            self.logger.warning(f"Chat not found: {chat_id}")
            return False

        self.active_chat_id = chat_id
        return True

    def load_chats(self, chats: List[Chat]) -> None:
        """Replace every chat with a bulk load from the persistence layer"""
        self._chats = list(chats)
        if self._chats:
            self.active_chat_id = self._chats[0].id
        elif self.get_chat(self.active_chat_id) is None:
            self.active_chat_id = None
        self.logger.info(f"Loaded {len(self._chats)} chats")

    def set_loading(self, is_loading: bool) -> None:
        self.is_loading = is_loading

    # ------------------------------------------------------------------
    # Chat mutations
    # ------------------------------------------------------------------

    def append_message(self, chat_id: str, message: Message) -> bool:
        """
        Append a message to a chat

        Args:
            chat_id: Target chat
            message: Message to append

        Returns:
            True if the chat exists and the message was appended
        """
        chat = self.get_chat(chat_id)
        if chat is None:
            self.logger.warning(f"Chat not found: {chat_id}")
            return False

        # Insertion order must stay timestamp order
        if chat.messages and message.created_at < chat.messages[-1].created_at:
            message = replace(message, created_at=chat.messages[-1].created_at)

        chat.messages.append(message)
        chat.updated_at = _next_timestamp(chat.updated_at)

        if (
            message.role is Role.USER
            and len(chat.messages) == 1
            and chat.title == DEFAULT_CHAT_TITLE
        ):
            chat.title = generate_chat_title(message.content)

        self.logger.debug(f"Added {message.role.value} message to chat {chat_id}")
        self._persist(chat)
        return True

    def rename_chat(self, chat_id: str, title: str) -> bool:
        chat = self.get_chat(chat_id)
        if chat is None:
            return False

        chat.title = title
        chat.updated_at = _next_timestamp(chat.updated_at)
        log_conversation_event(self.logger, "renamed", chat_id, title=title)
        self._persist(chat)
        return True

    def update_chat_model(self, chat_id: str, model_id: str) -> bool:
        chat = self.get_chat(chat_id)
        if chat is None:
            return False

        chat.model_id = model_id
        chat.updated_at = _next_timestamp(chat.updated_at)
        log_conversation_event(self.logger, "model_changed", chat_id, model_id=model_id)
        self._persist(chat)
        return True

    def clear_messages(self, chat_id: str) -> bool:
        chat = self.get_chat(chat_id)
        if chat is None:
            return False

        chat.messages = []
        chat.updated_at = _next_timestamp(chat.updated_at)
        log_conversation_event(self.logger, "cleared", chat_id)
        self._persist(chat)
        return True

    # ------------------------------------------------------------------
    # Temporary mode
    # ------------------------------------------------------------------

    def set_temporary_mode(self, enabled: bool) -> None:
        """
        Toggle temporary mode

        Turning it on starts a temporary session: the existing temporary chat
        (or a fresh one) becomes active. Turning it off ends the session and
        runs the cleanup pass that drops every temporary chat.
        """
        self.temporary_mode = enabled

        if enabled and not self.temporary_chat_active:
            self.temporary_chat_active = True

            existing = self.temporary_chats
            if existing:
                self.active_chat_id = existing[0].id
            else:
                now = datetime.now()
                chat = Chat(
                    id=str(uuid.uuid4()),
                    title=TEMPORARY_CHAT_TITLE,
                    model_id=self.default_model_id,
                    created_at=now,
                    updated_at=now,
                    temporary=True,
                )
                self._chats.insert(0, chat)
                self.active_chat_id = chat.id
                log_conversation_event(self.logger, "created", chat.id, temporary=True)

        if not enabled:
            self.temporary_chat_active = False
            self.clear_temporary_chats()

    def clear_temporary_chats(self) -> int:
        """Drop all temporary chats; returns how many were removed"""
        before = len(self._chats)
        self._chats = [chat for chat in self._chats if not chat.temporary]
        self.temporary_chat_active = False

        if self.active_chat_id is not None and self.get_chat(self.active_chat_id) is None:
            self.active_chat_id = self._chats[0].id if self._chats else None

        removed = before - len(self._chats)
        if removed:
            self.logger.info(f"Cleared {removed} temporary chat(s)")
        return removed

    # ------------------------------------------------------------------

    def _persist(self, chat: Chat) -> None:
        if chat.temporary or self.persistence is None:
            return
        self.persistence.schedule_save(chat)
