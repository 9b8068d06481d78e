"""
Dispatch orchestrator - runs a send cycle for a chat.

Validates the request, appends the user's message optimistically, calls the
provider adapter under a fresh cancellation token, then appends the
normalized reply or a synthetic error message. Also forwards the plain chat
actions (new, select, rename, model change, clear, delete, temporary mode)
to the conversation store.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from config.app_config import AppConfig, get_config
from config.model_catalog import AIModel, get_model_by_id
from infrastructure.external.image_fetcher import ImageFetcher
from infrastructure.resilience.retry_service import RetryService
from services.ai_service.cancellation import CancellationToken
from services.ai_service.llm_client import LLMClient, ProviderCredentials
from services.ai_service.provider_adapters import ProviderRegistry
from services.ai_service.response_normalizer import ResponseNormalizer
from services.chat_service.chat_repository import ChatRepository
from services.chat_service.conversation_store import ConversationStore
from services.chat_service.models import Attachment, Role, create_message
from services.chat_service.persistence_gateway import PersistenceGateway
from services.errors import ProviderError, ValidationError
from services.ui_service.notifications import LoggingNotifier, NotificationLevel, Notifier
from utils.attachments import encode_attachments
from utils.logging_config import ErrorTracker, get_logger, initialize_logging, log_conversation_event


class DispatchState(str, Enum):
    """Transient per-chat send state"""
    IDLE = "idle"
    SENDING = "sending"
    CANCELLING = "cancelling"
    RESOLVED = "resolved"
    FAILED = "failed"


class SendOutcome(str, Enum):
    """How a send request ended"""
    REJECTED = "rejected"
    RESOLVED = "resolved"
    FAILED = "failed"
    CANCELLED = "cancelled"


StateListener = Callable[[str, DispatchState], None]


class DispatchOrchestrator:
    """
    Coordinates send cycles and chat actions.

    State per chat: IDLE -> SENDING -> (CANCELLING | RESOLVED | FAILED) -> IDLE.
    Only the request holding the chat's current token may change that chat's
    state or append a reply.
    """

    def __init__(
        self,
        store: ConversationStore,
        registry: ProviderRegistry,
        normalizer: ResponseNormalizer,
        notifier: Optional[Notifier] = None,
        gateway: Optional[PersistenceGateway] = None,
        model_lookup: Callable[[str], Optional[AIModel]] = get_model_by_id,
        state_listener: Optional[StateListener] = None,
        closers: Optional[Sequence[Callable[[], Awaitable[None]]]] = None,
    ):
        self.logger = get_logger(__name__)
        self.error_tracker = ErrorTracker(self.logger)
        self.store = store
        self.registry = registry
        self.normalizer = normalizer
        self.notifier = notifier or LoggingNotifier()
        self.gateway = gateway
        self.model_lookup = model_lookup
        self.state_listener = state_listener
        self._closers = list(closers or [])

        self._states: Dict[str, DispatchState] = {}
        self._tokens: Dict[str, CancellationToken] = {}

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    def state_of(self, chat_id: str) -> DispatchState:
        return self._states.get(chat_id, DispatchState.IDLE)

    def is_busy(self, chat_id: str) -> bool:
        """True while a send is in flight; the UI disables its send button"""
        return self.state_of(chat_id) is DispatchState.SENDING

    def _set_state(self, chat_id: str, state: DispatchState) -> None:
        if state is DispatchState.IDLE:
            self._states.pop(chat_id, None)
        else:
            self._states[chat_id] = state
        if self.state_listener is not None:
            self.state_listener(chat_id, state)

    # ------------------------------------------------------------------
    # Send cycle
    # ------------------------------------------------------------------

    async def send_message(
        self,
        content: str,
        attachments: Optional[List[Attachment]] = None,
        chat_id: Optional[str] = None,
    ) -> SendOutcome:
        """
        Send a user message and wait for the reply

        Args:
            content: Message text (may be empty when attachments are present)
            attachments: Validated uploads
            chat_id: Target chat (the active chat when omitted)

        Returns:
            How the request ended
        """
        attachments = list(attachments or [])
        chat_id = chat_id or self.store.active_chat_id

        try:
            model = self._validate(chat_id, content, attachments)
        except ValidationError as e:
            self.logger.info(f"Send rejected: {e.title} - {e.detail}")
            self.notifier.notify(e.title, e.detail, NotificationLevel.WARNING)
            return SendOutcome.REJECTED

        token = CancellationToken()
        self._tokens[chat_id] = token
        self._set_state(chat_id, DispatchState.SENDING)

        try:
            file_urls, file_names = await encode_attachments(attachments)

            # The user's message is committed even if generation was stopped meanwhile
            user_message = create_message(Role.USER, content, file_urls, file_names)
            if not self.store.append_message(chat_id, user_message):
                # Chat was removed while attachments were encoding
                self._finish_cancelled(chat_id, token)
                return SendOutcome.CANCELLED
            log_conversation_event(
                self.logger, "message_sent", chat_id,
                model_id=model.id, attachments=len(file_urls),
            )
            if token.cancelled:
                return SendOutcome.CANCELLED

            history = list(self.store.get_chat(chat_id).messages)
            adapter = self.registry.get_adapter(model)
            raw = await adapter.invoke(history, model, token)
            reply = await self.normalizer.resolve(raw, token)

        except ProviderError as e:
            if e.is_cancellation or token.cancelled:
                self._finish_cancelled(chat_id, token)
                return SendOutcome.CANCELLED
            self._fail(chat_id, token, e.detail, e)
            return SendOutcome.FAILED

        except asyncio.CancelledError:
            self._finish_cancelled(chat_id, token)
            raise

        except Exception as e:
            # Unexpected failures are reported in the conversation like any other
            if token.cancelled:
                self._finish_cancelled(chat_id, token)
                return SendOutcome.CANCELLED
            self._fail(chat_id, token, str(e) or "Something went wrong", e)
            return SendOutcome.FAILED

        finally:
            if token.cancelled and self._tokens.get(chat_id) is token:
                self._finish_cancelled(chat_id, token)

        # Cancellation may have landed while the reply was being resolved
        if token.cancelled or self._tokens.get(chat_id) is not token:
            return SendOutcome.CANCELLED

        self.store.append_message(chat_id, reply)
        log_conversation_event(
            self.logger, "reply_received", chat_id, content_type=reply.content_type.value
        )
        self._release(chat_id, token, DispatchState.RESOLVED)
        return SendOutcome.RESOLVED

    def _validate(self, chat_id: Optional[str], content: str, attachments: List[Attachment]) -> AIModel:
        chat = self.store.get_chat(chat_id)
        if chat is None:
            raise ValidationError("No chat selected", "Create or select a chat before sending a message")

        if self.is_busy(chat_id):
            raise ValidationError("Request in progress", "Wait for the current reply or stop it first")

        if not content.strip() and not attachments:
            raise ValidationError("Empty message", "Type a message or attach a file")

        model = self.model_lookup(chat.model_id)
        if model is None:
            raise ValidationError("Unknown model", f"Model '{chat.model_id}' is not available")

        has_images = any(attachment.is_image for attachment in attachments)
        has_documents = any(not attachment.is_image for attachment in attachments)
        unsupported = []
        if has_images and not model.supports_images:
            unsupported.append("images")
        if has_documents and not model.supports_files:
            unsupported.append("documents")
        if unsupported:
            raise ValidationError(
                "Unsupported files",
                f"The selected model doesn't support {' or '.join(unsupported)}",
            )

        return model

    def _fail(self, chat_id: str, token: CancellationToken, detail: str, error: Exception) -> None:
        self.error_tracker.track_error(error, "dispatch.send", chat_id=chat_id)
        if self._tokens.get(chat_id) is not token:
            return

        self.store.append_message(chat_id, create_message(Role.ASSISTANT, f"Error: {detail}"))
        self.notifier.notify("Error", detail, NotificationLevel.ERROR)
        self._release(chat_id, token, DispatchState.FAILED)

    def _finish_cancelled(self, chat_id: str, token: CancellationToken) -> None:
        if self._tokens.get(chat_id) is not token:
            return
        log_conversation_event(self.logger, "generation_stopped", chat_id)
        self._release(chat_id, token, DispatchState.CANCELLING)

    def _release(self, chat_id: str, token: CancellationToken, final_state: DispatchState) -> None:
        if self._tokens.get(chat_id) is token:
            del self._tokens[chat_id]
        self._set_state(chat_id, final_state)
        self._set_state(chat_id, DispatchState.IDLE)

    def stop(self, chat_id: Optional[str] = None) -> bool:
        """
        Stop generation for a chat

        Cancels the armed token and returns the chat to IDLE at once; the
        in-flight request appends nothing.
        """
        chat_id = chat_id or self.store.active_chat_id
        token = self._tokens.get(chat_id)
        if token is None:
            return False

        token.cancel("Generation stopped")
        self._finish_cancelled(chat_id, token)
        return True

    # ------------------------------------------------------------------
    # Chat actions
    # ------------------------------------------------------------------

    def new_chat(self, model_id: Optional[str] = None) -> Optional[str]:
        return self.store.add_chat(model_id=model_id)

    def select_chat(self, chat_id: str) -> bool:
        return self.store.set_active_chat(chat_id)

    def rename_chat(self, chat_id: str, title: str) -> bool:
        title = title.strip()
        if not title:
            return False
        return self.store.rename_chat(chat_id, title)

    def change_model(self, chat_id: str, model_id: str) -> bool:
        if self.model_lookup(model_id) is None:
            self.notifier.notify("Unknown model", f"Model '{model_id}' is not available", NotificationLevel.WARNING)
            return False
        return self.store.update_chat_model(chat_id, model_id)

    def clear_chat(self, chat_id: str) -> bool:
        return self.store.clear_messages(chat_id)

    def delete_chat(self, chat_id: str) -> bool:
        """Delete a chat, stopping its in-flight request first"""
        self.stop(chat_id)
        return self.store.delete_chat(chat_id)

    def set_temporary_mode(self, enabled: bool) -> None:
        if not enabled:
            for chat in self.store.temporary_chats:
                self.stop(chat.id)
        self.store.set_temporary_mode(enabled)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """
        Load persisted chats into the store

        Returns:
            True if the chat store was reachable
        """
        if self.gateway is None:
            self.store.clear_temporary_chats()
            return False

        self.store.set_loading(True)
        try:
            connected = await self.gateway.initialize()
            if connected:
                self.store.load_chats(await self.gateway.load_all())
        finally:
            self.store.set_loading(False)

        # Temporary chats never survive a restart
        self.store.clear_temporary_chats()
        return connected

    async def shutdown(self) -> None:
        """Stop in-flight requests, flush pending saves and release clients"""
        for chat_id in list(self._tokens):
            self.stop(chat_id)
        if self.gateway is not None:
            await self.gateway.close()
        for close in self._closers:
            await close()


def build_orchestrator(
    config: AppConfig,
    notifier: Optional[Notifier] = None,
    llm_client: Optional[LLMClient] = None,
) -> DispatchOrchestrator:
    """
    Wire the default collaborators from an application config

    Args:
        config: Resolved configuration (credentials, endpoints, storage)
        notifier: Notification sink (log-only when omitted)
        llm_client: Client factory override

    Returns:
        An orchestrator over an empty conversation store
    """
    llm_client = llm_client or LLMClient(config.providers)
    credentials = ProviderCredentials.from_api_config(config.api)
    retry_service = RetryService.from_config(config.retry)

    registry = ProviderRegistry.default(credentials, llm_client, retry_service)
    normalizer = ResponseNormalizer(ImageFetcher(llm_client.http_client))

    gateway = None
    if config.persistence.enabled:
        gateway = PersistenceGateway(
            ChatRepository(config.persistence.db_path, config.persistence.collection_name)
        )

    store = ConversationStore(persistence=gateway, default_model_id=config.chat.default_model_id)
    return DispatchOrchestrator(
        store,
        registry,
        normalizer,
        notifier=notifier,
        gateway=gateway,
        closers=[llm_client.aclose],
    )


def create_orchestrator(
    notifier: Optional[Notifier] = None,
    config: Optional[AppConfig] = None,
) -> DispatchOrchestrator:
    """
    Entry point for the UI shell: resolve configuration, set up logging once
    and wire an orchestrator

    Args:
        notifier: Notification sink, e.g. StreamlitNotifier in the app
        config: Configuration override (environment-selected config when omitted)
    """
    config = config or get_config()
    initialize_logging(config)
    logger = get_logger(__name__)
    logger.info(f"Chat core starting ({config.environment})")
    return build_orchestrator(config, notifier=notifier)
