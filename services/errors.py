"""
Error taxonomy shared by the chat and AI services.
"""

from enum import Enum


class ChatCoreError(Exception):
    """Base class for every error raised by the chat core"""
    pass


class ValidationError(ChatCoreError):
    """A send request was rejected before any state change"""

    def __init__(self, title: str, detail: str):
        super().__init__(detail)
        self.title = title
        self.detail = detail


class ProviderErrorKind(Enum):
    """Why a provider adapter call failed"""
    MISSING_CREDENTIAL = "missing_credential"
    UNSUPPORTED_PROVIDER = "unsupported_provider"
    CANCELLED = "cancelled"
    TRANSPORT_ERROR = "transport_error"
    PROVIDER_ERROR = "provider_error"


class ProviderError(ChatCoreError):
    """Failure of a provider adapter call, tagged with its kind"""

    def __init__(self, kind: ProviderErrorKind, detail: str):
        super().__init__(detail)
        self.kind = kind
        self.detail = detail

    @property
    def is_cancellation(self) -> bool:
        return self.kind is ProviderErrorKind.CANCELLED

    @property
    def is_transient(self) -> bool:
        return self.kind is ProviderErrorKind.TRANSPORT_ERROR

    @classmethod
    def cancelled(cls, detail: str = "Request was cancelled") -> 'ProviderError':
        return cls(ProviderErrorKind.CANCELLED, detail)

    def __repr__(self) -> str:
        return f"ProviderError({self.kind.value}, {self.detail!r})"


class CircuitBreakerError(ProviderError):
    """Raised without calling the provider while its circuit is open"""

    def __init__(self, detail: str):
        super().__init__(ProviderErrorKind.TRANSPORT_ERROR, detail)


class FetchError(ChatCoreError):
    """A generated image could not be downloaded or converted"""
    pass


class PersistenceError(ChatCoreError):
    """The chat document store rejected an operation"""
    pass
