"""
Unified Configuration System for the chat core

This module provides a centralized configuration system that consolidates provider credentials,
endpoints, persistence and logging settings, supports environment-based overrides, and provides
type-safe configuration access.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List
import logging
import streamlit as st
import os
from pathlib import Path

from config.model_catalog import DEFAULT_MODEL_ID, get_model_by_id

logger = logging.getLogger(__name__)

CREDENTIAL_NAMES = {
    "openai": "OPENAI_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
    "llama": "LLAMA_API_KEY",
    "gemini": "GOOGLE_API_KEY",
}


def _read_secret(name: str, default: str = "") -> str:
    """Read a secret from Streamlit secrets, falling back to the environment"""
    # In test environment, prefer environment variables
    if os.getenv("PYTEST_CURRENT_TEST") is not None:
        return os.getenv(name, default)

    try:
        value = st.secrets.get(name)
    except Exception:
        # No secrets.toml or not running under Streamlit
        value = None

    if value:
        return str(value)
    return os.getenv(name, default)


@dataclass
class APIConfig:
    """Provider credentials"""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    llama_api_key: str = ""
    google_api_key: str = ""

    @classmethod
    def from_secrets(cls) -> 'APIConfig':
        """Load API config from Streamlit secrets or environment variables"""
        return cls(
            openai_api_key=_read_secret(CREDENTIAL_NAMES["openai"]),
            anthropic_api_key=_read_secret(CREDENTIAL_NAMES["claude"]),
            llama_api_key=_read_secret(CREDENTIAL_NAMES["llama"]),
            google_api_key=_read_secret(CREDENTIAL_NAMES["gemini"]),
        )

    def key_for(self, provider: str) -> str:
        """Return the credential configured for a provider tag ("" when unknown)"""
        return {
            "openai": self.openai_api_key,
            "claude": self.anthropic_api_key,
            "llama": self.llama_api_key,
            "gemini": self.google_api_key,
        }.get(provider, "")

    def missing_credentials(self) -> List[str]:
        """Names of the credentials that are not configured"""
        return [name for provider, name in CREDENTIAL_NAMES.items() if not self.key_for(provider)]


@dataclass
class ProviderConfig:
    """Provider endpoints and request parameters"""
    openai_base_url: Optional[str] = None
    anthropic_url: str = "https://api.anthropic.com/v1/messages"
    anthropic_version: str = "2023-06-01"
    claude_max_tokens: int = 1024
    system_prompt: str = "You are a helpful AI assistant."
    llama_base_url: str = "https://api.llama-api.com"
    gemini_url_template: str = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
    image_size: str = "1024x1024"
    request_timeout: float = 120.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            "anthropic_url": self.anthropic_url,
            "anthropic_version": self.anthropic_version,
            "llama_base_url": self.llama_base_url,
            "gemini_url_template": self.gemini_url_template,
            "image_size": self.image_size,
            "request_timeout": self.request_timeout,
        }


@dataclass
class PersistenceConfig:
    """Chat document store configuration"""
    db_path: str = "data/chats.db"
    collection_name: str = "chats"
    enabled: bool = True


@dataclass
class RetryConfig:
    """Retry and circuit breaker settings for provider calls"""
    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 20.0
    failure_threshold: int = 5
    recovery_timeout: int = 60


@dataclass
class ChatConfig:
    """Conversation defaults"""
    default_model_id: str = DEFAULT_MODEL_ID


@dataclass
class LoggingConfig:
    """Logging and monitoring configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    enable_file_logging: bool = True
    log_file: str = "logs/app.log"


@dataclass
class AppConfig:
    """Main application configuration"""
    api: APIConfig = field(default_factory=APIConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Environment settings
    environment: str = field(default_factory=lambda: os.getenv("APP_ENV", "development"))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    @classmethod
    def load(cls) -> 'AppConfig':
        """Load configuration with environment overrides"""
        config = cls()

        # Load API configuration from secrets/environment
        config.api = APIConfig.from_secrets()

        db_path = os.getenv("CHAT_DB_PATH")
        if db_path:
            config.persistence.db_path = db_path

        # Apply environment-specific overrides
        if config.environment == "production":
            config.debug = False
            config.logging.level = "WARNING"
        elif config.environment == "development":
            config.debug = True
            config.logging.level = "DEBUG"

        return config

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors"""
        errors = []

        if get_model_by_id(self.chat.default_model_id) is None:
            errors.append(f"Default model '{self.chat.default_model_id}' is not in the model catalog")

        if self.persistence.enabled and not self.persistence.db_path:
            errors.append("Persistence is enabled but no database path is configured")

        if self.logging.enable_file_logging:
            log_dir = Path(self.logging.log_file).parent
            if not log_dir.exists():
                log_dir.mkdir(parents=True, exist_ok=True)

        if self.retry.max_retries < 0:
            errors.append("retry.max_retries must not be negative")

        return errors


# Global configuration instance for the UI shell
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        # Deferred: the environment variants subclass AppConfig
        from config.environments import get_environment_config
        _config = get_environment_config()

        # Validate configuration
        errors = _config.validate()
        if errors:
            import warnings
            for error in errors:
                warnings.warn(f"Configuration error: {error}")

        # Missing keys only disable the matching provider
        for name in _config.api.missing_credentials():
            logger.warning(f"Credential {name} is not configured")

    return _config


def reload_config() -> AppConfig:
    """Reload configuration (useful for testing)"""
    global _config
    _config = None
    return get_config()
