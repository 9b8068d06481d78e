"""
LLM client - builds and caches the network clients used by the provider adapters.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx
from langchain_openai import ChatOpenAI
from openai import AsyncOpenAI

from config.app_config import APIConfig, CREDENTIAL_NAMES, ProviderConfig
from utils.logging_config import get_logger


@dataclass(frozen=True)
class ProviderCredentials:
    """API keys handed to the adapters by the caller"""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    llama_api_key: str = ""
    google_api_key: str = ""

    @classmethod
    def from_api_config(cls, api: APIConfig) -> 'ProviderCredentials':
        return cls(
            openai_api_key=api.openai_api_key,
            anthropic_api_key=api.anthropic_api_key,
            llama_api_key=api.llama_api_key,
            google_api_key=api.google_api_key,
        )

    def key_for(self, provider: str) -> str:
        return {
            "openai": self.openai_api_key,
            "claude": self.anthropic_api_key,
            "llama": self.llama_api_key,
            "gemini": self.google_api_key,
        }.get(provider, "")

    @staticmethod
    def credential_name(provider: str) -> str:
        return CREDENTIAL_NAMES.get(provider, f"{provider.upper()}_API_KEY")


class LLMClient:
    """
    Client factory for provider calls.
    Chat models are cached per (model, endpoint, key); the HTTP client is shared.
    """

    def __init__(self, provider_config: Optional[ProviderConfig] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.logger = get_logger(__name__)
        self.provider_config = provider_config or ProviderConfig()
        self._http_client = http_client
        self._chat_models: Dict[Tuple[str, Optional[str], str, int, bool], ChatOpenAI] = {}
        self._image_clients: Dict[str, AsyncOpenAI] = {}

    def get_chat_model(
        self,
        model: str,
        api_key: str,
        max_tokens: int,
        base_url: Optional[str] = None,
        compat_max_tokens: bool = False,
    ) -> ChatOpenAI:
        """
        Get configured ChatOpenAI instance

        Args:
            model: Provider model name
            api_key: Credential for the endpoint
            max_tokens: Token ceiling for the reply
            base_url: OpenAI-compatible endpoint (OpenAI itself when None)
            compat_max_tokens: Send the ceiling as the classic `max_tokens` body
                field; third-party endpoints do not know `max_completion_tokens`

        Returns:
            Configured ChatOpenAI instance
        """
        cache_key = (model, base_url, api_key, max_tokens, compat_max_tokens)
        if cache_key not in self._chat_models:
            if compat_max_tokens:
                token_limit: Dict[str, Any] = {"extra_body": {"max_tokens": max_tokens}}
            else:
                token_limit = {"max_tokens": max_tokens}
            self._chat_models[cache_key] = ChatOpenAI(
                model=model,
                api_key=api_key,
                base_url=base_url,
                timeout=self.provider_config.request_timeout,
                # Retries are handled by the retry service
                max_retries=0,
                http_async_client=self.http_client,
                **token_limit,
            )
            self.logger.info(f"LLM initialized: {model}" + (f" via {base_url}" if base_url else ""))
        return self._chat_models[cache_key]

    def get_image_client(self, api_key: str) -> AsyncOpenAI:
        """Get the OpenAI client used for image generation"""
        if api_key not in self._image_clients:
            self._image_clients[api_key] = AsyncOpenAI(
                api_key=api_key,
                base_url=self.provider_config.openai_base_url,
                timeout=self.provider_config.request_timeout,
                max_retries=0,
            )
        return self._image_clients[api_key]

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Shared HTTP client for the REST providers and image downloads"""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.provider_config.request_timeout, follow_redirects=True)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        for client in self._image_clients.values():
            await client.close()
        self._image_clients.clear()
        self._chat_models.clear()
