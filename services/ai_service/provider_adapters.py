"""
Provider adapters - translate a conversation into each provider's request
shape and its reply back into a RawProviderResult.

OpenAI and Llama speak the OpenAI chat protocol and go through ChatOpenAI;
Claude and Gemini are called over their REST APIs with httpx. Every network
await runs under the request's CancellationToken and behind the retry
service's per-provider circuit breaker.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import openai
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from config.app_config import ProviderConfig
from config.model_catalog import AIModel, PROVIDER_LABELS
from infrastructure.resilience.retry_service import RetryService
from services.ai_service.cancellation import CancellationToken
from services.ai_service.llm_client import LLMClient, ProviderCredentials
from services.ai_service.models import RawProviderResult
from services.chat_service.models import Message, Role
from services.errors import ProviderError, ProviderErrorKind
from utils.attachments import is_image_data_url, parse_data_url
from utils.logging_config import get_logger, log_execution_time, log_model_usage


def translate_openai_error(error: openai.APIError, label: str) -> ProviderError:
    """Map an openai SDK exception onto the provider error taxonomy"""
    if isinstance(error, openai.APITimeoutError):
        return ProviderError(ProviderErrorKind.TRANSPORT_ERROR, f"{label} request timed out")
    if isinstance(error, openai.APIConnectionError):
        return ProviderError(ProviderErrorKind.TRANSPORT_ERROR, f"Could not reach {label}: {error}")
    if isinstance(error, (openai.RateLimitError, openai.InternalServerError)):
        return ProviderError(ProviderErrorKind.TRANSPORT_ERROR, f"{label} is unavailable: {error.message}")
    return ProviderError(ProviderErrorKind.PROVIDER_ERROR, f"{label} API error: {error.message}")


def _http_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return response.text or response.reason_phrase


def _image_urls(message: Message) -> List[str]:
    """Image attachments only; documents are never sent as image blocks"""
    return [url for url in message.file_urls or () if is_image_data_url(url)]


class ProviderAdapter(ABC):
    """
    Base class for one provider's adapter.

    Subclasses implement `_call`, which performs a single attempt and raises
    ProviderError for every failure. `invoke` adds the credential check,
    retry with backoff, circuit breaking and cancellation.
    """

    provider: str = ""

    def __init__(
        self,
        credentials: ProviderCredentials,
        client: LLMClient,
        retry_service: RetryService,
        provider_config: Optional[ProviderConfig] = None,
    ):
        self.logger = get_logger(__name__)
        self.credentials = credentials
        self.client = client
        self.retry_service = retry_service
        self.provider_config = provider_config or client.provider_config

    @property
    def label(self) -> str:
        return PROVIDER_LABELS.get(self.provider, self.provider)

    def _require_credential(self) -> str:
        api_key = self.credentials.key_for(self.provider)
        if not api_key:
            name = self.credentials.credential_name(self.provider)
            raise ProviderError(
                ProviderErrorKind.MISSING_CREDENTIAL,
                f"{self.label} API key is missing. Please set the {name} environment variable.",
            )
        return api_key

    async def invoke(
        self,
        messages: Sequence[Message],
        model: AIModel,
        token: CancellationToken,
    ) -> RawProviderResult:
        """
        Send the full conversation to the provider

        Args:
            messages: Ordered chat history, including the new user message
            model: Catalog model the chat is bound to
            token: Cancellation handle armed for this request

        Returns:
            The provider's reply text or generated image URL

        Raises:
            ProviderError: tagged with the failure kind
        """
        api_key = self._require_credential()
        token.raise_if_cancelled()

        log_model_usage(self.logger, model.api_param, self.provider, len(messages))

        def on_retry(attempt: int, error: Exception):
            self.logger.info(f"Retrying {self.label} request (attempt {attempt}): {error}")

        with log_execution_time(self.logger, f"{self.provider}_request", model=model.api_param):
            return await self.retry_service.retry_with_circuit_breaker(
                lambda: token.run(self._call(messages, model, api_key)),
                self.provider,
                token,
                on_retry=on_retry,
            )

    @abstractmethod
    async def _call(self, messages: Sequence[Message], model: AIModel, api_key: str) -> RawProviderResult:
        """Perform one request attempt"""


class OpenAIAdapter(ProviderAdapter):
    """Chat completions through ChatOpenAI; image attachments as image_url blocks"""

    provider = "openai"
    include_images = True
    compat_max_tokens = False

    def _base_url(self) -> Optional[str]:
        return self.provider_config.openai_base_url

    def format_messages(self, messages: Sequence[Message]) -> List[BaseMessage]:
        formatted: List[BaseMessage] = []
        for message in messages:
            images = _image_urls(message) if self.include_images else []
            if images:
                content: Any = [{"type": "text", "text": message.content}]
                content.extend({"type": "image_url", "image_url": {"url": url}} for url in images)
            else:
                content = message.content

            if message.role is Role.ASSISTANT:
                formatted.append(AIMessage(content=content))
            elif message.role is Role.SYSTEM:
                formatted.append(SystemMessage(content=content))
            else:
                formatted.append(HumanMessage(content=content))
        return formatted

    async def _call(self, messages: Sequence[Message], model: AIModel, api_key: str) -> RawProviderResult:
        llm = self.client.get_chat_model(
            model=model.api_param,
            api_key=api_key,
            max_tokens=model.max_tokens,
            base_url=self._base_url(),
            compat_max_tokens=self.compat_max_tokens,
        )
        try:
            response = await llm.ainvoke(self.format_messages(messages))
        except openai.APIError as e:
            raise translate_openai_error(e, self.label) from e

        return RawProviderResult.from_text(self._reply_text(response.content))

    def _reply_text(self, content: Any) -> str:
        if isinstance(content, list):
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )
        return content or f"No response from {self.label}"


class LlamaAdapter(OpenAIAdapter):
    """OpenAI-compatible Llama endpoint; text only"""

    provider = "llama"
    include_images = False
    compat_max_tokens = True

    def _base_url(self) -> Optional[str]:
        return self.provider_config.llama_base_url


class ImageGenerationAdapter(ProviderAdapter):
    """Image generation: the last message's text is the prompt, history is ignored"""

    provider = "openai"

    async def _call(self, messages: Sequence[Message], model: AIModel, api_key: str) -> RawProviderResult:
        if not messages:
            raise ProviderError(ProviderErrorKind.PROVIDER_ERROR, "No prompt to generate an image from")
        prompt = messages[-1].content

        image_client = self.client.get_image_client(api_key)
        try:
            response = await image_client.images.generate(
                model=model.api_param,
                prompt=prompt,
                n=1,
                size=self.provider_config.image_size,
            )
        except openai.APIError as e:
            raise translate_openai_error(e, self.label) from e

        if response.data and response.data[0].url:
            return RawProviderResult.from_image(response.data[0].url)
        raise ProviderError(ProviderErrorKind.PROVIDER_ERROR, f"Failed to generate image with {model.name}")


class RestProviderAdapter(ProviderAdapter):
    """Shared JSON-over-HTTP plumbing for the REST providers"""

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        try:
            response = await self.client.http_client.post(url, json=payload, headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise ProviderError(ProviderErrorKind.TRANSPORT_ERROR, f"{self.label} request timed out") from e
        except httpx.TransportError as e:
            raise ProviderError(ProviderErrorKind.TRANSPORT_ERROR, f"Could not reach {self.label}: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderError(
                ProviderErrorKind.TRANSPORT_ERROR,
                f"{self.label} is unavailable (HTTP {response.status_code}): {_http_error_message(response)}",
            )
        if response.is_error:
            raise ProviderError(
                ProviderErrorKind.PROVIDER_ERROR,
                f"{self.label} API error (HTTP {response.status_code}): {_http_error_message(response)}",
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                ProviderErrorKind.PROVIDER_ERROR, f"{self.label} returned an invalid response"
            ) from e

    def _inline_images(self, message: Message) -> List[Tuple[str, str]]:
        images = []
        for url in _image_urls(message):
            try:
                images.append(parse_data_url(url))
            except ValueError:
                self.logger.debug(f"Skipping malformed image attachment for {self.label}")
        return images


class ClaudeAdapter(RestProviderAdapter):
    """Anthropic messages API; image attachments as base64 image blocks"""

    provider = "claude"

    def format_messages(self, messages: Sequence[Message]) -> List[Dict[str, Any]]:
        formatted = []
        for message in messages:
            content: List[Dict[str, Any]] = [{"type": "text", "text": message.content}]
            for media_type, data in self._inline_images(message):
                content.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": media_type, "data": data},
                })
            formatted.append({
                # System prompt travels separately; stray system turns go as user
                "role": "assistant" if message.role is Role.ASSISTANT else "user",
                "content": content,
            })
        return formatted

    async def _call(self, messages: Sequence[Message], model: AIModel, api_key: str) -> RawProviderResult:
        data = await self._post_json(
            self.provider_config.anthropic_url,
            payload={
                "model": model.api_param,
                "max_tokens": self.provider_config.claude_max_tokens,
                "messages": self.format_messages(messages),
                "system": self.provider_config.system_prompt,
            },
            headers={
                "x-api-key": api_key,
                "anthropic-version": self.provider_config.anthropic_version,
            },
        )

        content = data.get("content") or []
        if content and isinstance(content[0], dict) and content[0].get("text"):
            return RawProviderResult.from_text(content[0]["text"])
        return RawProviderResult.from_text("No response from Claude")


class GeminiAdapter(RestProviderAdapter):
    """Google generateContent API; image attachments as inline_data parts"""

    provider = "gemini"

    def format_messages(self, messages: Sequence[Message]) -> List[Dict[str, Any]]:
        formatted = []
        for message in messages:
            parts: List[Dict[str, Any]] = [{"text": message.content}]
            for media_type, data in self._inline_images(message):
                parts.append({"inline_data": {"mime_type": media_type, "data": data}})
            formatted.append({
                "role": "model" if message.role is Role.ASSISTANT else "user",
                "parts": parts,
            })
        return formatted

    async def _call(self, messages: Sequence[Message], model: AIModel, api_key: str) -> RawProviderResult:
        data = await self._post_json(
            self.provider_config.gemini_url_template.format(model=model.api_param),
            payload={
                "contents": self.format_messages(messages),
                "generationConfig": {"maxOutputTokens": model.max_tokens},
            },
            params={"key": api_key},
        )

        candidates = data.get("candidates") or []
        if candidates:
            parts = (candidates[0].get("content") or {}).get("parts") or []
            if parts and parts[0].get("text"):
                return RawProviderResult.from_text(parts[0]["text"])
        return RawProviderResult.from_text("No response from Gemini")


class ProviderRegistry:
    """Resolves the adapter for a catalog model"""

    def __init__(
        self,
        adapters: Dict[str, ProviderAdapter],
        image_adapters: Optional[Dict[str, ProviderAdapter]] = None,
    ):
        self.adapters = dict(adapters)
        self.image_adapters = dict(image_adapters or {})

    @classmethod
    def default(
        cls,
        credentials: ProviderCredentials,
        client: LLMClient,
        retry_service: RetryService,
    ) -> 'ProviderRegistry':
        """Registry with the four chat providers and OpenAI image generation"""
        def build(adapter_class):
            return adapter_class(credentials, client, retry_service)

        return cls(
            adapters={
                "openai": build(OpenAIAdapter),
                "claude": build(ClaudeAdapter),
                "llama": build(LlamaAdapter),
                "gemini": build(GeminiAdapter),
            },
            image_adapters={"openai": build(ImageGenerationAdapter)},
        )

    def get_adapter(self, model: AIModel) -> ProviderAdapter:
        """
        Pick the adapter for a model

        Raises:
            ProviderError: UNSUPPORTED_PROVIDER for an unknown provider tag, or
                for an image-generation model on a provider without one
        """
        if model.provider not in self.adapters:
            raise ProviderError(
                ProviderErrorKind.UNSUPPORTED_PROVIDER,
                f"Unsupported model provider: {model.provider}",
            )
        if model.is_image_generator:
            adapter = self.image_adapters.get(model.provider)
            if adapter is None:
                raise ProviderError(
                    ProviderErrorKind.UNSUPPORTED_PROVIDER,
                    f"Image generation is not supported for provider: {model.provider}",
                )
            return adapter
        return self.adapters[model.provider]
