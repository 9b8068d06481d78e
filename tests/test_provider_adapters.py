"""
Tests for the provider adapters and the provider registry
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import httpx
import openai
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from config.app_config import ProviderConfig
from config.model_catalog import AIModel, get_model_by_id
from infrastructure.resilience.retry_service import RetryService
from services.ai_service.cancellation import CancellationToken
from services.ai_service.llm_client import LLMClient, ProviderCredentials
from services.ai_service.provider_adapters import (
    ClaudeAdapter,
    GeminiAdapter,
    ImageGenerationAdapter,
    LlamaAdapter,
    OpenAIAdapter,
    ProviderRegistry,
)
from services.chat_service.models import Role, create_message
from services.errors import ProviderErrorKind, ProviderError

IMAGE_URL = "data:image/png;base64,iVBORw0KGgo="
DOC_URL = "data:application/pdf;base64,JVBERi0="

CREDENTIALS = ProviderCredentials(
    openai_api_key="sk-test",
    anthropic_api_key="anthropic-test",
    llama_api_key="llama-test",
    google_api_key="google-test",
)


def conversation():
    return [
        create_message(Role.SYSTEM, "Be brief"),
        create_message(Role.USER, "What is in these files?", [IMAGE_URL, DOC_URL], ["cat.png", "report.pdf"]),
        create_message(Role.ASSISTANT, "A cat and a report."),
        create_message(Role.USER, "Thanks"),
    ]


class RecordingTransport:
    """httpx handler that records requests and replays canned responses"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return response

    def client(self) -> LLMClient:
        return LLMClient(ProviderConfig(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(self)))

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def fast_retry(max_retries: int = 2) -> RetryService:
    return RetryService(max_retries=max_retries, base_delay=0.0, max_delay=0.0)


def openai_request():
    return httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class TestOpenAIAdapter:
    """Test the OpenAI chat adapter"""

    def setup_method(self):
        self.llm = Mock()
        self.llm.ainvoke = AsyncMock(return_value=AIMessage(content="Hello!"))
        self.client = Mock(spec=LLMClient)
        self.client.provider_config = ProviderConfig()
        self.client.get_chat_model.return_value = self.llm
        self.adapter = OpenAIAdapter(CREDENTIALS, self.client, fast_retry())
        self.model = get_model_by_id("gpt-4o")

    def test_format_messages_adds_image_blocks_only_for_images(self):
        formatted = self.adapter.format_messages(conversation())

        assert isinstance(formatted[0], SystemMessage)
        assert isinstance(formatted[1], HumanMessage)
        assert isinstance(formatted[2], AIMessage)
        assert formatted[1].content == [
            {"type": "text", "text": "What is in these files?"},
            {"type": "image_url", "image_url": {"url": IMAGE_URL}},
        ]
        assert formatted[3].content == "Thanks"

    @pytest.mark.asyncio
    async def test_invoke_forwards_full_history(self):
        result = await self.adapter.invoke(conversation(), self.model, CancellationToken())

        assert result.text == "Hello!"
        assert result.image_url is None
        sent = self.llm.ainvoke.call_args.args[0]
        assert len(sent) == 4
        self.client.get_chat_model.assert_called_once_with(
            model="gpt-4o", api_key="sk-test", max_tokens=self.model.max_tokens,
            base_url=None, compat_max_tokens=False,
        )

    @pytest.mark.asyncio
    async def test_empty_reply(self):
        self.llm.ainvoke.return_value = AIMessage(content="")
        result = await self.adapter.invoke(conversation(), self.model, CancellationToken())
        assert result.text == "No response from OpenAI"

    @pytest.mark.asyncio
    async def test_missing_credential_fails_before_network(self):
        adapter = OpenAIAdapter(ProviderCredentials(), self.client, fast_retry())

        with pytest.raises(ProviderError) as exc_info:
            await adapter.invoke(conversation(), self.model, CancellationToken())

        assert exc_info.value.kind is ProviderErrorKind.MISSING_CREDENTIAL
        assert "OPENAI_API_KEY" in exc_info.value.detail
        self.llm.ainvoke.assert_not_called()

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried_as_transport_errors(self):
        self.llm.ainvoke.side_effect = [
            openai.APIConnectionError(request=openai_request()),
            AIMessage(content="Recovered"),
        ]

        result = await self.adapter.invoke(conversation(), self.model, CancellationToken())

        assert result.text == "Recovered"
        assert self.llm.ainvoke.call_count == 2

    @pytest.mark.asyncio
    async def test_api_rejection_is_provider_error(self):
        response = httpx.Response(400, request=openai_request())
        self.llm.ainvoke.side_effect = openai.BadRequestError("Invalid image", response=response, body=None)

        with pytest.raises(ProviderError) as exc_info:
            await self.adapter.invoke(conversation(), self.model, CancellationToken())

        assert exc_info.value.kind is ProviderErrorKind.PROVIDER_ERROR
        assert self.llm.ainvoke.call_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_token_raises_cancelled(self):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(ProviderError) as exc_info:
            await self.adapter.invoke(conversation(), self.model, token)

        assert exc_info.value.is_cancellation
        self.llm.ainvoke.assert_not_called()


class TestLlamaAdapter:
    """Test the OpenAI-compatible Llama adapter"""

    def test_text_only(self):
        client = Mock(spec=LLMClient)
        client.provider_config = ProviderConfig()
        adapter = LlamaAdapter(CREDENTIALS, client, fast_retry())

        formatted = adapter.format_messages(conversation())

        assert formatted[1].content == "What is in these files?"

    @pytest.mark.asyncio
    async def test_uses_llama_endpoint(self):
        llm = Mock()
        llm.ainvoke = AsyncMock(return_value=AIMessage(content="Llama says hi"))
        client = Mock(spec=LLMClient)
        client.provider_config = ProviderConfig()
        client.get_chat_model.return_value = llm
        adapter = LlamaAdapter(CREDENTIALS, client, fast_retry())
        model = get_model_by_id("llama-3-70b")

        result = await adapter.invoke(conversation(), model, CancellationToken())

        assert result.text == "Llama says hi"
        client.get_chat_model.assert_called_once_with(
            model="llama3-70b", api_key="llama-test", max_tokens=2048,
            base_url="https://api.llama-api.com", compat_max_tokens=True,
        )


def chat_completion(text: str, model: str) -> httpx.Response:
    return httpx.Response(200, json={
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": model,
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": text},
            "finish_reason": "stop",
        }],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
    })


class TestOpenAIProtocolRequests:
    """Test the request bodies ChatOpenAI puts on the wire"""

    @pytest.mark.asyncio
    async def test_openai_request_body(self):
        transport = RecordingTransport(chat_completion("Hello!", "gpt-4o"))
        adapter = OpenAIAdapter(CREDENTIALS, transport.client(), fast_retry())

        result = await adapter.invoke(conversation(), get_model_by_id("gpt-4o"), CancellationToken())

        assert result.text == "Hello!"
        request = transport.requests[0]
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"

        body = transport.body()
        assert body["model"] == "gpt-4o"
        assert body.get("max_completion_tokens", body.get("max_tokens")) == 4096
        assert [message["role"] for message in body["messages"]] == ["system", "user", "assistant", "user"]
        assert {"type": "image_url", "image_url": {"url": IMAGE_URL}} in body["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_llama_sends_classic_max_tokens(self):
        transport = RecordingTransport(chat_completion("Llama says hi", "llama3-70b"))
        adapter = LlamaAdapter(CREDENTIALS, transport.client(), fast_retry())

        result = await adapter.invoke(conversation(), get_model_by_id("llama-3-70b"), CancellationToken())

        assert result.text == "Llama says hi"
        request = transport.requests[0]
        assert str(request.url) == "https://api.llama-api.com/chat/completions"
        assert request.headers["authorization"] == "Bearer llama-test"

        body = transport.body()
        assert body["model"] == "llama3-70b"
        assert body["max_tokens"] == 2048
        assert "max_completion_tokens" not in body
        assert body["messages"][1]["content"] == "What is in these files?"

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        transport = RecordingTransport(
            httpx.Response(503, json={"error": {"message": "Service unavailable"}}),
            chat_completion("Back", "llama3-70b"),
        )
        adapter = LlamaAdapter(CREDENTIALS, transport.client(), fast_retry())

        result = await adapter.invoke(conversation(), get_model_by_id("llama-3-70b"), CancellationToken())

        assert result.text == "Back"
        assert len(transport.requests) == 2


class TestImageGenerationAdapter:
    """Test image generation"""

    def setup_method(self):
        self.images = Mock()
        self.images.generate = AsyncMock(
            return_value=SimpleNamespace(data=[SimpleNamespace(url="https://images.example.com/fox.png")])
        )
        self.client = Mock(spec=LLMClient)
        self.client.provider_config = ProviderConfig()
        self.client.get_image_client.return_value = SimpleNamespace(images=self.images)
        self.adapter = ImageGenerationAdapter(CREDENTIALS, self.client, fast_retry())
        self.model = get_model_by_id("dall-e-3")

    @pytest.mark.asyncio
    async def test_uses_only_last_message_as_prompt(self):
        result = await self.adapter.invoke(
            [create_message(Role.USER, "earlier"), create_message(Role.USER, "a red fox")],
            self.model,
            CancellationToken(),
        )

        assert result.image_url == "https://images.example.com/fox.png"
        assert result.text is None
        self.images.generate.assert_called_once_with(
            model="dall-e-3", prompt="a red fox", n=1, size="1024x1024"
        )

    @pytest.mark.asyncio
    async def test_missing_url_is_provider_error(self):
        self.images.generate.return_value = SimpleNamespace(data=[])

        with pytest.raises(ProviderError) as exc_info:
            await self.adapter.invoke([create_message(Role.USER, "a fox")], self.model, CancellationToken())

        assert exc_info.value.kind is ProviderErrorKind.PROVIDER_ERROR


class TestClaudeAdapter:
    """Test the Anthropic REST adapter"""

    def setup_method(self):
        self.model = get_model_by_id("claude-3-5-sonnet")

    @pytest.mark.asyncio
    async def test_request_shape_and_reply(self):
        transport = RecordingTransport(
            httpx.Response(200, json={"content": [{"type": "text", "text": "Bonjour"}]})
        )
        adapter = ClaudeAdapter(CREDENTIALS, transport.client(), fast_retry())

        result = await adapter.invoke(conversation(), self.model, CancellationToken())

        assert result.text == "Bonjour"
        request = transport.requests[0]
        assert str(request.url) == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "anthropic-test"
        assert request.headers["anthropic-version"] == "2023-06-01"

        body = transport.body()
        assert body["model"] == "claude-3-5-sonnet-20240620"
        assert body["max_tokens"] == 1024
        assert body["system"] == "You are a helpful AI assistant."
        assert [message["role"] for message in body["messages"]] == ["user", "user", "assistant", "user"]
        assert body["messages"][1]["content"] == [
            {"type": "text", "text": "What is in these files?"},
            {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="}},
        ]

    @pytest.mark.asyncio
    async def test_empty_content(self):
        transport = RecordingTransport(httpx.Response(200, json={"content": []}))
        adapter = ClaudeAdapter(CREDENTIALS, transport.client(), fast_retry())

        result = await adapter.invoke(conversation(), self.model, CancellationToken())

        assert result.text == "No response from Claude"

    @pytest.mark.asyncio
    async def test_overloaded_is_retried(self):
        transport = RecordingTransport(
            httpx.Response(529, json={"error": {"message": "Overloaded"}}),
            httpx.Response(200, json={"content": [{"type": "text", "text": "Back"}]}),
        )
        adapter = ClaudeAdapter(CREDENTIALS, transport.client(), fast_retry())

        result = await adapter.invoke(conversation(), self.model, CancellationToken())

        assert result.text == "Back"
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self):
        transport = RecordingTransport(
            httpx.Response(400, json={"error": {"message": "messages: text content blocks must be non-empty"}})
        )
        adapter = ClaudeAdapter(CREDENTIALS, transport.client(), fast_retry())

        with pytest.raises(ProviderError) as exc_info:
            await adapter.invoke(conversation(), self.model, CancellationToken())

        assert exc_info.value.kind is ProviderErrorKind.PROVIDER_ERROR
        assert "text content blocks must be non-empty" in exc_info.value.detail
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_connection_failure_is_transport_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = LLMClient(ProviderConfig(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)))
        adapter = ClaudeAdapter(CREDENTIALS, client, fast_retry(max_retries=0))

        with pytest.raises(ProviderError) as exc_info:
            await adapter.invoke(conversation(), self.model, CancellationToken())

        assert exc_info.value.kind is ProviderErrorKind.TRANSPORT_ERROR

    @pytest.mark.asyncio
    async def test_cancellation_aborts_request(self):
        started = asyncio.Event()

        async def hang(request):
            started.set()
            await asyncio.Event().wait()

        client = LLMClient(ProviderConfig(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(hang)))
        retry_service = fast_retry()
        adapter = ClaudeAdapter(CREDENTIALS, client, retry_service)
        token = CancellationToken()

        call = asyncio.create_task(adapter.invoke(conversation(), self.model, token))
        await asyncio.wait_for(started.wait(), timeout=5)
        token.cancel()

        with pytest.raises(ProviderError) as exc_info:
            await asyncio.wait_for(call, timeout=5)

        assert exc_info.value.kind is ProviderErrorKind.CANCELLED
        assert retry_service.get_circuit_breaker("claude").failure_count == 0


class TestGeminiAdapter:
    """Test the Google REST adapter"""

    def setup_method(self):
        self.model = get_model_by_id("gemini-1.5-pro")

    @pytest.mark.asyncio
    async def test_request_shape_and_reply(self):
        transport = RecordingTransport(httpx.Response(200, json={
            "candidates": [{"content": {"parts": [{"text": "Gemini reply"}], "role": "model"}}]
        }))
        adapter = GeminiAdapter(CREDENTIALS, transport.client(), fast_retry())

        result = await adapter.invoke(conversation(), self.model, CancellationToken())

        assert result.text == "Gemini reply"
        request = transport.requests[0]
        assert request.url.path == "/v1beta/models/gemini-1.5-pro:generateContent"
        assert request.url.params["key"] == "google-test"

        body = transport.body()
        assert body["generationConfig"] == {"maxOutputTokens": 8192}
        assert [content["role"] for content in body["contents"]] == ["user", "user", "model", "user"]
        assert body["contents"][1]["parts"] == [
            {"text": "What is in these files?"},
            {"inline_data": {"mime_type": "image/png", "data": "iVBORw0KGgo="}},
        ]

    @pytest.mark.asyncio
    async def test_no_candidates(self):
        transport = RecordingTransport(httpx.Response(200, json={"candidates": []}))
        adapter = GeminiAdapter(CREDENTIALS, transport.client(), fast_retry())

        result = await adapter.invoke(conversation(), self.model, CancellationToken())

        assert result.text == "No response from Gemini"

    @pytest.mark.asyncio
    async def test_missing_credential_sends_nothing(self):
        transport = RecordingTransport(httpx.Response(200, json={}))
        adapter = GeminiAdapter(ProviderCredentials(openai_api_key="sk"), transport.client(), fast_retry())

        with pytest.raises(ProviderError) as exc_info:
            await adapter.invoke(conversation(), self.model, CancellationToken())

        assert exc_info.value.kind is ProviderErrorKind.MISSING_CREDENTIAL
        assert "GOOGLE_API_KEY" in exc_info.value.detail
        assert transport.requests == []


class TestProviderRegistry:
    """Test adapter resolution"""

    def setup_method(self):
        self.registry = ProviderRegistry.default(CREDENTIALS, LLMClient(ProviderConfig()), fast_retry())

    def test_resolves_each_provider(self):
        assert isinstance(self.registry.get_adapter(get_model_by_id("gpt-4o")), OpenAIAdapter)
        assert isinstance(self.registry.get_adapter(get_model_by_id("claude-3-haiku")), ClaudeAdapter)
        assert isinstance(self.registry.get_adapter(get_model_by_id("llama-3-70b")), LlamaAdapter)
        assert isinstance(self.registry.get_adapter(get_model_by_id("gemini-1.5-flash")), GeminiAdapter)

    def test_image_generator_routes_to_image_adapter(self):
        assert isinstance(self.registry.get_adapter(get_model_by_id("dall-e-3")), ImageGenerationAdapter)

    def test_unknown_provider(self):
        model = AIModel(id="mistral-large", name="Mistral", provider="mistral", api_param="mistral-large", max_tokens=1000)

        with pytest.raises(ProviderError) as exc_info:
            self.registry.get_adapter(model)

        assert exc_info.value.kind is ProviderErrorKind.UNSUPPORTED_PROVIDER
        assert "mistral" in exc_info.value.detail

    def test_image_generation_on_provider_without_it(self):
        model = AIModel(id="imagen", name="Imagen", provider="gemini", api_param="imagen",
                        max_tokens=0, is_image_generator=True)

        with pytest.raises(ProviderError) as exc_info:
            self.registry.get_adapter(model)

        assert exc_info.value.kind is ProviderErrorKind.UNSUPPORTED_PROVIDER
