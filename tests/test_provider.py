"""Tests for LiteLLMProvider: discovery bootstrap and request execution."""

from __future__ import annotations

import json

import httpx
import pytest

from open_harness_litellm.config import BlacklistSpec, ProviderSettings
from open_harness_litellm.events.bus import EventBus
from open_harness_litellm.llm.errors import (
    ChatCompletionError,
    ProviderConfigurationError,
    ProviderRequestError,
)
from open_harness_litellm.providers.litellm import LiteLLMProvider
from open_harness_litellm.providers.registry import Blacklist, ModelRegistry
from open_harness_litellm.types import (
    EventType,
    ExecutionResult,
    ProviderRequest,
    StreamingExecution,
)


def _models_handler(status: int = 200, ids: tuple[str, ...] = ("gpt-4", "claude-3")):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/models"
        if status != 200:
            return httpx.Response(status, text="unavailable")
        return httpx.Response(200, json={"data": [{"id": i} for i in ids]})
    return handler


def _provider(handler, settings: ProviderSettings | None = None, **kwargs) -> LiteLLMProvider:
    settings = settings or ProviderSettings(base_url="http://proxy:4000", api_key="sk-1")
    return LiteLLMProvider(settings, transport=httpx.MockTransport(handler), **kwargs)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

class TestInitialize:
    @pytest.mark.asyncio
    async def test_discovers_and_publishes(self):
        registry = ModelRegistry()
        bus = EventBus()
        events = []
        bus.subscribe(EventType.MODELS_DISCOVERED, lambda e: events.append(e.data))

        provider = _provider(_models_handler(), registry=registry, event_bus=bus)
        models = await provider.initialize()

        assert models == ["litellm/gpt-4", "litellm/claude-3"]
        assert registry.get_provider_models("litellm") == models
        assert provider.is_model_available("litellm/gpt-4")
        assert not provider.is_model_available("gpt-4")
        assert events == [{"provider": "litellm", "models": models}]

    @pytest.mark.asyncio
    async def test_blacklist_filters(self):
        registry = ModelRegistry()
        provider = _provider(
            _models_handler(ids=("gpt-4", "gpt-4-preview", "claude-3")),
            registry=registry,
            blacklist=Blacklist(BlacklistSpec(models=["*-PREVIEW"])),
        )
        assert await provider.initialize() == ["litellm/gpt-4", "litellm/claude-3"]

    @pytest.mark.asyncio
    async def test_failure_publishes_empty_list(self):
        registry = ModelRegistry()
        provider = _provider(_models_handler(status=503), registry=registry)

        assert await provider.initialize() == []
        assert registry.is_initialized("litellm")
        assert registry.get_provider_models("litellm") == []

    @pytest.mark.asyncio
    async def test_transport_error_never_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        registry = ModelRegistry()
        provider = _provider(handler, registry=registry)
        assert await provider.initialize() == []
        assert registry.get_provider_models("litellm") == []

    @pytest.mark.asyncio
    async def test_no_base_url_skips(self):
        called = []
        registry = ModelRegistry()
        provider = _provider(
            lambda r: called.append(r) or httpx.Response(200, json={"data": []}),
            settings=ProviderSettings(),
            registry=registry,
        )
        assert await provider.initialize() == []
        assert called == []
        assert not registry.is_initialized("litellm")

    @pytest.mark.asyncio
    async def test_client_side_skips(self):
        called = []
        provider = _provider(
            lambda r: called.append(r) or httpx.Response(200, json={"data": []}),
            settings=ProviderSettings(base_url="http://proxy:4000", client_side=True),
        )
        await provider.initialize()
        assert called == []

    def test_describe(self):
        provider = _provider(
            _models_handler(),
            settings=ProviderSettings(base_url="http://proxy", models=["litellm/a"]),
        )
        info = provider.describe()
        assert info["id"] == "litellm"
        assert info["version"] == "1.0.0"
        assert info["default_model"] == "litellm/a"


# ---------------------------------------------------------------------------
# Request execution
# ---------------------------------------------------------------------------

def _chat_handler(seen: list[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = json.loads(request.content)
        if body.get("stream"):
            content = (
                'data: {"choices": [{"delta": {"content": "streamed"}}]}\n\n'
                'data: {"choices": [], "usage": {"prompt_tokens": 2, "completion_tokens": 1}}\n\n'
                "data: [DONE]\n\n"
            )
            return httpx.Response(200, content=content.encode())
        return httpx.Response(200, json={
            "choices": [{"message": {"role": "assistant", "content": "buffered"},
                         "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 4, "completion_tokens": 2, "total_tokens": 6},
        })
    return handler


class TestExecuteRequest:
    @pytest.mark.asyncio
    async def test_missing_base_url(self):
        provider = _provider(_chat_handler([]), settings=ProviderSettings())
        with pytest.raises(ProviderConfigurationError, match="LITELLM_BASE_URL"):
            await provider.execute_request(ProviderRequest(model="litellm/gpt-4"))

    @pytest.mark.asyncio
    async def test_buffered(self):
        seen: list[httpx.Request] = []
        provider = _provider(_chat_handler(seen))
        result = await provider.execute_request(ProviderRequest(
            model="litellm/gpt-4", messages=[{"role": "user", "content": "Hi"}],
        ))

        assert isinstance(result, ExecutionResult)
        assert result.content == "buffered"
        assert result.tokens.total == 6
        assert seen[0].headers["Authorization"] == "Bearer sk-1"
        assert json.loads(seen[0].content)["model"] == "gpt-4"

    @pytest.mark.asyncio
    async def test_request_overrides_and_empty_key(self):
        seen: list[httpx.Request] = []
        provider = _provider(_chat_handler(seen), settings=ProviderSettings(base_url="http://a"))
        await provider.execute_request(ProviderRequest(
            model="litellm/gpt-4",
            messages=[{"role": "user", "content": "Hi"}],
            base_url="http://override:9000/",
        ))
        assert seen[0].url.host == "override"
        assert seen[0].headers["Authorization"] == "Bearer empty"

    @pytest.mark.asyncio
    async def test_streaming(self):
        provider = _provider(_chat_handler([]))
        result = await provider.execute_request(ProviderRequest(
            model="litellm/gpt-4",
            messages=[{"role": "user", "content": "Hi"}],
            stream=True,
        ))

        assert isinstance(result, StreamingExecution)
        execution = await result.read_all()
        assert execution.content == "streamed"
        assert execution.tokens.total == 3

    @pytest.mark.asyncio
    async def test_http_failure_enriched(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={
                "error": {"message": "model not found", "type": "invalid_request_error", "code": "404"},
            })

        provider = _provider(handler)
        with pytest.raises(ProviderRequestError) as exc_info:
            await provider.execute_request(ProviderRequest(
                model="litellm/nope", messages=[{"role": "user", "content": "Hi"}],
            ))
        assert exc_info.value.message == "model not found"
        assert exc_info.value.error_type == "invalid_request_error"
        assert exc_info.value.error_code == "404"

    @pytest.mark.asyncio
    async def test_stream_error_event_propagates(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=(
                'data: {"choices": [{"delta": {"content": "partial"}}]}\n\n'
                'data: {"error": {"message": "context window exceeded", '
                '"type": "context_length_exceeded", "code": 400}}\n\n'
            ).encode())

        provider = _provider(handler)
        result = await provider.execute_request(ProviderRequest(
            model="litellm/gpt-4", messages=[{"role": "user", "content": "Hi"}], stream=True,
        ))

        with pytest.raises(ChatCompletionError) as exc_info:
            await result.read_all()
        assert exc_info.value.error["type"] == "context_length_exceeded"
        assert result.execution.content == ""
        assert result.finalized.exception() is exc_info.value
        await provider.aclose()


# ---------------------------------------------------------------------------
# Releasing streamed connections
# ---------------------------------------------------------------------------

class TrackingBody(httpx.AsyncByteStream):
    """Response body that records whether it was closed."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.closed = False

    async def __aiter__(self):
        yield self.data

    async def aclose(self) -> None:
        self.closed = True


class TrackingTransport(httpx.MockTransport):
    def __init__(self, handler) -> None:
        super().__init__(handler)
        self.closed = 0

    async def aclose(self) -> None:
        self.closed += 1


def _streaming_provider(body: TrackingBody) -> tuple[LiteLLMProvider, TrackingTransport]:
    transport = TrackingTransport(lambda request: httpx.Response(200, stream=body))
    provider = LiteLLMProvider(
        ProviderSettings(base_url="http://proxy:4000"), transport=transport,
    )
    return provider, transport


STREAM_BODY = b'data: {"choices": [{"delta": {"content": "hi"}}]}\n\ndata: [DONE]\n\n'


class TestStreamRelease:
    @pytest.mark.asyncio
    async def test_abandoned_stream_closes_response(self):
        body = TrackingBody(STREAM_BODY)
        provider, transport = _streaming_provider(body)
        result = await provider.execute_request(ProviderRequest(
            model="litellm/gpt-4", messages=[{"role": "user", "content": "Hi"}], stream=True,
        ))
        assert not body.closed

        await result.aclose()

        assert body.closed
        assert result.finalized.cancelled()

        await provider.aclose()
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_drained_stream_client_closed(self):
        body = TrackingBody(STREAM_BODY)
        provider, transport = _streaming_provider(body)
        result = await provider.execute_request(ProviderRequest(
            model="litellm/gpt-4", messages=[{"role": "user", "content": "Hi"}], stream=True,
        ))

        execution = await result.read_all()
        await provider.aclose()

        assert execution.content == "hi"
        assert body.closed
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_provider_aclose_without_streams(self):
        provider, transport = _streaming_provider(TrackingBody(STREAM_BODY))
        await provider.aclose()
        assert transport.closed == 0


class TestBlacklist:
    def test_provider(self):
        blacklist = Blacklist(BlacklistSpec(providers=["LiteLLM"]))
        assert blacklist.is_provider_blacklisted("litellm")

    def test_model_patterns(self):
        blacklist = Blacklist(BlacklistSpec(models=["gpt-3.5*", "litellm/claude-2"]))
        assert blacklist.is_model_blacklisted("litellm/gpt-3.5-turbo")
        assert blacklist.is_model_blacklisted("litellm/Claude-2")
        assert not blacklist.is_model_blacklisted("litellm/gpt-4")
