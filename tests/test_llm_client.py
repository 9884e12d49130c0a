"""Tests for ChatCompletionClient against httpx.MockTransport."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from open_harness_litellm.llm.client import ChatCompletionClient, parse_completion
from open_harness_litellm.llm.errors import ChatCompletionError
from open_harness_litellm.llm.payload import ChatCompletionPayload


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _completion(content: str = "Hello!", tool_calls: list | None = None) -> dict:
    message: dict = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {
        "choices": [{"message": message, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
        "model": "gpt-4",
    }


def _payload(**kwargs) -> ChatCompletionPayload:
    kwargs.setdefault("model", "gpt-4")
    kwargs.setdefault("messages", [{"role": "user", "content": "Hi"}])
    return ChatCompletionPayload(**kwargs)


def _client(handler, api_key: str | None = "sk-test", max_retries: int = 3) -> ChatCompletionClient:
    return ChatCompletionClient(
        "http://proxy:4000/",
        api_key=api_key,
        max_retries=max_retries,
        transport=httpx.MockTransport(handler),
    )


def _sse(*events: dict | str) -> bytes:
    lines = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


# ---------------------------------------------------------------------------
# create()
# ---------------------------------------------------------------------------

class TestCreate:
    @pytest.mark.asyncio
    async def test_parses_response(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_completion("Hi there"))

        async with _client(handler) as client:
            resp = await client.create(_payload(temperature=0.3))

        assert resp.content == "Hi there"
        assert resp.usage["total_tokens"] == 30
        assert resp.model == "gpt-4"
        assert resp.latency_ms >= 0

        request = seen[0]
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["temperature"] == 0.3
        assert "stream" not in body
        assert "max_tokens" not in body

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_completion())

        async with _client(handler, api_key=None) as client:
            await client.create(_payload())
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_tool_calls(self):
        tool_calls = [{
            "id": "call_1",
            "type": "function",
            "function": {"name": "lookup", "arguments": '{"q": "weather"}'},
        }]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_completion("", tool_calls=tool_calls))

        async with _client(handler) as client:
            resp = await client.create(_payload())

        assert resp.has_tool_calls
        assert resp.tool_calls[0].id == "call_1"
        assert resp.tool_calls[0].name == "lookup"
        assert resp.tool_calls[0].parsed_arguments() == {"q": "weather"}

    @pytest.mark.asyncio
    async def test_retries_on_503(self):
        attempts = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["n"] += 1
            if attempts["n"] < 3:
                return httpx.Response(503, text="Service Unavailable")
            return httpx.Response(200, json=_completion("ok"))

        sleep = AsyncMock()
        with patch("open_harness_litellm.llm.client.asyncio.sleep", sleep):
            async with _client(handler) as client:
                resp = await client.create(_payload())

        assert resp.content == "ok"
        assert attempts["n"] == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": {"message": "slow down", "type": "rate_limit"}})

        with patch("open_harness_litellm.llm.client.asyncio.sleep", AsyncMock()):
            async with _client(handler, max_retries=2) as client:
                with pytest.raises(ChatCompletionError) as exc_info:
                    await client.create(_payload())

        assert exc_info.value.status_code == 429
        assert exc_info.value.error["type"] == "rate_limit"

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        attempts = {"n": 0}
        body = {"error": {"message": "Invalid model", "type": "invalid_request_error", "code": "400"}}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["n"] += 1
            return httpx.Response(400, json=body)

        async with _client(handler) as client:
            with pytest.raises(ChatCompletionError) as exc_info:
                await client.create(_payload())

        assert attempts["n"] == 1
        assert str(exc_info.value) == "Invalid model"
        assert exc_info.value.error == body["error"]

    @pytest.mark.asyncio
    async def test_timeout_retried_then_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        sleep = AsyncMock()
        with patch("open_harness_litellm.llm.client.asyncio.sleep", sleep):
            async with _client(handler) as client:
                with pytest.raises(ChatCompletionError, match="timed out"):
                    await client.create(_payload())
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        async with _client(handler) as client:
            with pytest.raises(ChatCompletionError, match="invalid JSON"):
                await client.create(_payload())


class TestParseCompletion:
    def test_no_choices(self):
        with pytest.raises(ChatCompletionError):
            parse_completion({"choices": []}, "gpt-4", 1.0)

    def test_non_string_arguments_are_encoded(self):
        data = _completion("", tool_calls=[{
            "id": "c1", "function": {"name": "lookup", "arguments": {"q": 1}},
        }])
        resp = parse_completion(data, "gpt-4", 1.0)
        assert json.loads(resp.tool_calls[0].arguments) == {"q": 1}

    def test_null_content(self):
        data = _completion()
        data["choices"][0]["message"]["content"] = None
        assert parse_completion(data, "gpt-4", 1.0).content == ""


# ---------------------------------------------------------------------------
# stream()
# ---------------------------------------------------------------------------

class TestStream:
    @pytest.mark.asyncio
    async def test_yields_chunks_until_done(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            content = _sse(
                {"choices": [{"delta": {"content": "Hel"}}]},
                {"choices": [{"delta": {"content": "lo"}}]},
                {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 2}},
                "[DONE]",
                {"choices": [{"delta": {"content": "ignored"}}]},
            )
            return httpx.Response(
                200, content=content, headers={"content-type": "text/event-stream"},
            )

        async with _client(handler) as client:
            stream = await client.stream(_payload())
            chunks = [c async for c in stream]

        assert len(chunks) == 3
        assert chunks[2]["usage"]["prompt_tokens"] == 3
        assert seen[0]["stream"] is True
        assert seen[0]["stream_options"] == {"include_usage": True}

    @pytest.mark.asyncio
    async def test_skips_malformed_lines(self):
        def handler(request: httpx.Request) -> httpx.Response:
            content = b": keep-alive\n\ndata: {broken\n\n" + _sse(
                {"choices": [{"delta": {"content": "ok"}}]}, "[DONE]",
            )
            return httpx.Response(200, content=content)

        async with _client(handler) as client:
            chunks = [c async for c in await client.stream(_payload())]

        assert chunks == [{"choices": [{"delta": {"content": "ok"}}]}]

    @pytest.mark.asyncio
    async def test_http_error_raised_before_iteration(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "bad key", "type": "auth_error"}})

        async with _client(handler) as client:
            with pytest.raises(ChatCompletionError) as exc_info:
                await client.stream(_payload())

        assert exc_info.value.status_code == 401
        assert exc_info.value.error["type"] == "auth_error"

    @pytest.mark.asyncio
    async def test_error_event_raises_mid_stream(self):
        error = {"message": "upstream overloaded", "type": "overloaded_error", "code": 529}

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_sse(
                {"choices": [{"delta": {"content": "Hel"}}]},
                {"error": error},
                "[DONE]",
            ))

        received: list[dict] = []
        async with _client(handler) as client:
            stream = await client.stream(_payload())
            with pytest.raises(ChatCompletionError) as exc_info:
                async for chunk in stream:
                    received.append(chunk)

        assert received == [{"choices": [{"delta": {"content": "Hel"}}]}]
        assert str(exc_info.value) == "upstream overloaded"
        assert exc_info.value.error == error


# ---------------------------------------------------------------------------
# list_models()
# ---------------------------------------------------------------------------

class TestListModels:
    @pytest.mark.asyncio
    async def test_lists_ids(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/models"
            return httpx.Response(200, json={
                "data": [{"id": "gpt-4"}, {"id": "claude-3"}, {"object": "model"}],
            })

        async with _client(handler) as client:
            assert await client.list_models() == ["gpt-4", "claude-3"]

    @pytest.mark.asyncio
    async def test_error_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="down")

        async with _client(handler) as client:
            with pytest.raises(ChatCompletionError) as exc_info:
                await client.list_models()
        assert exc_info.value.status_code == 503
