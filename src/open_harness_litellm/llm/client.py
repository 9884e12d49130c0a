"""Async client for OpenAI-compatible chat-completion endpoints.

Used against a LiteLLM proxy: ``{base}/v1/chat/completions`` for buffered
and streaming calls and ``{base}/v1/models`` for discovery.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator

import httpx

from open_harness_litellm.llm.errors import ChatCompletionError
from open_harness_litellm.llm.payload import ChatCompletionPayload
from open_harness_litellm.types import LLMResponse, ToolCall

_logger = logging.getLogger(__name__)

# Retry configuration
_BACKOFF_BASE = 1  # seconds -- exponential: 1, 2, 4
_RETRY_STATUSES = (429, 500, 502, 503, 504)


def _decode_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text or None


def _status_error(resp: httpx.Response, body: Any) -> ChatCompletionError:
    message = f"LLM API returned {resp.status_code}"
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message") or message
    elif isinstance(body, str) and body:
        message = f"{message}: {body[:200]}"
    return ChatCompletionError(message, status_code=resp.status_code, body=body)


def parse_completion(data: dict[str, Any], model: str, latency_ms: float) -> LLMResponse:
    """Turn a chat-completion JSON body into an ``LLMResponse``."""
    choices = data.get("choices") or []
    if not choices:
        raise ChatCompletionError("LLM API returned no choices", body=data)
    choice = choices[0]
    message = choice.get("message") or {}

    tool_calls: list[ToolCall] = []
    for tc in message.get("tool_calls") or []:
        func = tc.get("function") or {}
        arguments = func.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        tool_calls.append(
            ToolCall(
                id=tc.get("id", ""),
                name=func.get("name", ""),
                arguments=arguments,
            )
        )

    return LLMResponse(
        content=message.get("content") or "",
        tool_calls=tool_calls,
        finish_reason=choice.get("finish_reason") or "",
        usage=data.get("usage") or {},
        model=data.get("model", model),
        raw_response=data,
        latency_ms=latency_ms,
    )


class ChatStream:
    """Lazy iterator over the SSE chunks of an open streaming response.

    Each item is one decoded ``chat.completion.chunk`` dict.  An ``error``
    event raises ``ChatCompletionError`` carrying the structured fields.
    The response is closed when iteration ends, fails or ``aclose()`` is
    called.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._closed = False

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._iter_chunks()

    async def _iter_chunks(self) -> AsyncIterator[dict[str, Any]]:
        try:
            async for raw_line in self._response.aiter_lines():
                if not raw_line.startswith("data:"):
                    continue
                data_str = raw_line[5:].strip()
                if not data_str:
                    continue
                if data_str == "[DONE]":
                    break
                try:
                    chunk = json.loads(data_str)
                except json.JSONDecodeError:
                    _logger.debug("Skipping undecodable stream line: %s", data_str[:200])
                    continue
                err = chunk.get("error") if isinstance(chunk, dict) else None
                if isinstance(err, dict):
                    # Upstream failure reported inside an open stream
                    raise ChatCompletionError(
                        err.get("message") or "LLM API stream returned an error",
                        status_code=self._response.status_code,
                        body=chunk,
                    )
                yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._response.aclose()


class ChatCompletionClient:
    """Async client for an OpenAI-compatible API (LiteLLM proxy, etc.).

    Parameters
    ----------
    base_url:
        Proxy root without the ``/v1`` suffix.
    api_key:
        Sent as a bearer token when set.
    transport:
        Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 120,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(1, max_retries)

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/v1",
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=30),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(self, payload: ChatCompletionPayload) -> LLMResponse:
        """Send a non-streaming chat completion request."""
        body = payload.to_body()
        body.pop("stream", None)
        body.pop("stream_options", None)

        start = time.monotonic()
        request = self._client.build_request("POST", "/chat/completions", json=body)
        resp = await self._send(request, stream=False)
        latency = (time.monotonic() - start) * 1000

        try:
            data = resp.json()
        except ValueError as e:
            raise ChatCompletionError(
                "LLM API returned invalid JSON", status_code=resp.status_code,
            ) from e
        return parse_completion(data, payload.model, latency)

    async def stream(self, payload: ChatCompletionPayload) -> ChatStream:
        """Open a streaming chat completion.

        The request is sent (and HTTP errors raised) before this returns;
        the body is only read as the returned ``ChatStream`` is iterated.
        """
        if not payload.stream:
            payload = payload.as_stream()
        request = self._client.build_request(
            "POST", "/chat/completions", json=payload.to_body(),
        )
        resp = await self._send(request, stream=True)
        return ChatStream(resp)

    async def list_models(self) -> list[str]:
        """Return the model ids served by the proxy (``GET /v1/models``)."""
        resp = await self._client.get("/models")
        if resp.status_code >= 400:
            raise _status_error(resp, _decode_body(resp))
        data = resp.json()
        return [m["id"] for m in data.get("data", []) if m.get("id")]

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ChatCompletionClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _send(self, request: httpx.Request, stream: bool) -> httpx.Response:
        """Send *request*, retrying 429/5xx and transport errors."""
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                resp = await self._client.send(request, stream=stream)
            except httpx.TimeoutException as e:
                last_error = e
                _logger.warning(
                    "LLM API timeout (attempt %d/%d): %s",
                    attempt + 1, self.max_retries, e,
                )
            except httpx.TransportError as e:
                last_error = e
                _logger.warning(
                    "LLM API transport error (attempt %d/%d): %s",
                    attempt + 1, self.max_retries, e,
                )
            else:
                if resp.status_code < 400:
                    return resp

                if stream:
                    await resp.aread()
                    await resp.aclose()
                body = _decode_body(resp)
                error = _status_error(resp, body)
                if resp.status_code not in _RETRY_STATUSES:
                    raise error
                last_error = error
                _logger.warning(
                    "LLM API returned %d (attempt %d/%d), retrying...",
                    resp.status_code, attempt + 1, self.max_retries,
                )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(_BACKOFF_BASE * (2 ** attempt))

        if isinstance(last_error, ChatCompletionError):
            raise last_error
        raise ChatCompletionError(
            f"LLM API request failed: {last_error or 'exhausted retries'}",
        ) from last_error
