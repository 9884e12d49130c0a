"""Orchestrator -- drives one provider request end to end.

    payload → [stream fast path]
            → model → tools → model → ... (bounded) → buffered result
                                                     → final stream

The orchestrator owns the request-scoped telemetry (tokens, time segments,
tool-call records) and wraps any failure of the model calls into a single
``ProviderRequestError`` that carries what was accumulated so far.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from open_harness_litellm.core.executor import BatchResult, ToolCallExecutor
from open_harness_litellm.core.timing import iso_from_ms, now_ms
from open_harness_litellm.events.bus import EventBus
from open_harness_litellm.llm.client import ChatCompletionClient
from open_harness_litellm.llm.errors import ProviderRequestError, extract_provider_error
from open_harness_litellm.llm.payload import (
    ChatCompletionPayload,
    attach_tools,
    build_initial_messages,
    build_payload,
    describe_tool_choice,
    strip_code_fences,
)
from open_harness_litellm.llm.streaming import NormalizedStream
from open_harness_litellm.pricing import CostCalculator
from open_harness_litellm.tools.base import ToolInvoker
from open_harness_litellm.tools.usage_control import (
    ToolChoiceValue,
    forced_tool_name,
    next_tool_choice,
    prepare_tools_with_usage_control,
    to_openai_tool,
    track_forced_tool_usage,
)
from open_harness_litellm.types import (
    CostBreakdown,
    EventType,
    ExecutionResult,
    LLMResponse,
    PreparedToolSet,
    ProviderEvent,
    ProviderRequest,
    ProviderTiming,
    StreamingExecution,
    TimeSegment,
    TokenUsage,
    ToolCallRecord,
)

_logger = logging.getLogger(__name__)

MAX_TOOL_ITERATIONS = 20


@dataclass
class _RunState:
    """Mutable, request-scoped accumulators."""

    start_time: float
    messages: list[dict[str, Any]] = field(default_factory=list)
    content: str = ""
    tokens: TokenUsage = field(default_factory=TokenUsage)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    tool_results: list[Any] = field(default_factory=list)
    time_segments: list[TimeSegment] = field(default_factory=list)
    model_time: float = 0.0
    tools_time: float = 0.0
    first_response_time: float = 0.0
    iteration_count: int = 0
    used_forced_tools: list[str] = field(default_factory=list)
    has_used_forced_tool: bool = False

    def timing(self, end_time: float) -> ProviderTiming:
        return ProviderTiming(
            start_time=iso_from_ms(self.start_time),
            end_time=iso_from_ms(end_time),
            duration=end_time - self.start_time,
            model_time=self.model_time,
            tools_time=self.tools_time,
            first_response_time=self.first_response_time,
            iterations=self.iteration_count + 1,
            time_segments=self.time_segments,
        )


class RequestOrchestrator:
    """Runs a ``ProviderRequest`` against a chat-completion client.

    Parameters
    ----------
    client:
        OpenAI-compatible chat-completion client.
    invoker:
        Executes the tools the model asks for.
    cost_calculator:
        ``(model, input_tokens, output_tokens) -> CostBreakdown``.
    provider_id:
        Used in log messages and tool preparation.
    max_tool_iterations:
        Hard cap on tool-loop passes.
    event_bus:
        Optional bus for request events.
    """

    def __init__(
        self,
        client: ChatCompletionClient,
        invoker: ToolInvoker,
        cost_calculator: CostCalculator,
        provider_id: str = "litellm",
        max_tool_iterations: int = MAX_TOOL_ITERATIONS,
        event_bus: EventBus | None = None,
    ) -> None:
        self._client = client
        self._cost = cost_calculator
        self._provider_id = provider_id
        self._max_iterations = max_tool_iterations
        self._event_bus = event_bus
        self._executor = ToolCallExecutor(invoker, event_bus)

    async def execute(
        self, request: ProviderRequest,
    ) -> ExecutionResult | StreamingExecution:
        """Run *request*; returns a stream only if ``request.stream`` is set."""
        _logger.info(
            "Preparing %s request: model=%s system_prompt=%s messages=%d "
            "tools=%d response_format=%s stream=%s",
            self._provider_id, request.model, bool(request.system_prompt),
            len(request.messages), len(request.tools),
            request.response_format is not None, request.stream,
        )

        state = _RunState(start_time=now_ms())
        state.messages = build_initial_messages(request)

        try:
            payload = build_payload(request, state.messages)

            prepared: PreparedToolSet | None = None
            if request.tools:
                prepared = prepare_tools_with_usage_control(
                    [to_openai_tool(t) for t in request.tools],
                    request.tools,
                    self._provider_id,
                )
                if prepared.is_active:
                    payload = attach_tools(payload, prepared.tools, prepared.tool_choice)
                    _logger.info(
                        "%s request configuration: tools=%d tool_choice=%s model=%s",
                        self._provider_id, len(prepared.tools),
                        describe_tool_choice(prepared.tool_choice), payload.model,
                    )
            has_active_tools = prepared is not None and prepared.is_active

            if request.stream and not has_active_tools:
                return await self._stream_without_tools(request, payload, state)

            return await self._run_tool_loop(request, payload, prepared, state)
        except Exception as exc:
            raise await self._request_failed(exc, request, state) from exc

    # ------------------------------------------------------------------
    # Streaming fast path
    # ------------------------------------------------------------------

    async def _stream_without_tools(
        self,
        request: ProviderRequest,
        payload: ChatCompletionPayload,
        state: _RunState,
    ) -> StreamingExecution:
        _logger.info("Using streaming response for %s request", self._provider_id)

        call_start = now_ms()
        await self._emit(EventType.LLM_REQUEST, {
            "model": payload.model, "stream": True, "iteration": 0,
        })
        chunks = await self._client.stream(payload.as_stream())
        opened = now_ms()
        state.first_response_time = opened - call_start

        segment = TimeSegment(
            type="model",
            name="Streaming response",
            start_time=call_start,
            end_time=opened,
            duration=opened - call_start,
        )
        state.time_segments.append(segment)
        execution = ExecutionResult(model=request.model, timing=state.timing(opened))

        def finalize(content: str, usage: dict[str, int]) -> None:
            tokens = TokenUsage.from_openai(usage)
            execution.content = self._clean_content(content, request)
            execution.tokens = tokens
            execution.cost = self._cost(request.model, tokens.input, tokens.output)

            end = now_ms()
            segment.end_time = end
            segment.duration = end - call_start
            timing = execution.timing
            timing.end_time = iso_from_ms(end)
            timing.duration = end - state.start_time
            timing.model_time = segment.duration

        await self._emit(EventType.LLM_STREAMING, {"model": payload.model, "after_tools": False})
        return StreamingExecution(stream=NormalizedStream(chunks, finalize), execution=execution)

    # ------------------------------------------------------------------
    # Buffered tool loop
    # ------------------------------------------------------------------

    async def _run_tool_loop(
        self,
        request: ProviderRequest,
        payload: ChatCompletionPayload,
        prepared: PreparedToolSet | None,
        state: _RunState,
    ) -> ExecutionResult | StreamingExecution:
        forced_tools = prepared.forced_tools if prepared else []
        original_choice: ToolChoiceValue = (
            prepared.tool_choice if prepared and prepared.is_active else None
        )
        current_choice = original_choice

        call_start = now_ms()
        response = await self._call_model(payload, iteration=0)
        call_end = now_ms()
        state.first_response_time = call_end - call_start
        state.model_time = state.first_response_time
        state.time_segments.append(TimeSegment(
            type="model",
            name="Initial response",
            start_time=call_start,
            end_time=call_end,
            duration=call_end - call_start,
        ))
        state.tokens.add(TokenUsage.from_openai(response.usage))
        state.content = self._clean_content(response.content, request)
        self._check_forced_tool_usage(response, current_choice, forced_tools, state)

        while state.iteration_count < self._max_iterations:
            if response.content:
                state.content = self._clean_content(response.content, request)

            if not response.has_tool_calls:
                break

            _logger.info(
                "Processing %d tool calls (iteration %d/%d)",
                len(response.tool_calls), state.iteration_count + 1, self._max_iterations,
            )

            batch = await self._executor.execute(response.tool_calls, request)
            self._record_batch(response, batch, state)

            current_choice = next_tool_choice(
                original_choice,
                current_choice,
                state.has_used_forced_tool,
                forced_tools,
                state.used_forced_tools,
            )
            next_payload = payload.with_messages(state.messages).with_tool_choice(current_choice)

            call_start = now_ms()
            response = await self._call_model(
                next_payload, iteration=state.iteration_count + 1,
            )
            call_end = now_ms()
            self._check_forced_tool_usage(response, current_choice, forced_tools, state)

            state.time_segments.append(TimeSegment(
                type="model",
                name=f"Model response (iteration {state.iteration_count + 1})",
                start_time=call_start,
                end_time=call_end,
                duration=call_end - call_start,
            ))
            state.model_time += call_end - call_start

            if response.content:
                state.content = self._clean_content(response.content, request)
            state.tokens.add(TokenUsage.from_openai(response.usage))

            state.iteration_count += 1

        if state.iteration_count >= self._max_iterations and response.has_tool_calls:
            _logger.warning(
                "Reached the tool iteration cap (%d) with tool calls still pending",
                self._max_iterations,
            )

        if request.stream:
            return await self._stream_after_tools(request, payload, state)

        end = now_ms()
        return ExecutionResult(
            content=state.content,
            model=request.model,
            tokens=state.tokens,
            cost=self._cost(request.model, state.tokens.input, state.tokens.output),
            tool_calls=state.tool_calls,
            tool_results=state.tool_results,
            timing=state.timing(end),
        )

    def _record_batch(
        self,
        response: LLMResponse,
        batch: BatchResult,
        state: _RunState,
    ) -> None:
        """Append the assistant turn and one tool message per settled call."""
        state.messages.append({
            "role": "assistant",
            "content": None,
            "tool_calls": [tc.to_message_part() for tc in response.tool_calls],
        })

        for ex in batch.executions:
            state.time_segments.append(TimeSegment(
                type="tool",
                name=ex.name,
                start_time=ex.start_time,
                end_time=ex.end_time,
                duration=ex.duration,
            ))

            if ex.result.success:
                state.tool_results.append(ex.result.output)
                result_content: Any = ex.result.output
            else:
                result_content = {
                    "error": True,
                    "message": ex.result.error or "Tool execution failed",
                    "tool": ex.name,
                }

            state.tool_calls.append(ToolCallRecord(
                name=ex.name,
                arguments=ex.tool_params,
                start_time=iso_from_ms(ex.start_time),
                end_time=iso_from_ms(ex.end_time),
                duration=ex.duration,
                result=result_content,
                success=ex.result.success,
            ))
            state.messages.append({
                "role": "tool",
                "tool_call_id": ex.tool_call.id,
                "content": json.dumps(result_content, default=str),
            })

        state.tools_time += batch.duration

    def _check_forced_tool_usage(
        self,
        response: LLMResponse,
        tool_choice: ToolChoiceValue,
        forced_tools: list[str],
        state: _RunState,
    ) -> None:
        if forced_tool_name(tool_choice) is None or not response.has_tool_calls:
            return
        state.used_forced_tools, state.has_used_forced_tool = track_forced_tool_usage(
            response.tool_calls,
            tool_choice,
            forced_tools,
            state.used_forced_tools,
        )

    # ------------------------------------------------------------------
    # Streaming after tools
    # ------------------------------------------------------------------

    async def _stream_after_tools(
        self,
        request: ProviderRequest,
        payload: ChatCompletionPayload,
        state: _RunState,
    ) -> StreamingExecution:
        _logger.info("Using streaming for final response after tool processing")

        base_tokens = TokenUsage(state.tokens.input, state.tokens.output, state.tokens.total)
        base_cost = self._cost(request.model, base_tokens.input, base_tokens.output)

        stream_payload = (
            payload.with_messages(state.messages).with_tool_choice("auto").as_stream()
        )
        call_start = now_ms()
        await self._emit(EventType.LLM_REQUEST, {
            "model": payload.model, "stream": True,
            "iteration": state.iteration_count + 1,
        })
        chunks = await self._client.stream(stream_payload)

        execution = ExecutionResult(
            model=request.model,
            tokens=TokenUsage(base_tokens.input, base_tokens.output, base_tokens.total),
            cost=CostBreakdown(base_cost.input, base_cost.output, base_cost.total),
            tool_calls=state.tool_calls,
            tool_results=state.tool_results,
            timing=state.timing(now_ms()),
        )

        def finalize(content: str, usage: dict[str, int]) -> None:
            stream_tokens = TokenUsage.from_openai(usage)
            execution.content = self._clean_content(content, request)
            execution.tokens = base_tokens + stream_tokens
            execution.cost = base_cost + self._cost(
                request.model, stream_tokens.input, stream_tokens.output,
            )

            end = now_ms()
            timing = execution.timing
            timing.time_segments.append(TimeSegment(
                type="model",
                name="Streaming response",
                start_time=call_start,
                end_time=end,
                duration=end - call_start,
            ))
            timing.model_time += end - call_start
            timing.end_time = iso_from_ms(end)
            timing.duration = end - state.start_time

        await self._emit(EventType.LLM_STREAMING, {"model": payload.model, "after_tools": True})
        return StreamingExecution(stream=NormalizedStream(chunks, finalize), execution=execution)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call_model(self, payload: ChatCompletionPayload, iteration: int) -> LLMResponse:
        await self._emit(EventType.LLM_REQUEST, {
            "model": payload.model,
            "stream": False,
            "iteration": iteration,
            "tool_choice": describe_tool_choice(payload.tool_choice),
        })
        response = await self._client.create(payload)
        await self._emit(EventType.LLM_RESPONSE, {
            "model": response.model,
            "iteration": iteration,
            "tool_calls": len(response.tool_calls),
            "latency_ms": response.latency_ms,
            "usage": response.usage,
        })
        return response

    @staticmethod
    def _clean_content(content: str, request: ProviderRequest) -> str:
        if content and request.response_format is not None:
            return strip_code_fences(content)
        return content

    async def _request_failed(
        self,
        exc: Exception,
        request: ProviderRequest,
        state: _RunState,
    ) -> ProviderRequestError:
        end = now_ms()
        duration = end - state.start_time
        message, error_type, error_code = extract_provider_error(exc)

        _logger.error(
            "Error in %s request: %s (type=%s, code=%s, duration=%.0fms)",
            self._provider_id, message, error_type, error_code, duration,
        )
        await self._emit(EventType.LLM_ERROR, {
            "error": message,
            "error_type": error_type,
            "error_code": error_code,
        })

        return ProviderRequestError(
            message,
            timing={
                "start_time": iso_from_ms(state.start_time),
                "end_time": iso_from_ms(end),
                "duration": duration,
            },
            error_type=error_type,
            error_code=error_code,
            tokens=state.tokens,
            cost=self._cost(request.model, state.tokens.input, state.tokens.output),
            time_segments=state.time_segments,
        )

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.emit(ProviderEvent(type=event_type, data=data))
