"""Executor -- runs one model turn's tool calls concurrently.

Every call of a batch is started at once and the batch waits for all of
them to settle.  A failing call (bad JSON arguments, unknown tool, invoker
exception) becomes a failed ``ToolResult`` and never affects its siblings.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from open_harness_litellm.core.timing import now_ms
from open_harness_litellm.events.bus import EventBus
from open_harness_litellm.tools.base import ToolInvoker
from open_harness_litellm.tools.usage_control import prepare_tool_execution
from open_harness_litellm.types import (
    EventType,
    ProviderEvent,
    ProviderRequest,
    ToolCall,
    ToolResult,
)

_logger = logging.getLogger(__name__)


@dataclass
class ToolExecution:
    """Outcome of one tool call with its own start/end (epoch ms)."""

    tool_call: ToolCall
    tool_params: dict[str, Any]
    result: ToolResult
    start_time: float
    end_time: float

    @property
    def name(self) -> str:
        return self.tool_call.name

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class BatchResult:
    """All settled calls of a batch, in the order they settled."""

    executions: list[ToolExecution] = field(default_factory=list)
    start_time: float = 0.0
    end_time: float = 0.0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def all_succeeded(self) -> bool:
        return all(e.result.success for e in self.executions)


class ToolCallExecutor:
    """Dispatches tool calls through a ``ToolInvoker``.

    Usage::

        executor = ToolCallExecutor(registry, event_bus)
        batch = await executor.execute(response.tool_calls, request)
    """

    def __init__(self, invoker: ToolInvoker, event_bus: EventBus | None = None) -> None:
        self._invoker = invoker
        self._event_bus = event_bus

    async def execute(
        self,
        tool_calls: list[ToolCall],
        request: ProviderRequest,
    ) -> BatchResult:
        batch = BatchResult(start_time=now_ms())

        async def _run_one(tc: ToolCall) -> None:
            execution = await self._run_call(tc, request)
            batch.executions.append(execution)

        outcomes = await asyncio.gather(
            *[_run_one(tc) for tc in tool_calls],
            return_exceptions=True,
        )
        for tc, outcome in zip(tool_calls, outcomes):
            if isinstance(outcome, BaseException):
                _logger.error("Tool call %s did not settle: %s", tc.name, outcome)

        batch.end_time = now_ms()
        return batch

    async def _run_call(self, tc: ToolCall, request: ProviderRequest) -> ToolExecution:
        start = now_ms()
        tool_params: dict[str, Any] = {}
        try:
            args = tc.parsed_arguments()
            tool = request.find_tool(tc.name)
            if tool is None:
                raise LookupError(f"Unknown tool: {tc.name}")

            tool_params, execution_params = prepare_tool_execution(tool, args, request)
            await self._emit(EventType.TOOL_EXECUTING, {
                "tool": tc.name,
                "arguments": tool_params,
            })
            result = await self._invoker.invoke(tc.name, execution_params)
        except Exception as e:
            _logger.error("Error processing tool call %s: %s", tc.name, e)
            tool_params = {}
            result = ToolResult(
                success=False,
                error=str(e) or "Tool execution failed",
            )
        end = now_ms()

        if result.success:
            await self._emit(EventType.TOOL_EXECUTED, {
                "tool": tc.name,
                "duration": end - start,
            })
        else:
            await self._emit(EventType.TOOL_ERROR, {
                "tool": tc.name,
                "error": result.error,
            })

        return ToolExecution(
            tool_call=tc,
            tool_params=tool_params,
            result=result,
            start_time=start,
            end_time=end,
        )

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.emit(ProviderEvent(type=event_type, data=data))
