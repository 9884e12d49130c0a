"""Shared data types for the LiteLLM provider adapter."""

from __future__ import annotations

import enum
import json
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    import asyncio

    from open_harness_litellm.llm.streaming import NormalizedStream, StreamSummary


UsageControl = Literal["auto", "force", "none"]
SegmentType = Literal["model", "tool"]


# ---------------------------------------------------------------------------
# Request types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolDefinition:
    """A tool offered to the model for one request."""

    id: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)
    usage_control: UsageControl = "auto"
    # Values pre-filled by the caller; they win over model-supplied arguments
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResponseFormat:
    """JSON-schema structured output request."""

    schema: dict[str, Any]
    name: str = "response_schema"
    strict: bool = True


@dataclass(frozen=True)
class ProviderRequest:
    """Everything needed for one orchestration run."""

    model: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    system_prompt: str | None = None
    context: str | None = None
    tools: list[ToolDefinition] = field(default_factory=list)
    response_format: ResponseFormat | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = False
    api_key: str | None = None
    base_url: str | None = None
    execution_context: dict[str, Any] | None = None

    def find_tool(self, tool_id: str) -> ToolDefinition | None:
        for tool in self.tools:
            if tool.id == tool_id:
                return tool
        return None


@dataclass
class PreparedToolSet:
    """Tools eligible for the current call plus the resolved tool choice."""

    tools: list[dict[str, Any]] = field(default_factory=list)
    tool_choice: str | dict[str, Any] | None = None
    forced_tools: list[str] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return bool(self.tools) and self.tool_choice is not None


# ---------------------------------------------------------------------------
# Tool types
# ---------------------------------------------------------------------------

@dataclass
class ToolCall:
    """Native tool call emitted by the model."""

    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode the raw JSON argument string.  Raises on malformed JSON."""
        if not self.arguments:
            return {}
        args = json.loads(self.arguments)
        if not isinstance(args, dict):
            raise ValueError(f"Tool arguments must be a JSON object, got {type(args).__name__}")
        return args

    def to_message_part(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ToolResult:
    """Result of a tool invocation."""

    success: bool
    output: Any = None
    error: str = ""


@dataclass
class ToolCallRecord:
    """One executed tool call, as reported back to the caller."""

    name: str
    arguments: dict[str, Any]
    start_time: str
    end_time: str
    duration: float
    result: Any
    success: bool


# ---------------------------------------------------------------------------
# Telemetry types
# ---------------------------------------------------------------------------

@dataclass
class TimeSegment:
    """A labelled interval for latency breakdown (epoch milliseconds)."""

    type: SegmentType
    name: str
    start_time: float
    end_time: float
    duration: float


@dataclass
class TokenUsage:
    input: int = 0
    output: int = 0
    total: int = 0

    @classmethod
    def from_openai(cls, usage: dict[str, Any] | None) -> TokenUsage:
        """Build from an OpenAI ``usage`` object (missing fields count as 0)."""
        usage = usage or {}
        prompt = int(usage.get("prompt_tokens") or 0)
        completion = int(usage.get("completion_tokens") or 0)
        return cls(input=prompt, output=completion, total=prompt + completion)

    def add(self, other: TokenUsage) -> None:
        self.input += other.input
        self.output += other.output
        self.total = self.input + self.output

    def __add__(self, other: TokenUsage) -> TokenUsage:
        result = TokenUsage(self.input, self.output, self.total)
        result.add(other)
        return result


@dataclass
class CostBreakdown:
    input: float = 0.0
    output: float = 0.0
    total: float = 0.0

    def __add__(self, other: CostBreakdown) -> CostBreakdown:
        return CostBreakdown(
            input=self.input + other.input,
            output=self.output + other.output,
            total=self.total + other.total,
        )


@dataclass
class ProviderTiming:
    start_time: str
    end_time: str
    duration: float
    model_time: float = 0.0
    tools_time: float = 0.0
    first_response_time: float = 0.0
    iterations: int = 1
    time_segments: list[TimeSegment] = field(default_factory=list)


# ---------------------------------------------------------------------------
# LLM types
# ---------------------------------------------------------------------------

@dataclass
class LLMResponse:
    """One parsed chat-completion response."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str = ""
    usage: dict[str, int] = field(default_factory=dict)
    model: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)
    latency_ms: float = 0

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


@dataclass
class ExecutionResult:
    """Buffered outcome of a request (also the telemetry of a stream)."""

    content: str = ""
    model: str = ""
    tokens: TokenUsage = field(default_factory=TokenUsage)
    cost: CostBreakdown = field(default_factory=CostBreakdown)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    tool_results: list[Any] = field(default_factory=list)
    timing: ProviderTiming | None = None
    success: bool = True


@dataclass
class StreamingExecution:
    """A live token stream plus the result it fills in once drained.

    ``execution`` holds the loop telemetry up front; content, final token
    counts, cost and timing end are written when ``stream`` is exhausted.
    A caller that will not drain the stream must ``await aclose()``.
    """

    stream: NormalizedStream
    execution: ExecutionResult

    @property
    def finalized(self) -> asyncio.Future[StreamSummary]:
        return self.stream.finalized

    async def read_all(self) -> ExecutionResult:
        """Drain the stream and return the completed execution."""
        async for _ in self.stream:
            pass
        await self.stream.finalized
        return self.execution

    async def aclose(self) -> None:
        """Abandon the stream and release its connection."""
        await self.stream.aclose()


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Events emitted while a request is orchestrated."""

    LLM_REQUEST = "llm.request"
    LLM_RESPONSE = "llm.response"
    LLM_STREAMING = "llm.streaming"
    LLM_ERROR = "llm.error"

    TOOL_EXECUTING = "tool.executing"
    TOOL_EXECUTED = "tool.executed"
    TOOL_ERROR = "tool.error"

    MODELS_DISCOVERED = "models.discovered"


@dataclass
class ProviderEvent:
    """Event emitted via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
