"""Request orchestration: the tool loop and concurrent tool execution."""

from open_harness_litellm.core.executor import BatchResult, ToolCallExecutor, ToolExecution
from open_harness_litellm.core.orchestrator import MAX_TOOL_ITERATIONS, RequestOrchestrator

__all__ = [
    "BatchResult",
    "MAX_TOOL_ITERATIONS",
    "RequestOrchestrator",
    "ToolCallExecutor",
    "ToolExecution",
]
