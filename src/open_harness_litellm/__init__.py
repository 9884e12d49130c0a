"""LiteLLM provider adapter with a bounded tool-calling loop."""

from open_harness_litellm.config import GatewayConfig, ProviderSettings, load_config
from open_harness_litellm.core.orchestrator import RequestOrchestrator
from open_harness_litellm.providers.litellm import LiteLLMProvider
from open_harness_litellm.types import (
    ExecutionResult,
    ProviderRequest,
    ResponseFormat,
    StreamingExecution,
    ToolDefinition,
)

__version__ = "0.1.0"

__all__ = [
    "ExecutionResult",
    "GatewayConfig",
    "LiteLLMProvider",
    "ProviderRequest",
    "ProviderSettings",
    "RequestOrchestrator",
    "ResponseFormat",
    "StreamingExecution",
    "ToolDefinition",
    "load_config",
]
