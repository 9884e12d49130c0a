"""Tool invoker contract, registry and tool preparation helpers."""

from open_harness_litellm.tools.base import Tool, ToolInvoker
from open_harness_litellm.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolInvoker", "ToolRegistry"]
