"""Tool registry with plugin discovery; the default ``ToolInvoker``."""

from __future__ import annotations

import logging
from importlib.metadata import entry_points
from typing import Any

from open_harness_litellm.tools.base import Tool
from open_harness_litellm.types import ToolDefinition, ToolResult

_logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "open_harness_litellm.tools"


class ToolRegistry:
    """Registry of tools that invokes them by name."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def definitions(self) -> list[ToolDefinition]:
        """``ToolDefinition`` for every registered tool."""
        return [t.to_definition() for t in self._tools.values()]

    async def invoke(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Run tool *name* with *arguments*.

        Unknown tools and exceptions raised by the tool come back as a
        failed ``ToolResult``.
        """
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult(
                success=False,
                error=f"Unknown tool: {name}. Available: {', '.join(self._tools)}",
            )
        # Private execution context is not part of the tool's own signature
        kwargs = {k: v for k, v in arguments.items() if k != "_context"}
        try:
            return await tool.execute(**kwargs)
        except Exception as e:
            return ToolResult(
                success=False,
                error=f"Tool '{name}' execution failed: {type(e).__name__}: {e}",
            )

    def discover(self) -> None:
        """Load tools from the ``open_harness_litellm.tools`` entry point group.

        Each entry point may be a Tool subclass, a Tool instance or a
        factory returning one.
        """
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                obj = ep.load()
                if isinstance(obj, type) and issubclass(obj, Tool):
                    tool = obj()
                elif isinstance(obj, Tool):
                    tool = obj
                elif callable(obj):
                    tool = obj()
                else:
                    _logger.warning(
                        "Entry point %s did not return a Tool: %s", ep.name, type(obj)
                    )
                    continue
                self.register(tool)
                _logger.info("Discovered plugin tool: %s", tool.name)
            except Exception:
                _logger.exception("Failed to load tool plugin: %s", ep.name)
