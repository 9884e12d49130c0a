"""Tool abstractions: the invoker contract and an async Tool base class."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Protocol

from open_harness_litellm.types import ToolDefinition, ToolResult, UsageControl


class ToolInvoker(Protocol):
    """Executes a named tool: ``invoke(name, args) -> ToolResult``."""

    async def invoke(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        ...


class Tool(ABC):
    """Base class for tools.

    Subclasses set ``name``, ``description`` and ``parameters`` (a JSON
    schema) as class attributes and implement the async ``execute()``.
    """

    name: str
    description: str
    parameters: dict[str, Any] = {"type": "object", "properties": {}}
    usage_control: UsageControl = "auto"

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool asynchronously."""

    def to_definition(self, **overrides: Any) -> ToolDefinition:
        """Describe this tool for a ``ProviderRequest``."""
        fields: dict[str, Any] = {
            "id": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "usage_control": self.usage_control,
        }
        fields.update(overrides)
        return ToolDefinition(**fields)
