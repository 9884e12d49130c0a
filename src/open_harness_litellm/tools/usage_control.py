"""Tool preparation helpers: usage control, forced-tool tracking, arguments.

A tool's ``usage_control`` decides how it is offered to the model:

- ``"auto"``  -- offered, the model may call it
- ``"force"`` -- offered and must be called before the model may answer
- ``"none"``  -- not offered at all

Forced tools are enforced one at a time through ``tool_choice``; after the
model has called the directed tool the choice rotates to the next forced
tool that has not been used yet, then falls back to ``"auto"``.
"""

from __future__ import annotations

import logging
from typing import Any

from open_harness_litellm.types import (
    PreparedToolSet,
    ProviderRequest,
    ToolCall,
    ToolDefinition,
)

_logger = logging.getLogger(__name__)

ToolChoiceValue = str | dict[str, Any] | None


def to_openai_tool(tool: ToolDefinition) -> dict[str, Any]:
    """OpenAI function-calling schema for *tool*."""
    return {
        "type": "function",
        "function": {
            "name": tool.id,
            "description": tool.description,
            "parameters": tool.parameters,
        },
    }


def forced_choice(name: str) -> dict[str, Any]:
    return {"type": "function", "function": {"name": name}}


def forced_tool_name(tool_choice: ToolChoiceValue) -> str | None:
    """Name targeted by a forced directive, else ``None``."""
    if isinstance(tool_choice, dict) and tool_choice.get("type") == "function":
        return (tool_choice.get("function") or {}).get("name")
    return None


def prepare_tools_with_usage_control(
    tools: list[dict[str, Any]],
    request_tools: list[ToolDefinition],
    provider_id: str,
) -> PreparedToolSet:
    """Filter *tools* by usage control and resolve the initial tool choice."""
    controls = {t.id: t.usage_control for t in request_tools}

    filtered = [
        t for t in tools
        if controls.get(t["function"]["name"], "auto") != "none"
    ]
    excluded = len(tools) - len(filtered)
    if excluded:
        _logger.info(
            "%s: excluded %d tool(s) with usage control 'none'", provider_id, excluded,
        )

    forced = [
        t["function"]["name"] for t in filtered
        if controls.get(t["function"]["name"]) == "force"
    ]

    if not filtered:
        return PreparedToolSet(tools=[], tool_choice=None, forced_tools=[])

    if forced:
        _logger.info(
            "%s: forcing tool %s (%d forced tool(s) in total)",
            provider_id, forced[0], len(forced),
        )
        return PreparedToolSet(
            tools=filtered,
            tool_choice=forced_choice(forced[0]),
            forced_tools=forced,
        )
    return PreparedToolSet(tools=filtered, tool_choice="auto", forced_tools=[])


def track_forced_tool_usage(
    tool_calls: list[ToolCall],
    tool_choice: ToolChoiceValue,
    forced_tools: list[str],
    used_forced_tools: list[str],
) -> tuple[list[str], bool]:
    """Decide whether the forced tool was called.

    Returns ``(used_forced_tools, has_used_forced_tool)``.  The input list
    is not modified.  Only meaningful for a forced *tool_choice* and a
    non-empty *tool_calls*; otherwise the inputs come back unchanged.
    """
    used = list(used_forced_tools)
    target = forced_tool_name(tool_choice)
    if target is None or not tool_calls:
        return used, False

    called = [tc.name for tc in tool_calls]
    has_used = target in called
    if has_used:
        for name in called:
            if name in forced_tools and name not in used:
                used.append(name)
    return used, has_used


def next_tool_choice(
    original: ToolChoiceValue,
    current: ToolChoiceValue,
    has_used_forced_tool: bool,
    forced_tools: list[str],
    used_forced_tools: list[str],
) -> ToolChoiceValue:
    """Tool choice for the next model call of the loop.

    Only rotates when the request started with a forced choice and the
    directed tool has been called; otherwise *current* is kept.
    """
    if not isinstance(original, dict) or not has_used_forced_tool or not forced_tools:
        return current

    remaining = [t for t in forced_tools if t not in used_forced_tools]
    if remaining:
        _logger.info("Forcing next tool: %s", remaining[0])
        return forced_choice(remaining[0])
    _logger.info("All forced tools have been used, switching to auto tool_choice")
    return "auto"


def prepare_tool_execution(
    tool: ToolDefinition,
    llm_args: dict[str, Any],
    request: ProviderRequest,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Merge model arguments with caller pre-filled params.

    Returns ``(tool_params, execution_params)``: the arguments as reported
    in the tool-call record, and those handed to the invoker (which also
    carry the request's execution context under ``_context``).
    """
    preset = {
        k: v for k, v in tool.params.items()
        if v is not None and v != ""
    }
    tool_params = {**llm_args, **preset}

    execution_params = dict(tool_params)
    if request.execution_context:
        execution_params["_context"] = dict(request.execution_context)
    return tool_params, execution_params
