"""Typed builder for OpenAI-compatible chat-completion payloads.

The payload is assembled once per request and then copied (never mutated)
for every follow-up call of the tool loop.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from open_harness_litellm.types import ProviderRequest

_logger = logging.getLogger(__name__)

PROVIDER_PREFIX = "litellm/"

_CODE_FENCE_RE = re.compile(r"```json\n?|\n?```")


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------

class ForcedFunction(BaseModel):
    name: str = Field(min_length=1)


class ForcedToolChoice(BaseModel):
    """``{"type": "function", "function": {"name": ...}}``"""

    type: Literal["function"] = "function"
    function: ForcedFunction

    @classmethod
    def for_tool(cls, name: str) -> ForcedToolChoice:
        return cls(function=ForcedFunction(name=name))


ToolChoice = Union[Literal["auto", "none"], ForcedToolChoice]


class JsonSchemaSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = "response_schema"
    schema_: dict[str, Any] = Field(alias="schema")
    strict: bool = True


class JsonSchemaResponseFormat(BaseModel):
    type: Literal["json_schema"] = "json_schema"
    json_schema: JsonSchemaSpec


class StreamOptions(BaseModel):
    include_usage: bool = True


class ChatCompletionPayload(BaseModel):
    """Request body for ``POST /v1/chat/completions``."""

    model: str = Field(min_length=1)
    messages: list[dict[str, Any]] = Field(min_length=1)
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, gt=0)
    response_format: JsonSchemaResponseFormat | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: ToolChoice | None = None
    stream: bool | None = None
    stream_options: StreamOptions | None = None

    @model_validator(mode="after")
    def _check_consistency(self) -> ChatCompletionPayload:
        if self.tool_choice is not None and not self.tools:
            raise ValueError("tool_choice requires a non-empty tools list")
        if self.stream_options is not None and not self.stream:
            raise ValueError("stream_options is only valid for streaming requests")
        return self

    def to_body(self) -> dict[str, Any]:
        """Serialize to the JSON body sent on the wire."""
        return self.model_dump(exclude_none=True, by_alias=True)

    def with_messages(self, messages: list[dict[str, Any]]) -> ChatCompletionPayload:
        return self.model_copy(update={"messages": list(messages)})

    def with_tool_choice(
        self, tool_choice: str | dict[str, Any] | None,
    ) -> ChatCompletionPayload:
        if tool_choice is None or not self.tools:
            return self.model_copy(update={"tool_choice": None})
        return ChatCompletionPayload.model_validate(
            {**self.model_dump(by_alias=True), "tool_choice": tool_choice},
        )

    def as_stream(self) -> ChatCompletionPayload:
        return self.model_copy(
            update={"stream": True, "stream_options": StreamOptions()},
        )


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def strip_provider_prefix(model: str) -> str:
    """``litellm/gpt-4`` -> ``gpt-4``."""
    if model.startswith(PROVIDER_PREFIX):
        return model[len(PROVIDER_PREFIX):]
    return model


def strip_code_fences(text: str) -> str:
    """Remove markdown ```json fences around structured output."""
    return _CODE_FENCE_RE.sub("", text).strip()


def build_initial_messages(request: ProviderRequest) -> list[dict[str, Any]]:
    """System prompt, then context, then caller messages."""
    messages: list[dict[str, Any]] = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})
    if request.context:
        messages.append({"role": "user", "content": request.context})
    messages.extend(request.messages)
    return messages


def build_payload(
    request: ProviderRequest,
    messages: list[dict[str, Any]],
) -> ChatCompletionPayload:
    """Build the base payload for *request* (no tools attached yet)."""
    data: dict[str, Any] = {
        "model": strip_provider_prefix(request.model),
        "messages": messages,
        "temperature": request.temperature,
        "max_tokens": request.max_tokens,
    }
    if request.response_format is not None:
        fmt = request.response_format
        data["response_format"] = {
            "type": "json_schema",
            "json_schema": {
                "name": fmt.name or "response_schema",
                "schema": fmt.schema,
                "strict": fmt.strict is not False,
            },
        }
        _logger.info("Added JSON schema response format to LiteLLM request")
    return ChatCompletionPayload.model_validate(data)


def attach_tools(
    payload: ChatCompletionPayload,
    tools: list[dict[str, Any]],
    tool_choice: str | dict[str, Any],
) -> ChatCompletionPayload:
    return ChatCompletionPayload.model_validate(
        {**payload.model_dump(by_alias=True), "tools": tools, "tool_choice": tool_choice},
    )


def describe_tool_choice(tool_choice: str | dict[str, Any] | ForcedToolChoice | None) -> str:
    """Short label for logs: ``auto``, ``none`` or ``force:<name>``."""
    if tool_choice is None:
        return "none"
    if isinstance(tool_choice, str):
        return tool_choice
    if isinstance(tool_choice, ForcedToolChoice):
        return f"force:{tool_choice.function.name}"
    if tool_choice.get("type") == "function":
        return f"force:{tool_choice.get('function', {}).get('name', '?')}"
    return "unknown"
