"""Chat-completion client, payload builder and stream normalizer."""

from open_harness_litellm.llm.client import ChatCompletionClient, ChatStream
from open_harness_litellm.llm.errors import (
    ChatCompletionError,
    ProviderConfigurationError,
    ProviderRequestError,
)
from open_harness_litellm.llm.payload import ChatCompletionPayload, build_payload
from open_harness_litellm.llm.streaming import NormalizedStream, StreamSummary

__all__ = [
    "ChatCompletionClient",
    "ChatCompletionError",
    "ChatCompletionPayload",
    "ChatStream",
    "NormalizedStream",
    "ProviderConfigurationError",
    "ProviderRequestError",
    "StreamSummary",
    "build_payload",
]
