"""Provider adapters and the discovered-model registry."""

from open_harness_litellm.providers.litellm import LiteLLMProvider
from open_harness_litellm.providers.registry import Blacklist, ModelRegistry

__all__ = ["Blacklist", "LiteLLMProvider", "ModelRegistry"]
