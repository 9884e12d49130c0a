"""Inbound route handlers."""

from open_harness_litellm.api.models_route import (
    ModelListCache,
    RouteResponse,
    clear_cache,
    get_litellm_models,
)

__all__ = ["ModelListCache", "RouteResponse", "clear_cache", "get_litellm_models"]
