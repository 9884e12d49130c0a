"""``GET /models`` handler for the LiteLLM provider.

Framework-agnostic: returns a ``RouteResponse`` the host application turns
into its own response type.  The status is always 200; every failure mode
yields an empty model list.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from open_harness_litellm.config import ProviderSettings
from open_harness_litellm.llm.client import ChatCompletionClient
from open_harness_litellm.llm.payload import PROVIDER_PREFIX
from open_harness_litellm.providers.registry import Blacklist

_logger = logging.getLogger(__name__)

PROVIDER_ID = "litellm"
MODELS_CACHE_TTL = 60.0  # seconds


@dataclass
class RouteResponse:
    status_code: int = 200
    body: dict[str, Any] = field(default_factory=lambda: {"models": []})


class ModelListCache:
    """Upstream model ids per base URL, kept for *ttl* seconds.

    Only successful listings are stored; the blacklist is applied on read.
    """

    def __init__(self, ttl: float = MODELS_CACHE_TTL) -> None:
        self.ttl = ttl
        self._entries: dict[str, tuple[float, list[str]]] = {}

    def get(self, base_url: str) -> list[str] | None:
        entry = self._entries.get(base_url)
        if entry is None:
            return None
        stored_at, ids = entry
        if time.monotonic() - stored_at > self.ttl:
            del self._entries[base_url]
            return None
        return list(ids)

    def put(self, base_url: str, ids: list[str]) -> None:
        self._entries[base_url] = (time.monotonic(), list(ids))

    def clear(self) -> None:
        self._entries.clear()


_cache = ModelListCache()


def clear_cache() -> None:
    """Drop every cached upstream listing."""
    _cache.clear()


async def get_litellm_models(
    settings: ProviderSettings,
    blacklist: Blacklist | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    cache: ModelListCache | None = None,
) -> RouteResponse:
    """List the proxy's models as ``{"models": ["litellm/<id>", ...]}``.

    Upstream listings are reused for ``MODELS_CACHE_TTL`` seconds.
    """
    blacklist = blacklist or Blacklist()
    cache = _cache if cache is None else cache

    if blacklist.is_provider_blacklisted(PROVIDER_ID):
        _logger.info("LiteLLM provider is blacklisted, returning empty models")
        return RouteResponse()

    base_url = settings.normalized_base_url
    if not base_url:
        _logger.info("LITELLM_BASE_URL not configured")
        return RouteResponse()

    ids = cache.get(base_url)
    if ids is None:
        _logger.info("Fetching LiteLLM models from %s", base_url)
        client = ChatCompletionClient(
            base_url,
            api_key=settings.api_key or None,
            timeout=settings.timeout,
            transport=transport,
        )
        try:
            ids = await client.list_models()
        except Exception as e:
            _logger.warning("Failed to fetch LiteLLM models from %s: %s", base_url, e)
            return RouteResponse()
        finally:
            await client.close()
        cache.put(base_url, ids)
    else:
        _logger.debug("Using cached LiteLLM models for %s", base_url)

    all_models = [f"{PROVIDER_PREFIX}{model_id}" for model_id in ids]
    models = blacklist.filter_models(all_models)
    _logger.info(
        "Fetched %d LiteLLM model(s), %d filtered", len(models), len(all_models) - len(models),
    )
    return RouteResponse(body={"models": models})
