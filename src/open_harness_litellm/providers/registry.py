"""Discovered-model registry and provider/model blacklist."""

from __future__ import annotations

import fnmatch
import logging

from open_harness_litellm.config import BlacklistSpec

_logger = logging.getLogger(__name__)


class ModelRegistry:
    """Per-provider model lists published at startup and read for validation.

    One instance is owned by the application and handed to whoever needs
    it; the discovery bootstrap is the only writer.
    """

    def __init__(self) -> None:
        self._models: dict[str, list[str]] = {}

    def set_provider_models(self, provider: str, models: list[str]) -> None:
        self._models[provider] = list(models)
        _logger.debug("Registered %d model(s) for %s", len(models), provider)

    def get_provider_models(self, provider: str) -> list[str]:
        return list(self._models.get(provider, []))

    def is_initialized(self, provider: str) -> bool:
        return provider in self._models

    def has_model(self, provider: str, model: str) -> bool:
        return model in self._models.get(provider, [])


class Blacklist:
    """Hides providers and models from discovery results.

    Model entries are case-insensitive ``fnmatch`` patterns checked against
    both the namespaced id (``litellm/gpt-4``) and the bare id (``gpt-4``).
    """

    def __init__(self, spec: BlacklistSpec | None = None) -> None:
        spec = spec or BlacklistSpec()
        self._providers = {p.lower() for p in spec.providers}
        self._patterns = [m.lower() for m in spec.models]

    def is_provider_blacklisted(self, provider: str) -> bool:
        return provider.lower() in self._providers

    def is_model_blacklisted(self, model: str) -> bool:
        full = model.lower()
        bare = full.split("/", 1)[1] if "/" in full else full
        return any(
            fnmatch.fnmatchcase(full, p) or fnmatch.fnmatchcase(bare, p)
            for p in self._patterns
        )

    def filter_models(self, models: list[str]) -> list[str]:
        return [m for m in models if not self.is_model_blacklisted(m)]
