"""Configuration for the LiteLLM provider adapter.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./open_harness_litellm.yaml``
  3. ``~/.config/open-harness-litellm/config.yaml``
  4. Built-in defaults

Environment variables are applied on top of whatever was loaded:
``LITELLM_BASE_URL``, ``LITELLM_API_KEY``, ``BLACKLISTED_PROVIDERS`` and
``BLACKLISTED_MODELS`` (comma-separated).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class ProviderSettings:
    """Connection and loop settings for the LiteLLM proxy."""

    base_url: str = ""
    api_key: str = ""
    timeout: float = 120
    max_retries: int = 3
    max_tool_iterations: int = 20
    default_model: str = ""
    models: list[str] = field(default_factory=list)
    # True when running inside a browser-like client context
    client_side: bool = False

    @property
    def normalized_base_url(self) -> str:
        return (self.base_url or "").rstrip("/")


@dataclass
class BlacklistSpec:
    providers: list[str] = field(default_factory=list)
    models: list[str] = field(default_factory=list)


@dataclass
class ModelPrice:
    """USD price per one million tokens."""

    input: float = 0.0
    output: float = 0.0


@dataclass
class GatewayConfig:
    """Top-level config."""

    litellm: ProviderSettings = field(default_factory=ProviderSettings)
    blacklist: BlacklistSpec = field(default_factory=BlacklistSpec)
    pricing: dict[str, ModelPrice] = field(default_factory=dict)
    log_level: str = "WARNING"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./open_harness_litellm.yaml"),
    Path.home() / ".config" / "open-harness-litellm" / "config.yaml",
]


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_settings(raw: dict[str, Any] | None) -> ProviderSettings:
    if not raw:
        return ProviderSettings()
    known = {
        k: v for k, v in raw.items()
        if v is not None and k in ProviderSettings.__dataclass_fields__
    }
    return ProviderSettings(**known)


def _parse_blacklist(raw: dict[str, Any] | None) -> BlacklistSpec:
    if not raw:
        return BlacklistSpec()
    return BlacklistSpec(
        providers=list(raw.get("providers") or []),
        models=list(raw.get("models") or []),
    )


def _parse_pricing(raw: dict[str, Any] | None) -> dict[str, ModelPrice]:
    prices: dict[str, ModelPrice] = {}
    for model, praw in (raw or {}).items():
        praw = praw or {}
        prices[model] = ModelPrice(
            input=float(praw.get("input", 0.0)),
            output=float(praw.get("output", 0.0)),
        )
    return prices


def apply_env(config: GatewayConfig, env: Mapping[str, str] | None = None) -> GatewayConfig:
    """Overlay environment variables onto *config* (in place) and return it."""
    env = os.environ if env is None else env

    if env.get("LITELLM_BASE_URL"):
        config.litellm.base_url = env["LITELLM_BASE_URL"]
    if env.get("LITELLM_API_KEY"):
        config.litellm.api_key = env["LITELLM_API_KEY"]
    if env.get("BLACKLISTED_PROVIDERS"):
        config.blacklist.providers = _split_csv(env["BLACKLISTED_PROVIDERS"])
    if env.get("BLACKLISTED_MODELS"):
        config.blacklist.models = _split_csv(env["BLACKLISTED_MODELS"])

    config.litellm.base_url = config.litellm.normalized_base_url
    return config


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> GatewayConfig:
    """Load configuration from YAML, then apply the environment overlay.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.
    env:
        Environment mapping (defaults to ``os.environ``).

    Returns
    -------
    GatewayConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return apply_env(GatewayConfig(), env)
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return apply_env(GatewayConfig(), env)

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    config = GatewayConfig(
        litellm=_parse_settings(raw.get("litellm")),
        blacklist=_parse_blacklist(raw.get("blacklist")),
        pricing=_parse_pricing(raw.get("pricing")),
        log_level=raw.get("log_level", "WARNING"),
    )
    return apply_env(config, env)
