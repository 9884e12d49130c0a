"""LiteLLM provider: model discovery bootstrap and request execution."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from open_harness_litellm.config import ProviderSettings
from open_harness_litellm.core.orchestrator import RequestOrchestrator
from open_harness_litellm.events.bus import EventBus
from open_harness_litellm.llm.client import ChatCompletionClient
from open_harness_litellm.llm.errors import ProviderConfigurationError
from open_harness_litellm.llm.payload import PROVIDER_PREFIX
from open_harness_litellm.pricing import CostCalculator, PricingTable
from open_harness_litellm.providers.registry import Blacklist, ModelRegistry
from open_harness_litellm.tools.base import ToolInvoker
from open_harness_litellm.tools.registry import ToolRegistry
from open_harness_litellm.types import (
    EventType,
    ExecutionResult,
    ProviderEvent,
    ProviderRequest,
    StreamingExecution,
)

_logger = logging.getLogger(__name__)

LITELLM_VERSION = "1.0.0"


class LiteLLMProvider:
    """Provider adapter for a LiteLLM proxy.

    Parameters
    ----------
    settings:
        Base URL, API key, retry and loop settings.
    registry:
        Where discovered model ids are published.
    invoker:
        Executes tool calls (defaults to an empty ``ToolRegistry``).
    cost_calculator:
        Token pricing (defaults to an empty ``PricingTable``).
    transport:
        Optional httpx transport shared by every client this provider opens.
    """

    id = "litellm"
    name = "LiteLLM"
    description = "LiteLLM proxy for 100+ LLM providers"
    version = LITELLM_VERSION

    def __init__(
        self,
        settings: ProviderSettings,
        registry: ModelRegistry | None = None,
        invoker: ToolInvoker | None = None,
        cost_calculator: CostCalculator | None = None,
        blacklist: Blacklist | None = None,
        event_bus: EventBus | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.registry = registry or ModelRegistry()
        self.invoker = invoker or ToolRegistry()
        self.cost_calculator = cost_calculator or PricingTable()
        self.blacklist = blacklist or Blacklist()
        self.event_bus = event_bus
        self._transport = transport
        self._closing: set[asyncio.Task[None]] = set()
        self._stream_clients: set[ChatCompletionClient] = set()

        self.models: list[str] = list(settings.models)
        self.default_model = settings.default_model or (self.models[0] if self.models else "")

    # ------------------------------------------------------------------
    # Discovery bootstrap
    # ------------------------------------------------------------------

    async def initialize(self) -> list[str]:
        """Discover the proxy's models and publish them to the registry.

        Never raises: an unreachable or failing proxy leaves the provider
        with an empty model list.
        """
        if self.settings.client_side:
            _logger.info("Skipping LiteLLM initialization on client side to avoid CORS issues")
            return self.models

        base_url = self.settings.normalized_base_url
        if not base_url:
            _logger.info("LITELLM_BASE_URL not configured, skipping initialization")
            return self.models

        client = self._make_client(base_url, self.settings.api_key or None)
        try:
            ids = await client.list_models()
        except Exception as e:
            self.registry.set_provider_models(self.id, [])
            _logger.warning(
                "LiteLLM model discovery failed, the provider will be disabled: %s", e,
            )
            return []
        finally:
            await client.close()

        discovered = [f"{PROVIDER_PREFIX}{model_id}" for model_id in ids]
        models = self.blacklist.filter_models(discovered)
        self.models = models
        self.registry.set_provider_models(self.id, models)

        _logger.info(
            "Discovered %d LiteLLM model(s) (%d blacklisted): %s",
            len(models), len(discovered) - len(models), models,
        )
        if self.event_bus:
            await self.event_bus.emit(ProviderEvent(
                type=EventType.MODELS_DISCOVERED,
                data={"provider": self.id, "models": models},
            ))
        return models

    def is_model_available(self, model: str) -> bool:
        """True if *model* was published by discovery (or statically configured)."""
        return self.registry.has_model(self.id, model) or model in self.models

    # ------------------------------------------------------------------
    # Request execution
    # ------------------------------------------------------------------

    async def execute_request(
        self, request: ProviderRequest,
    ) -> ExecutionResult | StreamingExecution:
        """Run *request* against the proxy.

        Raises ``ProviderConfigurationError`` when no base URL is known and
        ``ProviderRequestError`` when a model call fails.
        """
        base_url = (request.base_url or self.settings.base_url or "").rstrip("/")
        if not base_url:
            raise ProviderConfigurationError("LITELLM_BASE_URL is required for LiteLLM provider")
        api_key = request.api_key or self.settings.api_key or "empty"

        client = self._make_client(base_url, api_key)
        orchestrator = RequestOrchestrator(
            client,
            self.invoker,
            self.cost_calculator,
            provider_id=self.id,
            max_tool_iterations=self.settings.max_tool_iterations,
            event_bus=self.event_bus,
        )
        try:
            result = await orchestrator.execute(request)
        except BaseException:
            await client.close()
            raise

        if isinstance(result, StreamingExecution):
            self._stream_clients.add(client)
            result.finalized.add_done_callback(lambda _f: self._close_later(client))
        else:
            await client.close()
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _make_client(self, base_url: str, api_key: str | None) -> ChatCompletionClient:
        return ChatCompletionClient(
            base_url,
            api_key=api_key,
            timeout=self.settings.timeout,
            max_retries=self.settings.max_retries,
            transport=self._transport,
        )

    def _close_later(self, client: ChatCompletionClient) -> None:
        if client not in self._stream_clients:
            return
        self._stream_clients.discard(client)
        task = asyncio.get_running_loop().create_task(client.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def aclose(self) -> None:
        """Close the clients of streamed results and wait for pending closes.

        Call before the event loop shuts down.  Streams still being read
        lose their connection.
        """
        clients = list(self._stream_clients)
        self._stream_clients.clear()
        for client in clients:
            await client.close()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "models": list(self.models),
            "default_model": self.default_model,
        }
