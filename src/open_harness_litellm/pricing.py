"""Token cost calculation.

The orchestrator only needs something callable as
``cost(model, input_tokens, output_tokens) -> CostBreakdown``;
``PricingTable`` is the config-backed default.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import Protocol

from open_harness_litellm.config import ModelPrice
from open_harness_litellm.llm.payload import strip_provider_prefix
from open_harness_litellm.types import CostBreakdown

_logger = logging.getLogger(__name__)

_PER_TOKENS = 1_000_000
_PRECISION = 8


class CostCalculator(Protocol):
    def __call__(self, model: str, input_tokens: int, output_tokens: int) -> CostBreakdown:
        ...


class PricingTable:
    """USD prices per one million tokens, keyed by model id or pattern.

    Lookup order: exact id, id without the ``litellm/`` prefix, then the
    first matching ``fnmatch`` pattern.  Unknown models cost nothing.
    """

    def __init__(self, prices: dict[str, ModelPrice] | None = None) -> None:
        self._prices = dict(prices or {})

    def price_for(self, model: str) -> ModelPrice | None:
        if model in self._prices:
            return self._prices[model]
        bare = strip_provider_prefix(model)
        if bare in self._prices:
            return self._prices[bare]
        for pattern, price in self._prices.items():
            if fnmatch.fnmatchcase(model, pattern) or fnmatch.fnmatchcase(bare, pattern):
                return price
        return None

    def __call__(self, model: str, input_tokens: int, output_tokens: int) -> CostBreakdown:
        price = self.price_for(model)
        if price is None:
            _logger.debug("No pricing for model %s, reporting zero cost", model)
            return CostBreakdown()
        input_cost = round(input_tokens * price.input / _PER_TOKENS, _PRECISION)
        output_cost = round(output_tokens * price.output / _PER_TOKENS, _PRECISION)
        return CostBreakdown(
            input=input_cost,
            output=output_cost,
            total=round(input_cost + output_cost, _PRECISION),
        )
