"""
Pricing lookup.

Prices are USD per million tokens. The built-in table is merged with the
`pricing` section of settings.yaml; models without a price cost nothing
(self-hosted Ollama models, for example).
"""

import threading
from typing import Dict, Optional

from ..core.logging import logger
from ..utils.cost_calculator import CostCalculator

DEFAULT_PRICING: Dict[str, Dict[str, float]] = {
    # OpenRouter
    "openai/gpt-4o": {"prompt": 5.00, "completion": 15.00},
    "google/gemini-flash-1.5": {"prompt": 0.35, "completion": 0.70},
    "anthropic/claude-3.5-sonnet": {"prompt": 3.00, "completion": 15.00},
    # OpenAI
    "gpt-4o": {"prompt": 2.50, "completion": 10.00},
    "gpt-4o-mini": {"prompt": 0.15, "completion": 0.60},
    "gpt-4-turbo": {"prompt": 10.00, "completion": 30.00},
    "gpt-3.5-turbo": {"prompt": 0.50, "completion": 1.50},
    # Anthropic
    "claude-3-opus-20240229": {"prompt": 15.00, "completion": 75.00},
    "claude-3-sonnet-20240229": {"prompt": 3.00, "completion": 15.00},
    "claude-3-haiku-20240307": {"prompt": 0.25, "completion": 1.25},
    "claude-3-5-sonnet-20240620": {"prompt": 3.00, "completion": 15.00},
    "claude-3-5-sonnet-20241022": {"prompt": 3.00, "completion": 15.00},
    "claude-3-5-haiku-20241022": {"prompt": 0.80, "completion": 4.00},
    # Google
    "gemini-1.5-pro-preview-0409": {"prompt": 3.50, "completion": 10.50},
    "gemini-1.0-pro": {"prompt": 0.125, "completion": 0.375},
}

ZERO_PRICING = {"prompt": 0.0, "completion": 0.0}


class PricingLookup:
    """Interface: model prices and cost calculation by provider and model."""

    async def get_pricing(self, provider: str, model: str) -> Dict[str, float]:
        raise NotImplementedError

    async def calculate_cost(self, provider: str, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        pricing = await self.get_pricing(provider, model)
        return CostCalculator.calculate_total_cost(prompt_tokens, completion_tokens, pricing)["total_cost"]


class StaticPricingService(PricingLookup):
    """Table-backed pricing with a resolved-price cache."""

    def __init__(self, config_manager=None, overrides: Optional[Dict[str, Dict[str, float]]] = None):
        self.config_manager = config_manager
        self.overrides = overrides or {}
        self._cache: Dict[str, Dict[str, float]] = {}
        self._cache_version = self._config_version()
        self._lock = threading.Lock()

    def _config_version(self) -> int:
        return getattr(self.config_manager, "version", 0)

    def _table(self) -> Dict[str, Dict[str, float]]:
        table = dict(DEFAULT_PRICING)
        if self.config_manager is not None:
            table.update(self.config_manager.pricing_table)
        table.update(self.overrides)
        return table

    def clear_cache(self):
        with self._lock:
            self._cache.clear()

    async def get_pricing(self, provider: str, model: str) -> Dict[str, float]:
        version = self._config_version()
        if version != self._cache_version:
            # settings.yaml was reloaded
            with self._lock:
                self._cache.clear()
                self._cache_version = version

        cache_key = f"{provider}:{model}".lower()
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        table = {key.lower(): value for key, value in self._table().items()}
        pricing = table.get((model or "").lower()) or table.get(f"{provider}/{model}".lower())
        if pricing is None:
            logger.debug(f"No pricing for model {model}, treating as free", provider_name=provider, model_id=model)
            pricing = ZERO_PRICING

        with self._lock:
            self._cache.setdefault(cache_key, pricing)
        return pricing
