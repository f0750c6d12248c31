"""Pricing provider.

Resolves a model id to its pricing and context window, using a built-in
table that can be overridden by a local ``models.json``. Unknown or empty
model ids fall back to the baseline model's pricing.
"""

import re
from decimal import Decimal
from typing import Dict, Optional, TYPE_CHECKING

from ..config import ModelPricing

if TYPE_CHECKING:
    from ..models.session import TokenStats

BASELINE_MODEL = "claude-sonnet-4.5"

MILLION = Decimal("1000000")


def _pricing(name: str, input_price: str, output_price: str, cache_read: str) -> ModelPricing:
    return ModelPricing(
        name=name,
        input=Decimal(input_price),
        output=Decimal(output_price),
        cache_read=Decimal(cache_read),
        context_window=200_000,
    )


# Prices are USD per million tokens. Cache reads are billed at a 90% discount.
DEFAULT_PRICING: Dict[str, ModelPricing] = {
    "claude-sonnet-4.5": _pricing("Sonnet 4.5", "3.00", "15.00", "0.30"),
    "claude-opus-4.5": _pricing("Opus 4.5", "15.00", "75.00", "1.50"),
    "claude-haiku-4.5": _pricing("Haiku 4.5", "0.80", "4.00", "0.08"),
    "claude-opus-4.1": _pricing("Opus 4.1", "15.00", "75.00", "1.50"),
    "claude-opus-4": _pricing("Opus 4", "15.00", "75.00", "1.50"),
    "claude-sonnet-4": _pricing("Sonnet 4", "3.00", "15.00", "0.30"),
}


def normalize_model_name(model_id: str) -> str:
    """Normalize a Claude model id for pricing lookup.

    Handles formats like: claude-opus-4-5-20251101 -> claude-opus-4.5
    """
    model_id = model_id.strip().lower()

    # Strip date suffixes like -20250514, -20251101
    model_id = re.sub(r"-\d{8}$", "", model_id)

    # Normalize version separators: claude-opus-4-5 -> claude-opus-4.5
    model_id = re.sub(
        r"claude-(opus|sonnet|haiku)-(\d+)-(\d+)", r"claude-\1-\2.\3", model_id
    )

    return model_id


class PricingProvider:
    """Model pricing lookup with a baseline fallback."""

    def __init__(self, overrides: Optional[Dict[str, ModelPricing]] = None):
        """Initialize pricing provider.

        Args:
            overrides: Extra or replacement pricing keyed by model id
        """
        self._pricing: Dict[str, ModelPricing] = dict(DEFAULT_PRICING)
        for model_id, pricing in (overrides or {}).items():
            self._pricing[normalize_model_name(model_id)] = pricing

    def all_pricing(self) -> Dict[str, ModelPricing]:
        return dict(self._pricing)

    def get_pricing(self, model_id: Optional[str]) -> ModelPricing:
        """Get pricing for a model, falling back to the baseline model."""
        if model_id:
            if model_id in self._pricing:
                return self._pricing[model_id]

            normalized = normalize_model_name(model_id)
            if normalized in self._pricing:
                return self._pricing[normalized]

            # Longest key first so "claude-opus-4.1" wins over "claude-opus-4"
            for key in sorted(self._pricing, key=len, reverse=True):
                if normalized.startswith(key) or key.startswith(normalized):
                    return self._pricing[key]

        return self._pricing[BASELINE_MODEL]

    def calculate_cost(
        self,
        model_id: Optional[str],
        input_tokens: int,
        output_tokens: int,
        cache_read_tokens: int = 0,
    ) -> Decimal:
        """Calculate cost in USD.

        Cache creation tokens are not billed here; only input, output and
        discounted cache reads contribute.
        """
        pricing = self.get_pricing(model_id)

        cost = Decimal("0")
        cost += (Decimal(input_tokens) / MILLION) * pricing.input
        cost += (Decimal(output_tokens) / MILLION) * pricing.output
        cost += (Decimal(cache_read_tokens) / MILLION) * pricing.cache_read
        return cost

    def cost_of(self, model_id: Optional[str], stats: "TokenStats") -> Decimal:
        """Price a single message's token delta."""
        return self.calculate_cost(model_id, stats.input, stats.output, stats.cache_read)

    def context_window(self, model_id: Optional[str]) -> int:
        return self.get_pricing(model_id).context_window

    def context_percentage(self, model_id: Optional[str], total_tokens: int) -> float:
        """Percentage of the model's context window used by ``total_tokens``."""
        window = self.context_window(model_id)
        if window == 0:
            return 0.0
        return total_tokens / window * 100

    def display_name(self, model_id: Optional[str]) -> str:
        return self.get_pricing(model_id).name or (model_id or BASELINE_MODEL)


# Global provider instance
_provider: Optional[PricingProvider] = None


def get_pricing_provider() -> PricingProvider:
    """Get or create the global pricing provider (built-in table + models.json)."""
    global _provider

    if _provider is None:
        from ..config import config_manager

        _provider = PricingProvider(config_manager.load_pricing_data())

    return _provider


def reset_pricing_provider() -> None:
    """Drop the global provider so the next call rebuilds it."""
    global _provider
    _provider = None
