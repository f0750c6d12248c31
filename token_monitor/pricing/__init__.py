"""Pricing module for Token Monitor.

Provides model pricing from the built-in table, with optional overrides from
a local models.json file.
"""

from .provider import (
    BASELINE_MODEL,
    PricingProvider,
    get_pricing_provider,
    normalize_model_name,
    reset_pricing_provider,
)

__all__ = [
    "BASELINE_MODEL",
    "PricingProvider",
    "get_pricing_provider",
    "normalize_model_name",
    "reset_pricing_provider",
]
