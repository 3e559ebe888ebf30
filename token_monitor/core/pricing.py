"""
Pricing calculations and rate management.

Resolves per-model cost rates and estimates the cost of a request.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional

from token_monitor.storage.models import NormalizedUsage

TOKENS_PER_RATE_UNIT = Decimal("1000000")


@dataclass(frozen=True)
class CostRates:
    """Per-token pricing for a specific model, in USD per million tokens."""
    input: Decimal = Decimal("0")
    output: Decimal = Decimal("0")
    cache_read: Decimal = Decimal("0")
    cache_write: Decimal = Decimal("0")

    def __post_init__(self):
        """Coerce rates to Decimal and validate they are non-negative."""
        for name in ("input", "output", "cache_read", "cache_write"):
            rate = Decimal(str(getattr(self, name)))
            if rate < 0:
                raise ValueError(f"{name} rate cannot be negative")
            object.__setattr__(self, name, rate)


@dataclass(frozen=True)
class CostRateTable:
    """Configured cost rates keyed by ``provider/model`` or bare model name."""
    rates: Dict[str, CostRates] = field(default_factory=dict)

    def resolve(self, provider: str, model: str) -> Optional[CostRates]:
        """Get pricing for a specific provider and model.

        ``provider/model`` entries take precedence over bare model entries.

        Args:
            provider: Provider identifier
            model: Model identifier

        Returns:
            CostRates for the model, or None if no rate is configured
        """
        rates = self.rates.get(f"{provider}/{model}")
        if rates is None:
            rates = self.rates.get(model)
        return rates


def estimate_cost(usage: NormalizedUsage, rates: Optional[CostRates]) -> float:
    """Estimate the cost of one request.

    Args:
        usage: Token usage data
        rates: Rates for the model, or None when unpriced

    Returns:
        Estimated cost in USD, 0.0 when no rates are configured
    """
    if rates is None:
        return 0.0

    cost = (
        Decimal(usage.input) * rates.input
        + Decimal(usage.output) * rates.output
        + Decimal(usage.cache_read) * rates.cache_read
        + Decimal(usage.cache_write) * rates.cache_write
    ) / TOKENS_PER_RATE_UNIT

    return float(cost)
