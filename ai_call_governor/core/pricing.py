"""
Pricing calculations and rate management.

Estimates the cost of a call from its token counts using a static
per-million-token price table.
"""

from dataclasses import dataclass
from typing import Dict, Optional
from decimal import Decimal

from .token_counter import TokenUsage

DEFAULT_MODEL_KEY = "default"

_MILLION = Decimal("1000000")


@dataclass(frozen=True)
class ModelPricing:
    """Per-million-token pricing for a specific model."""
    input_cost_per_1m: Decimal
    output_cost_per_1m: Decimal


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table with a designated default entry."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a model, falling back to the default entry.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model, or the default entry if unknown
        """
        return self.prices.get(model, self.prices[DEFAULT_MODEL_KEY])

    def is_known(self, model: str) -> bool:
        return model in self.prices and model != DEFAULT_MODEL_KEY


# Example prices in USD; image models use a token-based approximation
PRICING_TABLE = PricingTable({
    "gemini-2.5-pro": ModelPricing(
        input_cost_per_1m=Decimal("3.50"),
        output_cost_per_1m=Decimal("10.50")
    ),
    "gemini-2.5-flash": ModelPricing(
        input_cost_per_1m=Decimal("0.35"),
        output_cost_per_1m=Decimal("1.05")
    ),
    "gemini-flash-latest": ModelPricing(
        input_cost_per_1m=Decimal("0.35"),
        output_cost_per_1m=Decimal("1.05")
    ),
    "gemini-2.5-flash-image": ModelPricing(
        input_cost_per_1m=Decimal("0.00"),
        output_cost_per_1m=Decimal("0.0025")
    ),
    "gpt-4o": ModelPricing(
        input_cost_per_1m=Decimal("2.50"),
        output_cost_per_1m=Decimal("10.00")
    ),
    "gpt-4o-mini": ModelPricing(
        input_cost_per_1m=Decimal("0.15"),
        output_cost_per_1m=Decimal("0.60")
    ),
    DEFAULT_MODEL_KEY: ModelPricing(
        input_cost_per_1m=Decimal("0.35"),
        output_cost_per_1m=Decimal("1.05")
    ),
})


def _tokens(count: Optional[int]) -> Decimal:
    if not count or count < 0:
        return Decimal(0)
    return Decimal(count)


def calculate_cost(
    model: str,
    prompt_tokens: Optional[int],
    candidate_tokens: Optional[int],
    table: PricingTable = PRICING_TABLE,
) -> float:
    """Calculate the estimated cost of a call.

    Never fails: unknown models use the default price entry and absent,
    zero or negative token counts contribute nothing.

    Args:
        model: Model identifier
        prompt_tokens: Input token count
        candidate_tokens: Output token count
        table: Price table to use

    Returns:
        Estimated cost in USD
    """
    pricing = table.get_pricing(model)

    input_cost = _tokens(prompt_tokens) / _MILLION * pricing.input_cost_per_1m
    output_cost = _tokens(candidate_tokens) / _MILLION * pricing.output_cost_per_1m

    return float(input_cost + output_cost)


def calculate_usage_cost(model: str, usage: TokenUsage) -> float:
    """Calculate the estimated cost for extracted token usage."""
    return calculate_cost(model, usage.prompt_tokens, usage.candidate_tokens)
