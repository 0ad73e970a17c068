"""Cost estimation for model calls.

Pre-flight checks (token quota, budget reservation) and post-call commits use
the same CostEstimator instance so both sides are computed on one basis.
Costs are integer minor units (cents), always rounded up.
"""

import math
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

from .exceptions import ConfigurationError

# Rough estimation: 1 token ≈ 4 characters
CHARS_PER_TOKEN = 4

_PER_MILLION = Decimal(1_000_000)


@dataclass(frozen=True)
class ModelPricing:
    """Unit prices in minor units per million tokens."""

    input_per_million: Decimal
    output_per_million: Decimal


PRICING: dict[str, ModelPricing] = {
    # $3 / $15 per 1M tokens
    "claude-sonnet-4-5-20250929": ModelPricing(Decimal("300"), Decimal("1500")),
    "claude-3-5-sonnet-20241022": ModelPricing(Decimal("300"), Decimal("1500")),
    # $0.25 / $1.25 per 1M tokens
    "claude-3-haiku-20240307": ModelPricing(Decimal("25"), Decimal("125")),
    "anthropic.claude-3-haiku-20240307-v1:0": ModelPricing(Decimal("25"), Decimal("125")),
    # $1 / $3 per 1M tokens
    "mistral.mistral-small-2402-v1:0": ModelPricing(Decimal("100"), Decimal("300")),
}


def get_pricing(model_id: str) -> ModelPricing:
    """Look up pricing for a model.

    Raises:
        ConfigurationError: If the model has no pricing entry
    """
    pricing = PRICING.get(model_id)
    if pricing is None:
        raise ConfigurationError(f"Unknown model: {model_id}", config_key="MODEL_ID")
    return pricing


def estimate_input_tokens(message_length: int) -> int:
    """Approximate input tokens from a character count."""
    return math.ceil(max(0, message_length) / CHARS_PER_TOKEN)


class CostEstimator:
    """Pure cost functions bound to one model's prices."""

    def __init__(self, pricing: ModelPricing) -> None:
        self.pricing = pricing

    @classmethod
    def for_model(cls, model_id: str) -> "CostEstimator":
        """Create an estimator from the pricing table."""
        return cls(get_pricing(model_id))

    def estimate_tokens(self, message_length: int, output_ceiling: int) -> int:
        """Worst-case token count for a request.

        Args:
            message_length: Characters in the user message
            output_ceiling: Tier's maximum output tokens

        Returns:
            Estimated input tokens plus the full output ceiling
        """
        return estimate_input_tokens(message_length) + max(0, output_ceiling)

    def estimate(self, message_length: int, output_ceiling: int) -> int:
        """Worst-case cost of a request in minor units.

        Args:
            message_length: Characters in the user message
            output_ceiling: Tier's maximum output tokens

        Returns:
            Estimated cost, rounded up
        """
        return self._cost(estimate_input_tokens(message_length), max(0, output_ceiling))

    def actual_cost(self, input_tokens: int, output_tokens: int) -> int:
        """Cost of a completed call from its usage report, rounded up."""
        return self._cost(max(0, input_tokens), max(0, output_tokens))

    def _cost(self, input_tokens: int, output_tokens: int) -> int:
        total = (
            Decimal(input_tokens) * self.pricing.input_per_million
            + Decimal(output_tokens) * self.pricing.output_per_million
        ) / _PER_MILLION
        return int(total.to_integral_value(rounding=ROUND_CEILING))
