"""Tests for cost estimator module."""

from decimal import Decimal

import pytest

from shared.cost_estimator import (
    CostEstimator,
    ModelPricing,
    estimate_input_tokens,
    get_pricing,
)
from shared.exceptions import ConfigurationError


@pytest.fixture
def sonnet():
    return CostEstimator.for_model("claude-sonnet-4-5-20250929")


class TestEstimateInputTokens:
    """Tests for the character-based token approximation."""

    @pytest.mark.parametrize(
        ("length", "tokens"),
        [(0, 0), (1, 1), (4, 1), (5, 2), (4000, 1000)],
    )
    def test_rounds_up(self, length, tokens):
        assert estimate_input_tokens(length) == tokens


class TestCostEstimator:
    """Tests for CostEstimator."""

    def test_estimate_tokens_includes_output_ceiling(self, sonnet):
        assert sonnet.estimate_tokens(400, 2_000) == 2_100

    def test_estimate_cost_in_minor_units(self, sonnet):
        """100 input tokens at 300/M plus 2000 output at 1500/M = 3.03 -> 4."""
        assert sonnet.estimate(400, 2_000) == 4

    def test_actual_cost_rounds_up(self, sonnet):
        assert sonnet.actual_cost(1, 0) == 1
        assert sonnet.actual_cost(0, 0) == 0

    def test_actual_cost_exact(self, sonnet):
        """1M input + 1M output tokens costs $18."""
        assert sonnet.actual_cost(1_000_000, 1_000_000) == 1_800

    def test_estimate_never_below_actual_for_same_counts(self, sonnet):
        """The estimate for a message bounds a call that used the full ceiling."""
        assert sonnet.estimate(4_000, 2_000) >= sonnet.actual_cost(1_000, 2_000)

    def test_custom_pricing(self):
        estimator = CostEstimator(ModelPricing(Decimal("100"), Decimal("300")))
        assert estimator.actual_cost(500_000, 500_000) == 200


class TestGetPricing:
    def test_known_model(self):
        assert get_pricing("anthropic.claude-3-haiku-20240307-v1:0").output_per_million == 125

    def test_unknown_model_raises(self):
        with pytest.raises(ConfigurationError) as exc_info:
            get_pricing("gpt-unknown")
        assert exc_info.value.config_key == "MODEL_ID"
