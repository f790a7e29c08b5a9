"""
Unit tests for the impact model.

Tests unit conversion, impact tiers, comparisons, goals, tips and formatting.
"""

from datetime import date

import pytest

from ai_footprint.core.impact import (
    ImpactLevel,
    ImpactQuantity,
    TIP_BATCH_QUESTIONS,
    TIP_SHORTER_PROMPTS,
    TIP_TAKE_BREAKS,
    comparisons,
    efficiency_tips,
    format_number,
    goal_progress,
    impact_level,
    to_impact,
)
from ai_footprint.core.ledger import DailyLedger


class TestToImpact:
    """Test token to impact conversion."""

    def test_thousand_tokens(self):
        """1000 tokens -> 1 Wh, 500 g, 100 mL."""
        impact = to_impact(1000)
        assert impact.energy_wh == pytest.approx(1.0)
        assert impact.carbon_grams == pytest.approx(500.0)
        assert impact.water_ml == pytest.approx(100.0)

    def test_zero_tokens(self):
        """No tokens, no impact."""
        assert to_impact(0) == ImpactQuantity(0.0, 0.0, 0.0)

    @pytest.mark.parametrize("tokens", [1, 7, 162, 12345])
    def test_linear(self, tokens):
        """Doubling tokens doubles every field."""
        single = to_impact(tokens)
        double = to_impact(2 * tokens)
        assert double.energy_wh == pytest.approx(2 * single.energy_wh)
        assert double.carbon_grams == pytest.approx(2 * single.carbon_grams)
        assert double.water_ml == pytest.approx(2 * single.water_ml)

    def test_negative_tokens_rejected(self):
        """Negative quantities are invalid."""
        with pytest.raises(ValueError, match="cannot be negative"):
            to_impact(-1)

    def test_quantities_add(self):
        """Impact of a sum equals the sum of impacts."""
        total = to_impact(12) + to_impact(150)
        assert total.carbon_grams == pytest.approx(to_impact(162).carbon_grams)


class TestImpactLevel:
    """Test carbon tier boundaries."""

    @pytest.mark.parametrize("carbon, expected", [
        (0, ImpactLevel.LOW),
        (9.99, ImpactLevel.LOW),
        (10, ImpactLevel.MEDIUM),
        (49.99, ImpactLevel.MEDIUM),
        (50, ImpactLevel.HIGH),
        (500, ImpactLevel.HIGH),
    ])
    def test_boundaries(self, carbon, expected):
        assert impact_level(carbon) == expected


class TestComparisons:
    """Test everyday equivalents."""

    def test_formatted_values(self):
        """Each comparison uses its own divisor and precision."""
        result = comparisons(ImpactQuantity(energy_wh=36, carbon_grams=808, water_ml=70))
        assert result.car_miles == "2.00"
        assert result.trees_needed == "0.038"
        assert result.phone_charges == "2.0"
        assert result.light_bulb_hours == "3.6"
        assert result.coffee_cups == "0.5"

    def test_zero_aggregate(self):
        """A fresh ledger compares to nothing."""
        result = comparisons(DailyLedger.zeroed(date(2024, 1, 1)))
        assert result.car_miles == "0.00"
        assert result.trees_needed == "0.000"
        assert result.coffee_cups == "0.0"


class TestGoalProgress:
    """Test daily goal progress."""

    def test_under_goal(self):
        progress = goal_progress(50)
        assert progress.percentage == pytest.approx(50.0)
        assert progress.remaining == pytest.approx(50.0)
        assert progress.exceeded is False

    def test_exactly_at_goal_is_not_exceeded(self):
        progress = goal_progress(100)
        assert progress.percentage == pytest.approx(100.0)
        assert progress.remaining == 0
        assert progress.exceeded is False

    def test_over_goal_is_capped(self):
        progress = goal_progress(150)
        assert progress.percentage == 100.0
        assert progress.remaining == 0.0
        assert progress.exceeded is True

    def test_custom_goal(self):
        assert goal_progress(50, daily_goal=200).percentage == pytest.approx(25.0)

    def test_invalid_goal(self):
        with pytest.raises(ValueError, match="daily_goal must be > 0"):
            goal_progress(10, daily_goal=0)


class TestEfficiencyTips:
    """Test threshold-gated advice."""

    def _ledger(self, queries=0, total_tokens=0, carbon_grams=0.0):
        return DailyLedger(
            date=date(2024, 1, 1),
            queries=queries,
            total_tokens=total_tokens,
            carbon_grams=carbon_grams
        )

    def test_no_tips_for_light_usage(self):
        assert efficiency_tips(self._ledger(queries=20, total_tokens=10000, carbon_grams=50)) == []

    def test_all_tips_in_order(self):
        tips = efficiency_tips(self._ledger(queries=21, total_tokens=10001, carbon_grams=50.5))
        assert tips == [TIP_BATCH_QUESTIONS, TIP_SHORTER_PROMPTS, TIP_TAKE_BREAKS]

    def test_thresholds_are_independent(self):
        assert efficiency_tips(self._ledger(total_tokens=20000)) == [TIP_SHORTER_PROMPTS]
        assert efficiency_tips(self._ledger(carbon_grams=51)) == [TIP_TAKE_BREAKS]
        assert efficiency_tips(self._ledger(queries=30, carbon_grams=60)) == [
            TIP_BATCH_QUESTIONS,
            TIP_TAKE_BREAKS,
        ]


class TestFormatNumber:
    """Test compact display formatting."""

    @pytest.mark.parametrize("value, decimals, expected", [
        (0, 1, "0"),
        (0.5, 1, "0.50"),
        (0.05, 1, "0.05"),
        (12.34, 1, "12.3"),
        (999, 1, "999.0"),
        (1500, 1, "1.5K"),
        (1234, 2, "1.23K"),
        (2500000, 1, "2.5M"),
    ])
    def test_format(self, value, decimals, expected):
        assert format_number(value, decimals) == expected
