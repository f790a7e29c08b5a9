"""
Environmental impact calculations.

Converts token counts into energy, carbon and water quantities and derives
display-oriented views (impact level, comparisons, goal progress, tips).
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List


# Fixed per-token coefficients - no dynamic fetching, no per-model overrides
ENERGY_WH_PER_TOKEN = 0.001
CARBON_GRAMS_PER_TOKEN = 0.5
WATER_ML_PER_TOKEN = 0.1

MEDIUM_IMPACT_CARBON_GRAMS = 10
HIGH_IMPACT_CARBON_GRAMS = 50

DEFAULT_DAILY_GOAL_GRAMS = 100.0

# Comparison divisors
CARBON_GRAMS_PER_CAR_MILE = 404
CARBON_GRAMS_PER_TREE_YEAR = 21000
ENERGY_WH_PER_PHONE_CHARGE = 18
ENERGY_WH_PER_LIGHT_BULB_HOUR = 10
WATER_ML_PER_COFFEE_CUP = 140

# Tip thresholds, checked in this order
TIP_QUERY_THRESHOLD = 20
TIP_TOKEN_THRESHOLD = 10000
TIP_CARBON_THRESHOLD_GRAMS = 50

TIP_BATCH_QUESTIONS = "Consider batching similar questions to reduce API calls"
TIP_SHORTER_PROMPTS = "Try using shorter prompts for simple tasks"
TIP_TAKE_BREAKS = "High carbon usage today - consider taking breaks between AI sessions"


class ImpactLevel(Enum):
    """Qualitative carbon impact tiers."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class ImpactQuantity:
    """Energy, carbon and water attributed to some number of tokens."""
    energy_wh: float
    carbon_grams: float
    water_ml: float

    def __post_init__(self):
        """Validate quantities are non-negative."""
        if self.energy_wh < 0:
            raise ValueError("energy_wh cannot be negative")
        if self.carbon_grams < 0:
            raise ValueError("carbon_grams cannot be negative")
        if self.water_ml < 0:
            raise ValueError("water_ml cannot be negative")

    def __add__(self, other: "ImpactQuantity") -> "ImpactQuantity":
        if not isinstance(other, ImpactQuantity):
            return NotImplemented
        return ImpactQuantity(
            energy_wh=self.energy_wh + other.energy_wh,
            carbon_grams=self.carbon_grams + other.carbon_grams,
            water_ml=self.water_ml + other.water_ml
        )


@dataclass(frozen=True)
class Comparisons:
    """Everyday equivalents of an aggregate, formatted for display only."""
    car_miles: str
    trees_needed: str
    phone_charges: str
    light_bulb_hours: str
    coffee_cups: str


@dataclass(frozen=True)
class GoalProgress:
    """Progress against a daily carbon goal."""
    percentage: float
    remaining: float
    exceeded: bool


def to_impact(tokens: int) -> ImpactQuantity:
    """Convert a token count into impact quantities.

    Args:
        tokens: Non-negative token count

    Returns:
        ImpactQuantity scaled linearly by the fixed per-token coefficients

    Raises:
        ValueError: If tokens is negative
    """
    return ImpactQuantity(
        energy_wh=tokens * ENERGY_WH_PER_TOKEN,
        carbon_grams=tokens * CARBON_GRAMS_PER_TOKEN,
        water_ml=tokens * WATER_ML_PER_TOKEN
    )


def impact_level(carbon_grams: float) -> ImpactLevel:
    """Classify carbon usage; tier boundaries belong to the upper tier."""
    if carbon_grams < MEDIUM_IMPACT_CARBON_GRAMS:
        return ImpactLevel.LOW
    if carbon_grams < HIGH_IMPACT_CARBON_GRAMS:
        return ImpactLevel.MEDIUM
    return ImpactLevel.HIGH


def _to_fixed(value: float, decimals: int) -> str:
    """Format with half-up rounding of the exact binary value."""
    quantum = Decimal(1).scaleb(-decimals)
    return str(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def comparisons(aggregate) -> Comparisons:
    """Express an aggregate in everyday equivalents.

    Args:
        aggregate: Anything exposing energy_wh, carbon_grams and water_ml
            (an ImpactQuantity or a DailyLedger)

    Returns:
        Comparisons with each value formatted to a fixed precision
    """
    return Comparisons(
        car_miles=_to_fixed(aggregate.carbon_grams / CARBON_GRAMS_PER_CAR_MILE, 2),
        trees_needed=_to_fixed(aggregate.carbon_grams / CARBON_GRAMS_PER_TREE_YEAR, 3),
        phone_charges=_to_fixed(aggregate.energy_wh / ENERGY_WH_PER_PHONE_CHARGE, 1),
        light_bulb_hours=_to_fixed(aggregate.energy_wh / ENERGY_WH_PER_LIGHT_BULB_HOUR, 1),
        coffee_cups=_to_fixed(aggregate.water_ml / WATER_ML_PER_COFFEE_CUP, 1)
    )


def goal_progress(carbon_grams: float, daily_goal: float = DEFAULT_DAILY_GOAL_GRAMS) -> GoalProgress:
    """Compute progress towards a daily carbon goal.

    Args:
        carbon_grams: Carbon used so far today
        daily_goal: Daily carbon budget in grams

    Returns:
        GoalProgress with percentage capped at 100

    Raises:
        ValueError: If daily_goal is not positive
    """
    if daily_goal <= 0:
        raise ValueError("daily_goal must be > 0")

    return GoalProgress(
        percentage=min(carbon_grams / daily_goal * 100, 100.0),
        remaining=max(daily_goal - carbon_grams, 0.0),
        exceeded=carbon_grams > daily_goal
    )


def efficiency_tips(aggregate) -> List[str]:
    """Advisory messages for an aggregate with queries, total_tokens and carbon_grams.

    Each threshold is checked independently, so any subset may fire.
    """
    tips = []

    if aggregate.queries > TIP_QUERY_THRESHOLD:
        tips.append(TIP_BATCH_QUESTIONS)

    if aggregate.total_tokens > TIP_TOKEN_THRESHOLD:
        tips.append(TIP_SHORTER_PROMPTS)

    if aggregate.carbon_grams > TIP_CARBON_THRESHOLD_GRAMS:
        tips.append(TIP_TAKE_BREAKS)

    return tips


def format_number(value: float, decimals: int = 1) -> str:
    """Compact display form: K/M suffixes and an extra decimal below 1."""
    if value == 0:
        return "0"

    if value < 1:
        return _to_fixed(value, decimals + 1)
    elif value < 1000:
        return _to_fixed(value, decimals)
    elif value < 1000000:
        return _to_fixed(value / 1000, decimals) + "K"
    else:
        return _to_fixed(value / 1000000, decimals) + "M"
