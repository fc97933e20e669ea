"""Sponsorship pricing: how much reach a given spend buys."""

from decimal import Decimal, ROUND_FLOOR

from .errors import InvalidAmountError
from .models import PricingSettings, ViewEstimate

VIEWS_PER_RATE_UNIT = 100_000
# Share of the estimate credited at once; the rest arrives through feed view growth.
IMMEDIATE_BOOST_FRACTION = Decimal("0.1")


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def estimate_views(amount: Decimal, settings: PricingSettings) -> ViewEstimate:
    rate = settings.ad_cost_per_100k_views
    if rate <= 0:
        raise InvalidAmountError(f"Ad cost rate must be positive, got {rate}")

    estimated = _floor(amount / rate * VIEWS_PER_RATE_UNIT)
    return ViewEstimate(
        amount=amount,
        estimated_views=estimated,
        immediate_boost=_floor(Decimal(estimated) * IMMEDIATE_BOOST_FRACTION),
        rate=rate,
    )
