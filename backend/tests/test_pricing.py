"""
Tests for per-spot price calculation and money rounding.
"""

from decimal import Decimal

import pytest

from app.core.exceptions import ValidationError
from app.services.pricing import calculate_pricing, to_minor_units, to_money


def test_default_rates_gross_up_final_price():
    """100.00 over 10 spots at 5% + 1.5% + 0.20 fixed."""
    pricing = calculate_pricing("100.00", 10)

    assert pricing.base_price_per_spot == Decimal("10.00")
    assert pricing.final_price_per_spot == Decimal("10.91")
    assert pricing.platform_fee_per_spot == Decimal("0.55")
    assert pricing.gateway_fee_per_spot == Decimal("0.36")
    assert pricing.total_expected == Decimal("109.10")


def test_organizer_nets_base_price_after_fees():
    pricing = calculate_pricing("100.00", 10)
    net = pricing.final_price_per_spot - pricing.platform_fee_per_spot - pricing.gateway_fee_per_spot
    assert net == pricing.base_price_per_spot


def test_explicit_rates_override_settings():
    pricing = calculate_pricing("50", 5, platform_rate="0", gateway_rate="0", fixed_fee="0")
    assert pricing.final_price_per_spot == Decimal("10.00")
    assert pricing.platform_fee_per_spot == Decimal("0.00")
    assert pricing.total_expected == Decimal("50.00")


def test_free_match_still_covers_fixed_fee():
    pricing = calculate_pricing("0", 4)
    assert pricing.base_price_per_spot == Decimal("0.00")
    assert pricing.final_price_per_spot > Decimal("0.20")


@pytest.mark.parametrize("spots", [0, -3])
def test_non_positive_spots_rejected(spots):
    with pytest.raises(ValidationError):
        calculate_pricing("100", spots)


def test_negative_total_rejected():
    with pytest.raises(ValidationError):
        calculate_pricing("-1", 10)


def test_rates_of_one_hundred_percent_rejected():
    with pytest.raises(ValidationError):
        calculate_pricing("100", 10, platform_rate="0.5", gateway_rate="0.5")


def test_money_rounds_half_up_to_pence():
    assert to_money("10.905") == Decimal("10.91")
    assert to_money("10.904") == Decimal("10.90")
    assert to_money(3) == Decimal("3.00")


def test_minor_units():
    assert to_minor_units(Decimal("10.91")) == 1091
    assert to_minor_units(Decimal("0.2")) == 20
    assert to_minor_units(Decimal("109.10")) == 10910
