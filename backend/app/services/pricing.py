"""
Per-spot price calculation.

The organizer states what they want to receive in total. The final price a
player pays is grossed up so that, after the platform fee and the gateway's
percentage plus fixed fee come off each spot, the organizer still nets
total / spots:

    final = (base + fixed_fee) / (1 - platform_rate - gateway_rate)
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from app.core.config import get_settings
from app.core.exceptions import ValidationError

CENT = Decimal("0.01")

Number = Union[Decimal, float, int, str]


def to_money(value: Number) -> Decimal:
    """Round to whole pence."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Pounds to pence, the unit the gateway works in."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PriceBreakdown:
    base_price_per_spot: Decimal
    platform_fee_per_spot: Decimal
    gateway_fee_per_spot: Decimal
    final_price_per_spot: Decimal
    platform_fee_rate: Decimal
    gateway_fee_rate: Decimal
    gateway_fixed_fee: Decimal
    total_expected: Decimal


def calculate_pricing(
    total_amount: Number,
    spots: int,
    platform_rate: Optional[Number] = None,
    gateway_rate: Optional[Number] = None,
    fixed_fee: Optional[Number] = None,
) -> PriceBreakdown:
    settings = get_settings()
    if spots <= 0:
        raise ValidationError("Spots must be greater than zero")

    total = Decimal(str(total_amount))
    if total < 0:
        raise ValidationError("Total amount cannot be negative")

    platform = Decimal(str(settings.PLATFORM_FEE_RATE if platform_rate is None else platform_rate))
    gateway = Decimal(str(settings.GATEWAY_FEE_RATE if gateway_rate is None else gateway_rate))
    fixed = Decimal(str(settings.GATEWAY_FIXED_FEE if fixed_fee is None else fixed_fee))

    retained = 1 - platform - gateway
    if retained <= 0:
        raise ValidationError("Fee rates must sum to less than 100%")

    base = total / spots
    final = (base + fixed) / retained

    final_rounded = to_money(final)
    return PriceBreakdown(
        base_price_per_spot=to_money(base),
        platform_fee_per_spot=to_money(final * platform),
        gateway_fee_per_spot=to_money(final * gateway + fixed),
        final_price_per_spot=final_rounded,
        platform_fee_rate=platform,
        gateway_fee_rate=gateway,
        gateway_fixed_fee=to_money(fixed),
        total_expected=to_money(final_rounded * spots),
    )
