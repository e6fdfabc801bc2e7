"""Fee calculation shared by cart display, checkout, and settlement.

Every amount is a ``Decimal`` rounded half-up to whole cents. The platform
fee is rounded first and the producer share is whatever remains of the
subtotal, so ``platform_fee + producer_earnings == subtotal`` always holds
exactly. Likewise ``total`` is built from the already-rounded processing fee.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, float, str]


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

class FeeSettings(BaseModel):
    """Snapshot of the fee-related platform settings."""

    model_config = ConfigDict(frozen=True)

    platform_commission_rate: Decimal = Decimal("15")
    processing_fee_percentage: Decimal = Decimal("2.9")
    processing_fee_fixed: Decimal = Decimal("0.30")


class FeeBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: Decimal
    processing_fee: Decimal
    platform_fee: Decimal
    producer_earnings: Decimal
    total: Decimal
    platform_commission_rate: Decimal


class LineItemSplit(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: Decimal
    platform_fee: Decimal
    producer_earnings: Decimal


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def to_decimal(value: Number) -> Decimal:
    """Coerce a number to Decimal without going through binary floats."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def round_cents(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _commission(amount: Decimal, rate: Decimal) -> Decimal:
    return round_cents(amount * rate / HUNDRED)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def calculate_fees(subtotal: Number, fee_settings: FeeSettings) -> FeeBreakdown:
    """Price a subtotal against a fee settings snapshot.

    Raises ValueError for a negative subtotal.
    """
    amount = round_cents(subtotal)
    if amount < 0:
        raise ValueError("subtotal must not be negative")

    processing_fee = round_cents(
        amount * fee_settings.processing_fee_percentage / HUNDRED
        + fee_settings.processing_fee_fixed
    )
    platform_fee = _commission(amount, fee_settings.platform_commission_rate)

    return FeeBreakdown(
        subtotal=amount,
        processing_fee=processing_fee,
        platform_fee=platform_fee,
        producer_earnings=amount - platform_fee,
        total=amount + processing_fee,
        platform_commission_rate=fee_settings.platform_commission_rate,
    )


def split_line_item(
    price: Number,
    fee_settings: FeeSettings,
    commission_rate: Optional[Number] = None,
) -> LineItemSplit:
    """Split one line's price between the platform and the producer.

    ``commission_rate`` overrides the platform-wide rate (per-producer deals).
    """
    amount = round_cents(price)
    if amount < 0:
        raise ValueError("price must not be negative")

    rate = (
        to_decimal(commission_rate)
        if commission_rate is not None
        else fee_settings.platform_commission_rate
    )
    platform_fee = _commission(amount, rate)
    return LineItemSplit(
        price=amount,
        platform_fee=platform_fee,
        producer_earnings=amount - platform_fee,
    )


def summarize_splits(
    splits: Iterable[LineItemSplit],
    fee_settings: FeeSettings,
) -> FeeBreakdown:
    """Price a set of already split lines.

    Subtotal, processing fee and total come from :func:`calculate_fees` on
    the summed prices. The platform fee is the sum of the per-line fees so
    a cart quote agrees with the order items it turns into.
    """
    splits = list(splits)
    subtotal = sum((s.price for s in splits), Decimal("0"))
    base = calculate_fees(subtotal, fee_settings)
    platform_fee = round_cents(sum((s.platform_fee for s in splits), Decimal("0")))
    return base.model_copy(
        update={
            "platform_fee": platform_fee,
            "producer_earnings": base.subtotal - platform_fee,
        }
    )
