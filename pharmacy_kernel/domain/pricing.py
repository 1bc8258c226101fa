"""
Pricing -- Line amount and discount arithmetic.

Responsibility:
    Gross/net amounts for sale lines, clamping of promotion discounts, and
    apportionment of one requested line's discount across the sale lines its
    FEFO allocation produced.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - 0 <= discount <= gross for every line, so a net amount is never negative.
    - Apportioned discounts sum exactly to the clamped discount.
"""

from collections.abc import Sequence
from decimal import Decimal

from pharmacy_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO, round_money


def line_gross(quantity: int, unit_price: Decimal) -> Decimal:
    return unit_price * quantity


def clamp_discount(
    discount: Decimal | None,
    gross: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
) -> Decimal:
    """
    Round a supplied discount and clamp it into [0, gross].

    None means no promotion applies.
    """
    if discount is None:
        return ZERO
    rounded = round_money(Decimal(discount), decimal_places)
    if rounded <= ZERO:
        return ZERO
    return min(rounded, gross)


def apportion_discount(discount: Decimal, grosses: Sequence[Decimal]) -> list[Decimal]:
    """
    Spread ``discount`` across lines in order, each taking at most its gross.

    Earlier lines (sooner-expiring lots) absorb the discount first.

    Raises:
        ValueError: If discount is negative or exceeds the total gross.
    """
    if discount < ZERO:
        raise ValueError(f"discount must be non-negative, got {discount}")
    if discount > sum(grosses, ZERO):
        raise ValueError(
            f"discount {discount} exceeds total gross {sum(grosses, ZERO)}"
        )

    shares: list[Decimal] = []
    remaining = discount
    for gross in grosses:
        share = min(gross, remaining)
        shares.append(share)
        remaining -= share
    return shares
