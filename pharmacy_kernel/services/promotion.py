"""
Promotion calculator seam.

Promotion rules live outside the sale engine.  The engine asks for one
discount per requested line and trusts it, apart from clamping it into
[0, line gross] (see ``domain.pricing.clamp_discount``).
"""

from decimal import Decimal
from typing import Protocol
from uuid import UUID

from pharmacy_kernel.db.types import ZERO


class PromotionCalculator(Protocol):
    def compute_discount(
        self,
        medication_id: UUID,
        quantity: int,
        unit_price: Decimal,
    ) -> Decimal:
        """Discount amount for the whole line; 0 when no promotion applies."""
        ...


class NoPromotionCalculator:
    """Used when no promotion subsystem is wired in."""

    def compute_discount(
        self,
        medication_id: UUID,
        quantity: int,
        unit_price: Decimal,
    ) -> Decimal:
        return ZERO
