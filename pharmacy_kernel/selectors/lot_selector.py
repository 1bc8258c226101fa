"""
Module: pharmacy_kernel.selectors.lot_selector
Responsibility: Read-only stock and expiry reports over lots.  No locks are
    taken; results are a snapshot for display and alerts, never input to an
    allocation (allocation reads go through services.lot_ledger).
Architecture position: Kernel > Selectors.
"""

from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.domain.dtos import DEFAULT_EXPIRY_WINDOW_DAYS, LotSnapshot
from pharmacy_kernel.models.lot import LotModel
from pharmacy_kernel.selectors.base import BaseSelector


class LotSelector(BaseSelector[LotModel]):
    """Stock and expiry queries.  Lists are in FEFO order."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _lots(self, *criteria) -> list[LotSnapshot]:
        lots = self.session.execute(
            select(LotModel)
            .where(*criteria)
            .order_by(LotModel.expiration_date, LotModel.id)
        ).scalars().all()
        return [LotSnapshot.from_model(lot) for lot in lots]

    def total_stock(self, medication_id: UUID) -> int:
        """Quantity on hand across all lots, expired ones included."""
        total = self.session.execute(
            select(func.coalesce(func.sum(LotModel.quantity_on_hand), 0)).where(
                LotModel.medication_id == medication_id
            )
        ).scalar_one()
        return int(total)

    def sellable_stock(self, medication_id: UUID) -> int:
        """Quantity on hand across sellable lots only."""
        return sum(lot.quantity_on_hand for lot in self.sellable_lots(medication_id))

    def sellable_lots(self, medication_id: UUID) -> list[LotSnapshot]:
        return self._lots(
            LotModel.medication_id == medication_id,
            LotModel.quantity_on_hand > 0,
            LotModel.expiration_date >= self._clock.today(),
        )

    def expired_lots(self) -> list[LotSnapshot]:
        """Lots past their expiration date that still hold stock."""
        return self._lots(
            LotModel.expiration_date < self._clock.today(),
            LotModel.quantity_on_hand > 0,
        )

    def expiring_before(self, cutoff: date) -> list[LotSnapshot]:
        """Lots with stock whose expiration date is before ``cutoff``."""
        return self._lots(
            LotModel.expiration_date < cutoff,
            LotModel.quantity_on_hand > 0,
        )

    def expiring_soon(self, days: int = DEFAULT_EXPIRY_WINDOW_DAYS) -> list[LotSnapshot]:
        """Sellable lots expiring within ``days`` days from today (inclusive)."""
        today = self._clock.today()
        return self._lots(
            LotModel.expiration_date >= today,
            LotModel.expiration_date <= today + timedelta(days=days),
            LotModel.quantity_on_hand > 0,
        )

    def find_by_lot_number(self, lot_number: str) -> list[LotSnapshot]:
        """All lots carrying a supplier lot number (may span medications)."""
        return self._lots(LotModel.lot_number == lot_number)
