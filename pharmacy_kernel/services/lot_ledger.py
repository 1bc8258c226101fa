"""
LotLedger -- the sole writer of lot quantity-on-hand.

Responsibility:
    Reads lots for the sale engine and applies the quantity decrements a
    sale produces.  Every read used for allocation goes to the database
    under a row lock and refreshes the identity map, so the caller always
    sees the current, in-transaction quantity.

Architecture position:
    Kernel > Services -- imperative shell.  Called by FefoAllocator and
    SaleCoordinator inside the sale transaction.

Invariants enforced:
    L1 -- quantity_on_hand never goes below zero.  ``decrement_quantity``
          refuses an overdraw before writing; the CHECK constraint and the
          immutability listener back it up.
    L4 -- Lost updates are impossible.  Lots are read ``FOR UPDATE`` (the row
          stays locked until commit/rollback) and every UPDATE carries the
          version the transaction read.

Failure modes:
    - LotNotFoundError: decrement of an unknown lot.
    - LotOverdrawError: decrement larger than quantity_on_hand.
    - OptimisticLockError: the lot's version changed between read and write.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.domain.dtos import LotSnapshot
from pharmacy_kernel.exceptions import (
    LotNotFoundError,
    LotOverdrawError,
    OptimisticLockError,
)
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models.lot import LotModel
from pharmacy_kernel.services.base import BaseService

logger = get_logger("services.lot_ledger")


class LotLedger(BaseService[LotModel]):
    """
    Lot reads and decrements within the caller's transaction.

    Contract:
        The caller owns the transaction.  Locks taken here are held until
        the caller commits or rolls back.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def lock_lots(self, medication_ids: Iterable[UUID]) -> list[LotSnapshot]:
        """
        Lock every lot of the given medications.

        Rows are locked in one statement ordered by (medication_id,
        expiration_date, id), so two sales touching overlapping medications
        acquire their locks in the same order and cannot deadlock.
        """
        ids = sorted(set(medication_ids), key=str)
        if not ids:
            return []

        lots = self.session.execute(
            select(LotModel)
            .where(LotModel.medication_id.in_(ids))
            .order_by(LotModel.medication_id, LotModel.expiration_date, LotModel.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        logger.debug(
            "lots_locked",
            extra={"medication_count": len(ids), "lot_count": len(lots)},
        )
        return [LotSnapshot.from_model(lot) for lot in lots]

    def find_sellable_lots(self, medication_id: UUID) -> list[LotSnapshot]:
        """
        Sellable lots of a medication, soonest expiration first.

        Reads through to the database with a row lock and refreshes any
        cached instances, so decrements already flushed in this
        transaction are visible and nothing is served from a stale cache.
        """
        today = self._clock.today()
        lots = self.session.execute(
            select(LotModel)
            .where(
                LotModel.medication_id == medication_id,
                LotModel.quantity_on_hand > 0,
                LotModel.expiration_date >= today,
            )
            .order_by(LotModel.expiration_date, LotModel.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [LotSnapshot.from_model(lot) for lot in lots]

    def total_sellable_quantity(self, medication_id: UUID) -> int:
        """Sum of quantity_on_hand over sellable lots.  Takes no lock."""
        today = self._clock.today()
        total = self.session.execute(
            select(func.coalesce(func.sum(LotModel.quantity_on_hand), 0)).where(
                LotModel.medication_id == medication_id,
                LotModel.quantity_on_hand > 0,
                LotModel.expiration_date >= today,
            )
        ).scalar_one()
        return int(total)

    def decrement_quantity(self, lot_id: UUID, amount: int) -> LotSnapshot:
        """
        Take ``amount`` units from a lot.

        Preconditions:
            - amount > 0.

        Postconditions:
            - The lot's quantity_on_hand is reduced by exactly ``amount`` and
              the change is flushed (not committed).

        Raises:
            LotNotFoundError: Unknown lot.
            LotOverdrawError: amount exceeds quantity_on_hand.
            OptimisticLockError: Concurrent modification detected on flush.
        """
        if amount <= 0:
            raise ValueError(f"Decrement amount must be positive, got {amount}")

        lot = self.session.get(
            LotModel,
            lot_id,
            with_for_update=True,
            populate_existing=True,
        )
        if lot is None:
            raise LotNotFoundError(str(lot_id))

        before = lot.quantity_on_hand
        if amount > before:
            logger.warning(
                "lot_overdraw_refused",
                extra={
                    "lot_id": str(lot_id),
                    "quantity_on_hand": before,
                    "requested": amount,
                },
            )
            raise LotOverdrawError(str(lot_id), before, amount)

        lot.quantity_on_hand = before - amount
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError("Lot", str(lot_id)) from exc

        logger.info(
            "lot_decremented",
            extra={
                "lot_id": str(lot_id),
                "lot_number": lot.lot_number,
                "quantity": amount,
                "quantity_before": before,
                "quantity_after": lot.quantity_on_hand,
                "version": lot.version,
            },
        )
        return LotSnapshot.from_model(lot)
