"""
SaleLedger -- append-only persistence of completed sales.

Responsibility:
    Writes one sale header with all of its lines inside the caller's
    transaction.  The header total is derived from the lines, never passed
    in.

Architecture position:
    Kernel > Services -- imperative shell.  Called by SaleCoordinator after
    every lot decrement of the sale has been flushed.

Invariants enforced:
    S1 -- total_amount is recomputed from the lines before the flush.
    S2 -- Header and lines are added in one flush; committed sales are
          never updated or deleted (see db/immutability.py).
    S3 -- Each line references exactly one lot.
"""

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID, uuid4

from pharmacy_kernel.domain.dtos import SaleLineDraft, SaleRecord
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models.lot import LotModel
from pharmacy_kernel.models.sale import SaleLineModel, SaleModel
from pharmacy_kernel.services.base import BaseService

logger = get_logger("services.sale_ledger")


class SaleLedger(BaseService[SaleModel]):
    def record_sale(
        self,
        *,
        sold_at: datetime,
        operator_id: UUID,
        is_prescription: bool,
        lines: Sequence[SaleLineDraft],
        prescription_number: str | None = None,
        notes: str | None = None,
        sale_id: UUID | None = None,
    ) -> SaleRecord:
        """
        Persist a sale and its lines (flush, no commit).

        Lines are numbered from 1 in the order given.

        Raises:
            ValueError: If ``lines`` is empty.
        """
        if not lines:
            raise ValueError("A sale must have at least one line")

        sale = SaleModel(
            id=sale_id or uuid4(),
            sold_at=sold_at,
            is_prescription=is_prescription,
            prescription_number=prescription_number,
            operator_id=operator_id,
            notes=notes,
        )
        for number, draft in enumerate(lines, start=1):
            sale.lines.append(
                SaleLineModel(
                    line_number=number,
                    lot_id=draft.lot_id,
                    quantity=draft.quantity,
                    unit_price=draft.unit_price,
                    discount_amount=draft.discount_amount,
                )
            )

        # INVARIANT S1: derived total
        sale.recalculate_total()

        self.session.add(sale)
        self.session.flush()

        lots_by_id = {
            lot_id: self.session.get(LotModel, lot_id)
            for lot_id in {line.lot_id for line in sale.lines}
        }

        logger.info(
            "sale_recorded",
            extra={
                "line_count": len(sale.lines),
                "total_amount": sale.total_amount,
            },
        )
        return SaleRecord.from_model(sale, lots_by_id)
