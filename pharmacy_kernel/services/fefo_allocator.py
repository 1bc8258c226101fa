"""
FefoAllocator -- FEFO allocation against live lot state.

Reads sellable lots through the LotLedger (in-transaction, locked) and runs
the pure ``domain.fefo.allocate_fefo`` over them.
"""

from uuid import UUID

from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.domain.dtos import FefoAllocation
from pharmacy_kernel.domain.fefo import allocate_fefo
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.services.lot_ledger import LotLedger

logger = get_logger("services.fefo_allocator")


class FefoAllocator:
    def __init__(self, lot_ledger: LotLedger, clock: Clock):
        self._lot_ledger = lot_ledger
        self._clock = clock

    def allocate(self, medication_id: UUID, requested: int) -> FefoAllocation:
        """
        Allocate ``requested`` units of ``medication_id``.

        Returns an incomplete allocation (no draws, shortfall > 0) rather
        than raising; the caller decides how to fail.
        """
        lots = self._lot_ledger.find_sellable_lots(medication_id)
        allocation = allocate_fefo(medication_id, requested, lots, self._clock.today())

        logger.info(
            "fefo_allocation_completed",
            extra={
                "medication_id": str(medication_id),
                "requested": requested,
                "available": allocation.available,
                "is_complete": allocation.is_complete,
                "lots": [str(draw.lot_id) for draw in allocation.draws],
            },
        )
        return allocation
