"""
FEFO -- First-Expired-First-Out lot allocation.

Responsibility:
    Pure algorithm that turns one requested (medication, quantity) pair into
    an ordered sequence of (lot, quantity-taken) draws from sellable lots,
    soonest expiration first.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The caller supplies
    the lot snapshots (read under lock inside the sale transaction) and the
    current date.

Algorithm:
    1. Keep sellable lots: quantity_on_hand > 0 and expiration_date >= today.
    2. Sort ascending by (expiration_date, lot_id).  The lot id tie-break
       makes the result reproducible.
    3. Walk the sorted lots, taking min(quantity_on_hand, remaining) from
       each until remaining is 0.
    4. If the sellable total is below the request, return no draws and
       report the shortfall.  A partial allocation is never returned.

Failure modes:
    - ValueError if requested is not a positive integer.
"""

from collections.abc import Iterable
from datetime import date
from uuid import UUID

from pharmacy_kernel.domain.dtos import FefoAllocation, LotDraw, LotSnapshot


def fefo_sort_key(lot: LotSnapshot) -> tuple[date, UUID]:
    return (lot.expiration_date, lot.lot_id)


def select_sellable(lots: Iterable[LotSnapshot], today: date) -> list[LotSnapshot]:
    """Sellable lots in FEFO order."""
    return sorted(
        (lot for lot in lots if lot.is_sellable(today)),
        key=fefo_sort_key,
    )


def allocate_fefo(
    medication_id: UUID,
    requested: int,
    lots: Iterable[LotSnapshot],
    today: date,
) -> FefoAllocation:
    """
    Allocate ``requested`` units of ``medication_id`` across ``lots``.

    Lots belonging to other medications are ignored.

    Returns:
        FefoAllocation.  Check ``is_complete`` before using ``draws``.
    """
    if isinstance(requested, bool) or not isinstance(requested, int) or requested <= 0:
        raise ValueError(f"requested must be a positive integer, got {requested!r}")

    sellable = select_sellable(
        (lot for lot in lots if lot.medication_id == medication_id),
        today,
    )
    available = sum(lot.quantity_on_hand for lot in sellable)

    if available < requested:
        return FefoAllocation(
            medication_id=medication_id,
            requested=requested,
            available=available,
        )

    draws: list[LotDraw] = []
    remaining = requested
    for lot in sellable:
        if remaining == 0:
            break
        take = min(lot.quantity_on_hand, remaining)
        draws.append(
            LotDraw(
                lot_id=lot.lot_id,
                lot_number=lot.lot_number,
                expiration_date=lot.expiration_date,
                quantity=take,
            )
        )
        remaining -= take

    return FefoAllocation(
        medication_id=medication_id,
        requested=requested,
        available=available,
        draws=tuple(draws),
    )
