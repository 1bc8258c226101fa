"""
Module: pharmacy_kernel.models.lot
Responsibility: ORM persistence for physical inventory batches (lots).  Each
    lot holds the quantity-on-hand of one medication received together, with
    one expiration date.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    L1 -- quantity_on_hand >= 0.  Backed by a CHECK constraint; the Lot
          Ledger refuses any decrement that would cross zero.
    L2 -- Lots are never deleted.  An emptied lot stays as history
          (db/immutability.py).
    L3 -- Identity fields (medication_id, lot_number, expiration_date) never
          change after creation (db/immutability.py).
    L4 -- Every UPDATE is version-checked.  ``version`` is the mapper's
          version_id_col, so a write based on a stale read fails with
          StaleDataError instead of silently overwriting.

Query support:
    (medication_id, expiration_date) index drives the FEFO read.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from pharmacy_kernel.db.base import TrackedBase, UUIDString
from pharmacy_kernel.db.types import money_column


class LotModel(TrackedBase):
    """
    Persistent storage for one inventory lot.

    Guarantees:
        - quantity_on_hand is never negative (L1).
        - version increments on every UPDATE (L4).

    Non-goals:
        - Receiving, reconciliation and returns create or increase lots in
          other workflows.  The sale engine only decrements.
    """

    __tablename__ = "lots"

    __table_args__ = (
        CheckConstraint("quantity_on_hand >= 0", name="ck_lot_quantity_non_negative"),
        # Query: FEFO read for a medication
        Index("idx_lot_medication_expiration", "medication_id", "expiration_date"),
        # Query: traceability by supplier batch number
        Index("idx_lot_number", "lot_number"),
    )

    medication_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("medications.id"),
        nullable=False,
    )

    # Supplier-assigned, not unique across medications
    lot_number: Mapped[str] = mapped_column(String(64), nullable=False)

    expiration_date: Mapped[date] = mapped_column(Date, nullable=False)

    # INVARIANT L1: never negative
    quantity_on_hand: Mapped[int] = mapped_column(Integer, nullable=False)

    purchase_price: Mapped[Decimal] = mapped_column(money_column(), nullable=False)

    received_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # INVARIANT L4: optimistic version stamp
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Lot {self.id}: {self.lot_number} med={self.medication_id} "
            f"qty={self.quantity_on_hand} exp={self.expiration_date}>"
        )
