"""
Module: pharmacy_kernel.models.sale
Responsibility: ORM persistence for completed sales (header + lines).  Every
    sale line references exactly one lot, giving batch traceability from the
    receipt back to the supplier lot.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    S1 -- total_amount equals the sum of line net amounts.  It is only ever
          set through ``recalculate_total()``.
    S2 -- A sale is written with all of its lines in one transaction and is
          immutable once committed (db/immutability.py).
    S3 -- A sale line references a lot, never a medication directly.
    S4 -- Line quantity > 0, unit price >= 0, 0 <= discount <= gross.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmacy_kernel.db.base import Base, UUIDString
from pharmacy_kernel.db.types import money_column


class SaleModel(Base):
    """A committed sale header."""

    __tablename__ = "sales"

    __table_args__ = (
        Index("idx_sale_sold_at", "sold_at"),
        Index("idx_sale_operator", "operator_id"),
    )

    sold_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # INVARIANT S1: derived from lines
    total_amount: Mapped[Decimal] = mapped_column(money_column(), nullable=False)

    is_prescription: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    prescription_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    operator_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    lines: Mapped[list[SaleLineModel]] = relationship(
        back_populates="sale",
        order_by="SaleLineModel.line_number",
        cascade="all, delete-orphan",
    )

    def recalculate_total(self) -> Decimal:
        """Recompute total_amount from the lines (S1) and return it."""
        self.total_amount = sum(
            (line.net_amount for line in self.lines), Decimal("0")
        )
        return self.total_amount

    def __repr__(self) -> str:
        return f"<Sale {self.id}: {len(self.lines)} lines total={self.total_amount}>"


class SaleLineModel(Base):
    """One draw of a quantity from one lot within a sale."""

    __tablename__ = "sale_lines"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_line_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_sale_line_price_non_negative"),
        CheckConstraint("discount_amount >= 0", name="ck_sale_line_discount_non_negative"),
        UniqueConstraint("sale_id", "line_number", name="uq_sale_line_number"),
        Index("idx_sale_line_lot", "lot_id"),
    )

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales.id"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # INVARIANT S3: lot reference only
    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lots.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(money_column(), nullable=False)

    discount_amount: Mapped[Decimal] = mapped_column(
        money_column(),
        nullable=False,
        default=Decimal("0"),
    )

    sale: Mapped[SaleModel] = relationship(back_populates="lines")

    @property
    def gross_amount(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def net_amount(self) -> Decimal:
        return self.gross_amount - self.discount_amount

    def __repr__(self) -> str:
        return (
            f"<SaleLine {self.line_number}: lot={self.lot_id} "
            f"qty={self.quantity} @ {self.unit_price} -{self.discount_amount}>"
        )
