"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow through a sale:
    SaleLineRequest (input), MedicationInfo and LotSnapshot (reads),
    LotDraw and FefoAllocation (allocator output), SaleLineDraft (priced
    draw awaiting persistence), SaleLineRecord and
    SaleRecord (persistence boundary / caller output).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies, database access, and external services.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.

Invariants enforced:
    - FefoAllocation never carries a partial allocation: either the draws
      cover ``requested`` exactly or ``draws`` is empty and ``shortfall`` > 0.
    - Lines reference lots, never medications directly (lot traceability).

Data flow:
    SaleLineRequest -> FefoAllocation -> SaleLineDraft -> SaleRecord
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from pharmacy_kernel.models.lot import LotModel
    from pharmacy_kernel.models.medication import MedicationModel
    from pharmacy_kernel.models.sale import SaleLineModel, SaleModel


# Expiry alert window used by reports
DEFAULT_EXPIRY_WINDOW_DAYS = 90


@dataclass(frozen=True)
class MedicationInfo:
    """Catalog view of a medication, as the sale engine sees it."""

    medication_id: UUID
    name: str
    list_price: Decimal
    requires_prescription: bool

    @classmethod
    def from_model(cls, model: MedicationModel) -> MedicationInfo:
        return cls(
            medication_id=model.id,
            name=model.name,
            list_price=model.list_price,
            requires_prescription=model.requires_prescription,
        )


@dataclass(frozen=True)
class LotSnapshot:
    """
    Point-in-time view of one lot.

    Snapshots are taken inside the sale transaction, after the lot row is
    locked, so quantity_on_hand is the live value.
    """

    lot_id: UUID
    medication_id: UUID
    lot_number: str
    expiration_date: date
    quantity_on_hand: int
    purchase_price: Decimal

    def is_expired(self, today: date) -> bool:
        """Expiration date strictly before ``today``."""
        return self.expiration_date < today

    def is_sellable(self, today: date) -> bool:
        """Positive stock and not expired as of ``today``."""
        return self.quantity_on_hand > 0 and not self.is_expired(today)

    def is_expiring_soon(
        self,
        today: date,
        window_days: int = DEFAULT_EXPIRY_WINDOW_DAYS,
    ) -> bool:
        """Not yet expired, but expires within ``window_days`` of ``today``."""
        if self.is_expired(today):
            return False
        return self.expiration_date <= today + timedelta(days=window_days)

    @classmethod
    def from_model(cls, model: LotModel) -> LotSnapshot:
        return cls(
            lot_id=model.id,
            medication_id=model.medication_id,
            lot_number=model.lot_number,
            expiration_date=model.expiration_date,
            quantity_on_hand=model.quantity_on_hand,
            purchase_price=model.purchase_price,
        )


@dataclass(frozen=True)
class SaleLineRequest:
    """
    One requested (medication, quantity) pair in a basket.

    ``unit_price_override`` replaces the catalog list price when given.
    Validation happens in the coordinator so that a bad line becomes a typed
    failure result rather than a constructor error.
    """

    medication_id: UUID
    quantity: int
    unit_price_override: Decimal | None = None


@dataclass(frozen=True)
class LotDraw:
    """A quantity taken from one lot."""

    lot_id: UUID
    lot_number: str
    expiration_date: date
    quantity: int


@dataclass(frozen=True)
class FefoAllocation:
    """
    Result of allocating one requested line against sellable lots.

    Guarantees:
        - is_complete implies sum(draw.quantity) == requested.
        - not is_complete implies draws == () and shortfall == requested - available.
        - draws are in non-decreasing expiration order.
    """

    medication_id: UUID
    requested: int
    available: int
    draws: tuple[LotDraw, ...] = ()

    @property
    def allocated(self) -> int:
        return sum(draw.quantity for draw in self.draws)

    @property
    def shortfall(self) -> int:
        return max(self.requested - self.available, 0)

    @property
    def is_complete(self) -> bool:
        return self.shortfall == 0


@dataclass(frozen=True)
class SaleLineRecord:
    """A committed sale line with its lot reference resolved."""

    line_id: UUID
    line_number: int
    lot_id: UUID
    lot_number: str
    medication_id: UUID
    expiration_date: date
    quantity: int
    unit_price: Decimal
    discount_amount: Decimal

    @property
    def gross_amount(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def net_amount(self) -> Decimal:
        return self.gross_amount - self.discount_amount

    @classmethod
    def from_model(cls, line: SaleLineModel, lot: LotModel) -> SaleLineRecord:
        return cls(
            line_id=line.id,
            line_number=line.line_number,
            lot_id=line.lot_id,
            lot_number=lot.lot_number,
            medication_id=lot.medication_id,
            expiration_date=lot.expiration_date,
            quantity=line.quantity,
            unit_price=line.unit_price,
            discount_amount=line.discount_amount,
        )


@dataclass(frozen=True)
class SaleRecord:
    """
    A committed sale: header plus lines in line_number order.

    total_amount is the persisted header value; it always equals the sum of
    the line net amounts.
    """

    sale_id: UUID
    sold_at: datetime
    total_amount: Decimal
    is_prescription: bool
    operator_id: UUID
    lines: tuple[SaleLineRecord, ...]
    prescription_number: str | None = None
    notes: str | None = None

    def quantity_for(self, medication_id: UUID) -> int:
        """Total quantity sold of ``medication_id`` across all lines."""
        return sum(
            line.quantity for line in self.lines if line.medication_id == medication_id
        )

    def lots_for(self, medication_id: UUID) -> tuple[UUID, ...]:
        """Lot ids drawn for ``medication_id``, in line order."""
        return tuple(
            line.lot_id for line in self.lines if line.medication_id == medication_id
        )

    @classmethod
    def from_model(
        cls,
        sale: SaleModel,
        lots_by_id: dict[UUID, LotModel],
    ) -> SaleRecord:
        """
        Build a SaleRecord from a SaleModel.

        Args:
            sale: Sale ORM model with its lines loaded.
            lots_by_id: Every lot referenced by the sale's lines.
        """
        return cls(
            sale_id=sale.id,
            sold_at=sale.sold_at,
            total_amount=sale.total_amount,
            is_prescription=sale.is_prescription,
            operator_id=sale.operator_id,
            lines=tuple(
                SaleLineRecord.from_model(line, lots_by_id[line.lot_id])
                for line in sale.lines
            ),
            prescription_number=sale.prescription_number,
            notes=sale.notes,
        )


@dataclass(frozen=True)
class SaleLineDraft:
    """A priced draw from one lot, ready to be written as a sale line."""

    lot_id: UUID
    quantity: int
    unit_price: Decimal
    discount_amount: Decimal

    @property
    def net_amount(self) -> Decimal:
        return self.unit_price * self.quantity - self.discount_amount
