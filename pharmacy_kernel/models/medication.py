"""
Module: pharmacy_kernel.models.medication
Responsibility: ORM persistence for the medication catalog entries that the
    sale engine consults read-only (list price, prescription flag).
Architecture position: Kernel > Models.  May import from db/ only.

The catalog subsystem owns these rows.  The sale engine never writes them;
it reads them through ``services.catalog.SqlMedicationCatalog``.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from pharmacy_kernel.db.base import TrackedBase
from pharmacy_kernel.db.types import money_column


class MedicationModel(TrackedBase):
    """A catalog medication."""

    __tablename__ = "medications"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    list_price: Mapped[Decimal] = mapped_column(money_column(), nullable=False)

    requires_prescription: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    def __repr__(self) -> str:
        return f"<Medication {self.id}: {self.name} @ {self.list_price}>"
