"""ORM models for the pharmacy kernel."""

from pharmacy_kernel.models.lot import LotModel
from pharmacy_kernel.models.medication import MedicationModel
from pharmacy_kernel.models.sale import SaleLineModel, SaleModel

__all__ = [
    "LotModel",
    "MedicationModel",
    "SaleLineModel",
    "SaleModel",
]
