"""Imperative shell: lot and sale ledgers, allocation, and the sale coordinator."""

from pharmacy_kernel.services.catalog import MedicationCatalog, SqlMedicationCatalog
from pharmacy_kernel.services.fefo_allocator import FefoAllocator
from pharmacy_kernel.services.lot_ledger import LotLedger
from pharmacy_kernel.services.promotion import NoPromotionCalculator, PromotionCalculator
from pharmacy_kernel.services.sale_coordinator import (
    SaleCoordinator,
    SaleResult,
    SaleStatus,
)
from pharmacy_kernel.services.sale_ledger import SaleLedger

__all__ = [
    "FefoAllocator",
    "LotLedger",
    "MedicationCatalog",
    "NoPromotionCalculator",
    "PromotionCalculator",
    "SaleCoordinator",
    "SaleLedger",
    "SaleResult",
    "SaleStatus",
    "SqlMedicationCatalog",
]
