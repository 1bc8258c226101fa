"""Pure domain core: clock, DTOs, FEFO allocation, pricing."""

from pharmacy_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from pharmacy_kernel.domain.dtos import (
    FefoAllocation,
    LotDraw,
    LotSnapshot,
    MedicationInfo,
    SaleLineDraft,
    SaleLineRecord,
    SaleLineRequest,
    SaleRecord,
)
from pharmacy_kernel.domain.fefo import allocate_fefo, select_sellable

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "FefoAllocation",
    "LotDraw",
    "LotSnapshot",
    "MedicationInfo",
    "SaleLineDraft",
    "SaleLineRecord",
    "SaleLineRequest",
    "SaleRecord",
    "allocate_fefo",
    "select_sellable",
]
