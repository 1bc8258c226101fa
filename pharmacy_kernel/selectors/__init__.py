"""Read-only selectors."""

from pharmacy_kernel.selectors.base import BaseSelector
from pharmacy_kernel.selectors.lot_selector import LotSelector
from pharmacy_kernel.selectors.sale_selector import SaleSelector

__all__ = ["BaseSelector", "LotSelector", "SaleSelector"]
