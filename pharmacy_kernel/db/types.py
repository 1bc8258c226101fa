"""
Module: pharmacy_kernel.db.types
Responsibility: Column type and rounding helper for monetary amounts.
    Centralizes precision so every model, DTO and service uses identical
    definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

CRITICAL: No floats anywhere in the pharmacy kernel.  Prices, discounts and
totals use Decimal with explicit precision.
"""

from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import Numeric


# Scale of every stored amount: 38 digits total, 9 decimal places
STORED_DECIMAL_PLACES = 9

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def money_column() -> Numeric:
    """Column type for prices, discounts and totals."""
    return Numeric(38, STORED_DECIMAL_PLACES)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    This is the only sanctioned rounding function for amounts in the kernel.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "0"
    return value.quantize(Decimal(quantize_str), rounding=rounding)
