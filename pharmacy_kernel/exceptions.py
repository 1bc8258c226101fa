"""
Typed Exception Hierarchy for the Pharmacy Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A sale can fail for reasons the operator must act on differently: a typo in
the basket, a missing prescription, a shelf that ran dry while the basket was
being rung up, a lock that could not be acquired in time, or a database that
is down.  Callers must be able to tell these apart without parsing messages:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, UI-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        coordinator.create_sale(...)
    except Exception as e:
        if "insufficient" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    result = coordinator.create_sale(...)
    if result.status == SaleStatus.STOCK_INSUFFICIENT:
        err = result.error            # InsufficientStockError
        show(f"Short by {err.shortfall} units of {err.medication_id}")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from PharmacyKernelError:

    PharmacyKernelError (base)
    |
    +-- SaleValidationError
    |   +-- EmptyBasketError
    |   +-- InvalidQuantityError
    |   +-- InvalidPriceError
    |   +-- MedicationNotFoundError
    |
    +-- PrescriptionRequiredError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- LotNotFoundError
    |   +-- LotOverdrawError
    |
    +-- ConcurrencyError                (retryable)
    |   +-- OptimisticLockError
    |   +-- LockTimeoutError
    |
    +-- StorageFaultError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- SaleNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | EMPTY_BASKET                | Sale submitted with no lines
                | INVALID_QUANTITY            | Line quantity <= 0
                | INVALID_PRICE               | Non-finite or negative price override
                | MEDICATION_NOT_FOUND        | Catalog does not know the id
----------------|-----------------------------|-----------------------------------------
Prescription    | PRESCRIPTION_REQUIRED       | Rx-only medication, sale not flagged
----------------|-----------------------------|-----------------------------------------
Stock           | STOCK_INSUFFICIENT          | Sellable stock < requested
                | LOT_NOT_FOUND               | Decrement of an unknown lot
                | LOT_OVERDRAW                | Decrement larger than quantity-on-hand
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Lot version changed under us
                | LOCK_TIMEOUT                | Lock wait / deadlock / busy database
----------------|-----------------------------|-----------------------------------------
Storage         | STORAGE_FAULT               | Store unreachable or rejected the txn
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Editing a committed sale or lot identity
----------------|-----------------------------|-----------------------------------------
Lookup          | SALE_NOT_FOUND              | Sale id does not exist

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY INHERIT FROM Exception (not ValueError, etc.)?
   Domain exceptions should be catchable as a group. Inheriting from
   built-in types mixes domain errors with programming errors.

2. WHY code CLASS ATTRIBUTE (not instance)?
   Codes are static per exception type. Class attribute enables
   InsufficientStockError.code without instantiation.

3. WHY retryable CLASS ATTRIBUTE?
   The coordinator decides whether to re-run the transactional pass by
   asking the error, not by enumerating types.

===============================================================================
"""

from __future__ import annotations

from typing import Any


class PharmacyKernelError(Exception):
    """
    Base exception for all pharmacy kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PHARMACY_KERNEL_ERROR"
    retryable: bool = False


# Validation exceptions


class SaleValidationError(PharmacyKernelError):
    """Malformed sale input, rejected before any transaction opens."""

    code: str = "VALIDATION_ERROR"


class EmptyBasketError(SaleValidationError):
    """Sale submitted with no lines."""

    code: str = "EMPTY_BASKET"

    def __init__(self) -> None:
        super().__init__("A sale must contain at least one line")


class InvalidQuantityError(SaleValidationError):
    """Requested quantity is not a positive integer."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, line_index: int, quantity: Any):
        self.line_index = line_index
        self.quantity = quantity
        super().__init__(
            f"Line {line_index}: quantity must be a positive integer, got {quantity!r}"
        )


class InvalidPriceError(SaleValidationError):
    """Unit price override is not a finite, non-negative amount."""

    code: str = "INVALID_PRICE"

    def __init__(self, line_index: int, unit_price: Any):
        self.line_index = line_index
        self.unit_price = unit_price
        super().__init__(
            f"Line {line_index}: unit price must be a finite non-negative amount, got {unit_price}"
        )


class MedicationNotFoundError(SaleValidationError):
    """The medication catalog has no entry for the id."""

    code: str = "MEDICATION_NOT_FOUND"

    def __init__(self, medication_id: str, line_index: int | None = None):
        self.medication_id = medication_id
        self.line_index = line_index
        super().__init__(f"Medication not found: {medication_id}")


# Prescription


class PrescriptionRequiredError(PharmacyKernelError):
    """A line needs a prescription but the sale is not flagged as such."""

    code: str = "PRESCRIPTION_REQUIRED"

    def __init__(self, medication_id: str, medication_name: str, line_index: int):
        self.medication_id = medication_id
        self.medication_name = medication_name
        self.line_index = line_index
        super().__init__(
            f"Medication {medication_name} ({medication_id}) requires a prescription"
        )


# Stock exceptions


class StockError(PharmacyKernelError):
    """Base exception for lot stock errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """
    Sellable stock for a medication is below the requested quantity.

    ``stage`` is "pre_validation" when detected before the transaction and
    "allocation" when detected inside it (stock consumed concurrently).
    """

    code: str = "STOCK_INSUFFICIENT"

    def __init__(
        self,
        medication_id: str,
        requested: int,
        available: int,
        line_index: int | None = None,
        stage: str = "allocation",
    ):
        self.medication_id = medication_id
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        self.line_index = line_index
        self.stage = stage
        super().__init__(
            f"Insufficient stock for medication {medication_id}: "
            f"requested {requested}, available {available} "
            f"(short by {self.shortfall})"
        )


class LotNotFoundError(StockError):
    """Lot with given ID was not found."""

    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_id: str):
        self.lot_id = lot_id
        super().__init__(f"Lot not found: {lot_id}")


class LotOverdrawError(StockError):
    """Decrement would take a lot's quantity-on-hand below zero."""

    code: str = "LOT_OVERDRAW"

    def __init__(self, lot_id: str, quantity_on_hand: int, requested: int):
        self.lot_id = lot_id
        self.quantity_on_hand = quantity_on_hand
        self.requested = requested
        super().__init__(
            f"Cannot take {requested} from lot {lot_id}: "
            f"only {quantity_on_hand} on hand"
        )


# Concurrency-related exceptions


class ConcurrencyError(PharmacyKernelError):
    """Base exception for concurrency conflicts. Always retryable."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class LockTimeoutError(ConcurrencyError):
    """Lock wait timed out, deadlock detected, or the database was busy."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Lock could not be acquired: {detail}")


# Storage


class StorageFaultError(PharmacyKernelError):
    """The store is unreachable or rejected the transaction."""

    code: str = "STORAGE_FAULT"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage fault during {operation}: {detail}")


# Immutability-related exceptions


class ImmutabilityError(PharmacyKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Committed sales and sale lines are append-only; lots are never deleted
    and their identity fields never change.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Lookup


class SaleNotFoundError(PharmacyKernelError):
    """Sale with given ID was not found."""

    code: str = "SALE_NOT_FOUND"

    def __init__(self, sale_id: str):
        self.sale_id = sale_id
        super().__init__(f"Sale not found: {sale_id}")
