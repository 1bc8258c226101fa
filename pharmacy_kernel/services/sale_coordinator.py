"""
SaleCoordinator -- one basket, one atomic sale.

Responsibility:
    Orchestrates validation, FEFO allocation, lot decrements and sale
    persistence for an entire multi-line basket as one unit of work, and
    reports the outcome as a ``SaleResult``.

Architecture position:
    Kernel > Services -- imperative shell, top-level entry point of the
    sale engine.  Owns the transaction boundary (commit/rollback); every
    service it calls only flushes.

Flow:
    1. Pre-validation (no transaction, no mutation): basket shape, catalog
       lookup, prescription flag, aggregate sellable stock, unit price and
       promotion discount per line.
    2. Transactional pass (fresh session per attempt):
         lock every lot of every basket medication (FOR UPDATE, global order)
         -> per line: FEFO allocation on live lot state
         -> per draw: LotLedger.decrement_quantity + SaleLineDraft
         -> SaleLedger.record_sale (total derived from lines)
         -> commit
    3. On a concurrency conflict the transactional pass is re-run from
       scratch, up to ``max_attempts``.  Pre-validation is not repeated.

Invariants enforced:
    - Atomicity: any failure in the transactional pass rolls the whole
      transaction back before the result is returned.  No lot is left
      decremented without its committed sale line.
    - Conservation: every requested line is allocated exactly, or the sale
      is rejected.
    - Business failures are returned as results, never raised.  Programming
      errors propagate after rollback.

Failure modes (SaleResult.status):
    VALIDATION_FAILED      -- empty basket, bad quantity/price, unknown medication
    PRESCRIPTION_REQUIRED  -- Rx-only medication in a non-prescription sale
    STOCK_INSUFFICIENT     -- at pre-validation or at allocation time
    CONCURRENCY_CONFLICT   -- lock timeout / version conflict, attempts exhausted
    STORAGE_FAULT          -- store unreachable or rejected the transaction
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pharmacy_kernel.db.errors import classify_storage_error
from pharmacy_kernel.db.types import MONEY_DECIMAL_PLACES, STORED_DECIMAL_PLACES, round_money
from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.domain.dtos import (
    MedicationInfo,
    SaleLineDraft,
    SaleLineRequest,
    SaleRecord,
)
from pharmacy_kernel.domain.pricing import apportion_discount, clamp_discount, line_gross
from pharmacy_kernel.exceptions import (
    ConcurrencyError,
    EmptyBasketError,
    InsufficientStockError,
    InvalidPriceError,
    InvalidQuantityError,
    MedicationNotFoundError,
    PharmacyKernelError,
    PrescriptionRequiredError,
    SaleValidationError,
    StockError,
    StorageFaultError,
)
from pharmacy_kernel.logging_config import LogContext, elapsed_ms, get_logger
from pharmacy_kernel.services.catalog import MedicationCatalog
from pharmacy_kernel.services.fefo_allocator import FefoAllocator
from pharmacy_kernel.services.lot_ledger import LotLedger
from pharmacy_kernel.services.promotion import NoPromotionCalculator, PromotionCalculator
from pharmacy_kernel.services.sale_ledger import SaleLedger

logger = get_logger("services.sale_coordinator")


class SaleStatus(str, Enum):
    """Outcome of a create_sale call."""

    COMPLETED = "completed"
    VALIDATION_FAILED = "validation_failed"
    PRESCRIPTION_REQUIRED = "prescription_required"
    STOCK_INSUFFICIENT = "stock_insufficient"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    STORAGE_FAULT = "storage_fault"


# First match wins
_STATUS_BY_ERROR: tuple[tuple[type[PharmacyKernelError], SaleStatus], ...] = (
    (SaleValidationError, SaleStatus.VALIDATION_FAILED),
    (PrescriptionRequiredError, SaleStatus.PRESCRIPTION_REQUIRED),
    (StockError, SaleStatus.STOCK_INSUFFICIENT),
    (ConcurrencyError, SaleStatus.CONCURRENCY_CONFLICT),
    (StorageFaultError, SaleStatus.STORAGE_FAULT),
)


def status_for_error(error: PharmacyKernelError) -> SaleStatus | None:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return None


@dataclass(frozen=True)
class SaleResult:
    """Result of a create_sale call."""

    status: SaleStatus
    sale: SaleRecord | None = None
    error: PharmacyKernelError | None = None
    attempts: int = 0

    @property
    def is_success(self) -> bool:
        return self.status == SaleStatus.COMPLETED

    @property
    def is_retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    @property
    def message(self) -> str | None:
        return str(self.error) if self.error is not None else None


@dataclass(frozen=True)
class _PricedLine:
    """A validated request line with its unit price and clamped discount."""

    index: int
    request: SaleLineRequest
    unit_price: Decimal
    discount: Decimal


def _override_price(index: int, override: object) -> Decimal | None:
    """
    Normalize a unit price override to the stored scale.

    The override is rounded to ``STORED_DECIMAL_PLACES`` so the returned
    SaleRecord carries exactly the amounts that are committed.

    Raises:
        InvalidPriceError: NaN, infinite, negative, or not a number at all.
    """
    if override is None:
        return None
    try:
        price = Decimal(override)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidPriceError(index, override) from None
    if not price.is_finite() or price < 0:
        raise InvalidPriceError(index, override)
    return round_money(price, STORED_DECIMAL_PLACES)


class SaleCoordinator:
    """
    Sale Transaction Coordinator.

    Contract:
        ``create_sale`` either commits one sale with all of its lines and
        the matching lot decrements, or changes nothing.

    Guarantees:
        - Each attempt runs in its own session from ``session_factory``.
        - No network or catalog call happens while lot rows are locked.
        - Lots are locked in (medication_id, expiration_date, id) order.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        catalog: MedicationCatalog,
        promotions: PromotionCalculator | None = None,
        clock: Clock | None = None,
        *,
        max_attempts: int = 3,
        retry_backoff_ms: int = 50,
        lock_timeout_ms: int | None = None,
        money_decimal_places: int = MONEY_DECIMAL_PLACES,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if retry_backoff_ms < 0:
            raise ValueError(f"retry_backoff_ms must be >= 0, got {retry_backoff_ms}")

        self._session_factory = session_factory
        self._catalog = catalog
        self._promotions = promotions or NoPromotionCalculator()
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts
        self._retry_backoff_ms = retry_backoff_ms
        self._lock_timeout_ms = lock_timeout_ms
        self._money_decimal_places = money_decimal_places
        self._sleep = sleep

    # =========================================================================
    # Public API
    # =========================================================================

    def create_sale(
        self,
        lines: Sequence[SaleLineRequest],
        operator_id: UUID,
        is_prescription: bool = False,
        prescription_number: str | None = None,
        notes: str | None = None,
    ) -> SaleResult:
        """
        Create a sale for a basket of (medication, quantity) requests.

        Args:
            lines: Requested lines, allocated in the order given.
            operator_id: Operator recorded on the sale header.
            is_prescription: True when the sale is made against a
                prescription; required if any line is Rx-only.
            prescription_number: Recorded verbatim on the header.
            notes: Recorded verbatim on the header.

        Returns:
            SaleResult.  ``sale`` is populated only when status is COMPLETED.
        """
        correlation_id = str(uuid4())
        with LogContext.bind(
            correlation_id=correlation_id,
            operator_id=str(operator_id),
        ):
            logger.info(
                "sale_started",
                extra={
                    "line_count": len(lines),
                    "is_prescription": is_prescription,
                },
            )
            t0 = time.monotonic()

            try:
                priced = self._pre_validate(lines, is_prescription)
            except PharmacyKernelError as exc:
                result = self._failure(exc, attempts=0)
            else:
                result = self._run_attempts(
                    priced,
                    operator_id=operator_id,
                    is_prescription=is_prescription,
                    prescription_number=prescription_number,
                    notes=notes,
                )

            duration_ms = elapsed_ms(t0)
            if result.is_success:
                logger.info(
                    "sale_completed",
                    extra={
                        "status": result.status.value,
                        "sale_id": str(result.sale.sale_id),
                        "total_amount": result.sale.total_amount,
                        "attempts": result.attempts,
                        "duration_ms": duration_ms,
                    },
                )
            else:
                logger.warning(
                    "sale_rejected",
                    extra={
                        "status": result.status.value,
                        "error_code": result.error.code,
                        "error_message": str(result.error),
                        "attempts": result.attempts,
                        "duration_ms": duration_ms,
                    },
                )
            return result

    # =========================================================================
    # Pre-validation
    # =========================================================================

    def _pre_validate(
        self,
        lines: Sequence[SaleLineRequest],
        is_prescription: bool,
    ) -> list[_PricedLine]:
        """
        Reject a bad basket before any transaction opens.

        Raises:
            EmptyBasketError, InvalidQuantityError, InvalidPriceError,
            MedicationNotFoundError, PrescriptionRequiredError,
            InsufficientStockError (stage="pre_validation"),
            LockTimeoutError / StorageFaultError from the stock read.
        """
        if not lines:
            raise EmptyBasketError()

        overrides: list[Decimal | None] = []
        for index, line in enumerate(lines):
            quantity = line.quantity
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise InvalidQuantityError(index, quantity)
            overrides.append(_override_price(index, line.unit_price_override))

        medications: dict[UUID, MedicationInfo] = {}
        for index, line in enumerate(lines):
            info = medications.get(line.medication_id)
            if info is None:
                try:
                    info = self._catalog.find_medication(line.medication_id)
                except MedicationNotFoundError:
                    raise MedicationNotFoundError(
                        str(line.medication_id), line_index=index
                    ) from None
                except SQLAlchemyError as exc:
                    raise classify_storage_error(exc, "catalog_lookup") from exc
                medications[line.medication_id] = info

            if info.requires_prescription and not is_prescription:
                raise PrescriptionRequiredError(str(info.medication_id), info.name, index)

        self._check_aggregate_stock(lines)

        priced: list[_PricedLine] = []
        for index, line in enumerate(lines):
            unit_price = overrides[index]
            if unit_price is None:
                unit_price = medications[line.medication_id].list_price
            gross = line_gross(line.quantity, unit_price)
            discount = clamp_discount(
                self._promotions.compute_discount(
                    line.medication_id, line.quantity, unit_price
                ),
                gross,
                self._money_decimal_places,
            )
            priced.append(_PricedLine(index, line, unit_price, discount))
        return priced

    def _check_aggregate_stock(self, lines: Sequence[SaleLineRequest]) -> None:
        """Sellable stock per medication must cover the basket's total for it."""
        requested: dict[UUID, int] = {}
        first_index: dict[UUID, int] = {}
        for index, line in enumerate(lines):
            requested[line.medication_id] = requested.get(line.medication_id, 0) + line.quantity
            first_index.setdefault(line.medication_id, index)

        try:
            with self._session_factory() as session:
                ledger = LotLedger(session, self._clock)
                for medication_id, quantity in requested.items():
                    available = ledger.total_sellable_quantity(medication_id)
                    if available < quantity:
                        raise InsufficientStockError(
                            str(medication_id),
                            quantity,
                            available,
                            line_index=first_index[medication_id],
                            stage="pre_validation",
                        )
        except SQLAlchemyError as exc:
            raise classify_storage_error(exc, "stock_check") from exc

    # =========================================================================
    # Transactional pass
    # =========================================================================

    def _run_attempts(self, priced: list[_PricedLine], **header) -> SaleResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                sale = self._transactional_pass(priced, attempt=attempt, **header)
            except ConcurrencyError as exc:
                if attempt >= self._max_attempts:
                    logger.warning(
                        "sale_retries_exhausted",
                        extra={"attempts": attempt, "error_code": exc.code},
                    )
                    return self._failure(exc, attempts=attempt)
                backoff_s = self._retry_backoff_ms * attempt / 1000
                logger.info(
                    "sale_attempt_retrying",
                    extra={
                        "attempt": attempt,
                        "error_code": exc.code,
                        "backoff_s": backoff_s,
                    },
                )
                if backoff_s > 0:
                    self._sleep(backoff_s)
            except (StockError, StorageFaultError) as exc:
                return self._failure(exc, attempts=attempt)
            else:
                return SaleResult(
                    status=SaleStatus.COMPLETED,
                    sale=sale,
                    attempts=attempt,
                )

    def _transactional_pass(
        self,
        priced: list[_PricedLine],
        *,
        attempt: int,
        operator_id: UUID,
        is_prescription: bool,
        prescription_number: str | None,
        notes: str | None,
    ) -> SaleRecord:
        """
        One attempt: lock, allocate, decrement, record, commit.

        Raises:
            InsufficientStockError (stage="allocation"), LotOverdrawError,
            ConcurrencyError subclasses, StorageFaultError.  The transaction
            is rolled back before any of these leave this method.
        """
        sale_id = uuid4()
        session = self._session_factory()
        try:
            with LogContext.bind(sale_id=str(sale_id)):
                try:
                    self._apply_lock_timeout(session)

                    lot_ledger = LotLedger(session, self._clock)
                    allocator = FefoAllocator(lot_ledger, self._clock)

                    lot_ledger.lock_lots(p.request.medication_id for p in priced)

                    drafts: list[SaleLineDraft] = []
                    for line in priced:
                        drafts.extend(self._allocate_line(line, allocator, lot_ledger))

                    sale = SaleLedger(session).record_sale(
                        sale_id=sale_id,
                        sold_at=self._clock.now_utc(),
                        operator_id=operator_id,
                        is_prescription=is_prescription,
                        prescription_number=prescription_number,
                        notes=notes,
                        lines=drafts,
                    )
                    session.commit()
                except PharmacyKernelError as exc:
                    session.rollback()
                    self._log_rollback(exc, attempt)
                    raise
                except SQLAlchemyError as exc:
                    session.rollback()
                    error = classify_storage_error(exc, "create_sale")
                    self._log_rollback(error, attempt)
                    raise error from exc
                except Exception:
                    session.rollback()
                    logger.error(
                        "sale_rolled_back",
                        extra={"attempt": attempt},
                        exc_info=True,
                    )
                    raise

                logger.info(
                    "sale_committed",
                    extra={
                        "attempt": attempt,
                        "line_count": len(sale.lines),
                        "total_amount": sale.total_amount,
                    },
                )
                return sale
        finally:
            session.close()

    def _allocate_line(
        self,
        line: _PricedLine,
        allocator: FefoAllocator,
        lot_ledger: LotLedger,
    ) -> list[SaleLineDraft]:
        request = line.request
        with LogContext.bind(medication_id=str(request.medication_id)):
            allocation = allocator.allocate(request.medication_id, request.quantity)
            if not allocation.is_complete:
                raise InsufficientStockError(
                    str(request.medication_id),
                    request.quantity,
                    allocation.available,
                    line_index=line.index,
                    stage="allocation",
                )

            shares = apportion_discount(
                line.discount,
                [line_gross(draw.quantity, line.unit_price) for draw in allocation.draws],
            )

            drafts = []
            for draw, share in zip(allocation.draws, shares):
                lot_ledger.decrement_quantity(draw.lot_id, draw.quantity)
                drafts.append(
                    SaleLineDraft(
                        lot_id=draw.lot_id,
                        quantity=draw.quantity,
                        unit_price=line.unit_price,
                        discount_amount=share,
                    )
                )
            return drafts

    def _apply_lock_timeout(self, session: Session) -> None:
        """Bound lock waits for this transaction (PostgreSQL only)."""
        if self._lock_timeout_ms is None:
            return
        if session.get_bind().dialect.name != "postgresql":
            return
        # SET does not take bind parameters
        session.execute(text(f"SET LOCAL lock_timeout = {int(self._lock_timeout_ms)}"))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _log_rollback(self, error: PharmacyKernelError, attempt: int) -> None:
        logger.warning(
            "sale_rolled_back",
            extra={
                "attempt": attempt,
                "error_code": error.code,
                "retryable": error.retryable,
            },
        )

    def _failure(self, error: PharmacyKernelError, attempts: int) -> SaleResult:
        status = status_for_error(error)
        if status is None:
            raise error
        return SaleResult(status=status, error=error, attempts=attempts)
