"""
Tests for SaleCoordinator.create_sale.

Verifies:
- FEFO draws across lots and the resulting lot quantities
- Rejections (validation, prescription, stock) leave every lot untouched
- A failure on a later line rolls back decrements made for earlier lines
- Pricing: catalog price, override, clamped and apportioned discounts
- Retry of the transactional pass on concurrency conflicts
- Storage faults and programming errors after rollback
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from pharmacy_kernel.domain.dtos import SaleLineRequest
from pharmacy_kernel.exceptions import (
    EmptyBasketError,
    InsufficientStockError,
    InvalidPriceError,
    InvalidQuantityError,
    LockTimeoutError,
    MedicationNotFoundError,
    PrescriptionRequiredError,
    StorageFaultError,
)
from pharmacy_kernel.selectors.sale_selector import SaleSelector
from pharmacy_kernel.services.lot_ledger import LotLedger
from pharmacy_kernel.services.sale_coordinator import (
    SaleCoordinator,
    SaleStatus,
)
from pharmacy_kernel.services.sale_ledger import SaleLedger


class FixedDiscount:
    """Promotion calculator returning the same discount for every line."""

    def __init__(self, amount):
        self.amount = Decimal(amount)
        self.calls = []

    def compute_discount(self, medication_id, quantity, unit_price):
        self.calls.append((medication_id, quantity, unit_price))
        return self.amount


def _draws(result, medication_id=None):
    return [
        (line.lot_id, line.quantity)
        for line in result.sale.lines
        if medication_id is None or line.medication_id == medication_id
    ]


# =============================================================================
# FEFO allocation end to end
# =============================================================================


class TestAllocation:
    def test_request_spanning_two_lots(
        self, coordinator, operator_id, make_medication, make_lot, lot_quantity
    ):
        med = make_medication()
        l1 = make_lot(med, 5, 10)
        l2 = make_lot(med, 20, 40)

        result = coordinator.create_sale([SaleLineRequest(med, 8)], operator_id)

        assert result.status == SaleStatus.COMPLETED
        assert result.attempts == 1
        assert _draws(result) == [(l1, 5), (l2, 3)]
        assert lot_quantity(l1) == 0
        assert lot_quantity(l2) == 17

    def test_expired_lot_not_used(
        self, coordinator, operator_id, make_medication, make_lot, lot_quantity
    ):
        med = make_medication()
        expired = make_lot(med, 50, -1)
        fresh = make_lot(med, 3, 5)

        result = coordinator.create_sale([SaleLineRequest(med, 3)], operator_id)

        assert result.is_success
        assert _draws(result) == [(fresh, 3)]
        assert lot_quantity(fresh) == 0
        assert lot_quantity(expired) == 50

    def test_lot_expiring_today_is_sold(
        self, coordinator, operator_id, make_medication, make_lot, lot_quantity
    ):
        med = make_medication()
        today_lot = make_lot(med, 2, 0)

        result = coordinator.create_sale([SaleLineRequest(med, 2)], operator_id)

        assert result.is_success
        assert lot_quantity(today_lot) == 0

    def test_same_medication_on_two_lines(
        self, coordinator, operator_id, make_medication, make_lot, lot_quantity
    ):
        med = make_medication()
        l1 = make_lot(med, 5, 10)
        l2 = make_lot(med, 20, 40)

        result = coordinator.create_sale(
            [SaleLineRequest(med, 3), SaleLineRequest(med, 4)],
            operator_id,
        )

        assert result.is_success
        assert _draws(result) == [(l1, 3), (l1, 2), (l2, 2)]
        assert result.sale.quantity_for(med) == 7
        assert lot_quantity(l1) == 0
        assert lot_quantity(l2) == 18

    def test_multi_medication_basket(
        self, coordinator, operator_id, make_medication, make_lot, lot_quantity
    ):
        med_a = make_medication("A", "1.00")
        med_b = make_medication("B", "4.00")
        a1 = make_lot(med_a, 10, 30)
        b1 = make_lot(med_b, 1, 5)
        b2 = make_lot(med_b, 10, 60)

        result = coordinator.create_sale(
            [SaleLineRequest(med_a, 2), SaleLineRequest(med_b, 3)],
            operator_id,
        )

        assert result.is_success
        assert [line.line_number for line in result.sale.lines] == [1, 2, 3]
        assert _draws(result, med_a) == [(a1, 2)]
        assert _draws(result, med_b) == [(b1, 1), (b2, 2)]
        assert result.sale.total_amount == Decimal("14.00")
        assert lot_quantity(b1) == 0


# =============================================================================
# Rejections
# =============================================================================


class TestStockRejection:
    def test_request_above_sellable_stock(
        self, coordinator, operator_id, make_medication, make_lot, lot_quantity, sale_count
    ):
        med = make_medication()
        l1 = make_lot(med, 1, 5)
        l2 = make_lot(med, 3, 9)
        make_lot(med, 100, -1)

        result = coordinator.create_sale([SaleLineRequest(med, 10)], operator_id)

        assert result.status == SaleStatus.STOCK_INSUFFICIENT
        assert isinstance(result.error, InsufficientStockError)
        assert result.error.medication_id == str(med)
        assert result.error.shortfall == 6
        assert result.error.stage == "pre_validation"
        assert result.sale is None
        assert lot_quantity(l1) == 1
        assert lot_quantity(l2) == 3
        assert sale_count() == 0

    def test_insufficient_later_line_leaves_earlier_lots_untouched(
        self, coordinator, operator_id, make_medication, make_lot, lot_quantity, sale_count
    ):
        med_a = make_medication("A")
        med_b = make_medication("B")
        a1 = make_lot(med_a, 10, 10)
        make_lot(med_b, 4, 10)

        result = coordinator.create_sale(
            [SaleLineRequest(med_a, 2), SaleLineRequest(med_a, 1), SaleLineRequest(med_b, 5)],
            operator_id,
        )

        assert result.status == SaleStatus.STOCK_INSUFFICIENT
        assert result.error.line_index == 2
        assert lot_quantity(a1) == 10
        assert sale_count() == 0

    def test_allocation_stage_shortfall_rolls_back_earlier_decrements(
        self,
        coordinator,
        operator_id,
        make_medication,
        make_lot,
        lot_quantity,
        sale_count,
        monkeypatch,
        captured_logs,
    ):
        med_a = make_medication("A")
        med_b = make_medication("B")
        a1 = make_lot(med_a, 10, 10)
        b1 = make_lot(med_b, 4, 10)

        # Stock consumed between pre-validation and the transaction
        monkeypatch.setattr(SaleCoordinator, "_check_aggregate_stock", lambda self, lines: None)

        result = coordinator.create_sale(
            [SaleLineRequest(med_a, 6), SaleLineRequest(med_b, 5)],
            operator_id,
        )

        assert result.status == SaleStatus.STOCK_INSUFFICIENT
        assert result.error.stage == "allocation"
        assert result.error.shortfall == 1
        assert result.attempts == 1
        assert lot_quantity(a1) == 10
        assert lot_quantity(b1) == 4
        assert sale_count() == 0

        messages = [r["message"] for r in captured_logs()]
        assert "lot_decremented" in messages
        assert "sale_rolled_back" in messages
        assert "sale_committed" not in messages

    def test_repeated_failure_never_mutates(
        self, coordinator, operator_id, make_medication, make_lot, lot_quantity
    ):
        med = make_medication()
        lot = make_lot(med, 4, 10)

        for _ in range(3):
            result = coordinator.create_sale([SaleLineRequest(med, 5)], operator_id)
            assert result.status == SaleStatus.STOCK_INSUFFICIENT

        assert lot_quantity(lot) == 4


class TestValidation:
    def test_empty_basket(self, coordinator, operator_id):
        result = coordinator.create_sale([], operator_id)

        assert result.status == SaleStatus.VALIDATION_FAILED
        assert isinstance(result.error, EmptyBasketError)
        assert result.attempts == 0

    @pytest.mark.parametrize("quantity", [0, -2, True, 1.5])
    def test_bad_quantity(self, coordinator, operator_id, make_medication, make_lot, quantity):
        med = make_medication()
        make_lot(med, 10, 10)

        result = coordinator.create_sale(
            [SaleLineRequest(med, 1), SaleLineRequest(med, quantity)],
            operator_id,
        )

        assert result.status == SaleStatus.VALIDATION_FAILED
        assert isinstance(result.error, InvalidQuantityError)
        assert result.error.line_index == 1

    @pytest.mark.parametrize(
        "override",
        [Decimal("-0.01"), Decimal("NaN"), Decimal("sNaN"), Decimal("Infinity"),
         Decimal("-Infinity"), "not-a-price"],
    )
    def test_bad_price_override(
        self, coordinator, operator_id, make_medication, make_lot,
        lot_quantity, sale_count, override,
    ):
        med = make_medication()
        lot = make_lot(med, 10, 5)

        result = coordinator.create_sale(
            [SaleLineRequest(med, 1), SaleLineRequest(med, 1, unit_price_override=override)],
            operator_id,
        )

        assert result.status == SaleStatus.VALIDATION_FAILED
        assert isinstance(result.error, InvalidPriceError)
        assert result.error.line_index == 1
        assert result.attempts == 0
        assert lot_quantity(lot) == 5
        assert sale_count() == 0

    def test_unknown_medication(
        self, coordinator, operator_id, make_medication, make_lot, lot_quantity
    ):
        med = make_medication()
        lot = make_lot(med, 10, 10)
        missing = uuid4()

        result = coordinator.create_sale(
            [SaleLineRequest(med, 1), SaleLineRequest(missing, 1)],
            operator_id,
        )

        assert result.status == SaleStatus.VALIDATION_FAILED
        assert isinstance(result.error, MedicationNotFoundError)
        assert result.error.medication_id == str(missing)
        assert result.error.line_index == 1
        assert lot_quantity(lot) == 10

    def test_rejection_is_logged(self, coordinator, operator_id, captured_logs):
        coordinator.create_sale([], operator_id)

        rejected = [r for r in captured_logs() if r["message"] == "sale_rejected"]
        assert len(rejected) == 1
        assert rejected[0]["status"] == "validation_failed"
        assert rejected[0]["error_code"] == "EMPTY_BASKET"
        assert rejected[0]["operator_id"] == str(operator_id)
        assert "correlation_id" in rejected[0]


class TestPrescription:
    def test_rx_only_medication_needs_prescription_sale(
        self, coordinator, operator_id, make_medication, make_lot, lot_quantity
    ):
        otc = make_medication("Paracetamol")
        rx = make_medication("Amoxicillin", "12.50", requires_prescription=True)
        make_lot(otc, 10, 10)
        rx_lot = make_lot(rx, 10, 10)

        result = coordinator.create_sale(
            [SaleLineRequest(otc, 1), SaleLineRequest(rx, 1)],
            operator_id,
        )

        assert result.status == SaleStatus.PRESCRIPTION_REQUIRED
        assert isinstance(result.error, PrescriptionRequiredError)
        assert result.error.medication_name == "Amoxicillin"
        assert result.error.line_index == 1
        assert lot_quantity(rx_lot) == 10

    def test_prescription_sale_records_header(
        self, coordinator, operator_id, clock, make_medication, make_lot
    ):
        rx = make_medication("Amoxicillin", "12.50", requires_prescription=True)
        make_lot(rx, 10, 10)

        result = coordinator.create_sale(
            [SaleLineRequest(rx, 2)],
            operator_id,
            is_prescription=True,
            prescription_number="RX-2024-001",
            notes="Dr. Martin",
        )

        assert result.is_success
        sale = result.sale
        assert sale.is_prescription
        assert sale.prescription_number == "RX-2024-001"
        assert sale.notes == "Dr. Martin"
        assert sale.operator_id == operator_id
        assert sale.sold_at == clock.now_utc()
        assert sale.total_amount == Decimal("25.00")


# =============================================================================
# Pricing
# =============================================================================


class TestPricing:
    def test_price_override_replaces_list_price(
        self, coordinator, operator_id, make_medication, make_lot
    ):
        med = make_medication(list_price="2.50")
        make_lot(med, 10, 10)

        result = coordinator.create_sale(
            [SaleLineRequest(med, 2, unit_price_override=Decimal("1.99"))],
            operator_id,
        )

        assert result.sale.lines[0].unit_price == Decimal("1.99")
        assert result.sale.total_amount == Decimal("3.98")

    def test_override_rounded_to_stored_scale(
        self, coordinator, session_factory, operator_id, make_medication, make_lot
    ):
        med = make_medication(list_price="2.50")
        make_lot(med, 10, 10)

        result = coordinator.create_sale(
            [SaleLineRequest(med, 3, unit_price_override=Decimal("1.0000000006"))],
            operator_id,
        )

        assert result.sale.lines[0].unit_price == Decimal("1.000000001")
        with session_factory() as sess:
            stored = SaleSelector(sess).get_sale(result.sale.sale_id)
        assert stored.total_amount == result.sale.total_amount == Decimal("3.000000003")
        assert [line.unit_price for line in stored.lines] == [
            line.unit_price for line in result.sale.lines
        ]

    def test_discount_apportioned_in_fefo_order(
        self, session_factory, catalog, clock, operator_id, make_medication, make_lot
    ):
        med = make_medication(list_price="2.50")
        make_lot(med, 2, 10)
        make_lot(med, 10, 40)
        promotions = FixedDiscount("6.00")
        coordinator = SaleCoordinator(session_factory, catalog, promotions, clock)

        result = coordinator.create_sale([SaleLineRequest(med, 4)], operator_id)

        assert [line.discount_amount for line in result.sale.lines] == [
            Decimal("5.00"),
            Decimal("1.00"),
        ]
        assert result.sale.total_amount == Decimal("4.00")
        assert promotions.calls == [(med, 4, Decimal("2.50"))]

    def test_discount_above_gross_is_capped(
        self, session_factory, catalog, clock, operator_id, make_medication, make_lot
    ):
        med = make_medication(list_price="2.50")
        make_lot(med, 10, 10)
        coordinator = SaleCoordinator(session_factory, catalog, FixedDiscount("50"), clock)

        result = coordinator.create_sale([SaleLineRequest(med, 4)], operator_id)

        assert result.sale.lines[0].discount_amount == Decimal("10.00")
        assert result.sale.total_amount == Decimal("0")

    def test_negative_discount_ignored(
        self, session_factory, catalog, clock, operator_id, make_medication, make_lot
    ):
        med = make_medication(list_price="2.50")
        make_lot(med, 10, 10)
        coordinator = SaleCoordinator(session_factory, catalog, FixedDiscount("-3"), clock)

        result = coordinator.create_sale([SaleLineRequest(med, 2)], operator_id)

        assert result.sale.lines[0].discount_amount == Decimal("0")
        assert result.sale.total_amount == Decimal("5.00")


# =============================================================================
# Retry and failure handling
# =============================================================================


class TestRetry:
    def test_lock_timeout_then_success(
        self, coordinator, operator_id, make_medication, make_lot, lot_quantity, monkeypatch
    ):
        med = make_medication()
        lot = make_lot(med, 10, 10)
        original = LotLedger.lock_lots
        calls = []

        def _flaky_lock(self, medication_ids):
            calls.append(1)
            if len(calls) == 1:
                raise LockTimeoutError("database is locked")
            return original(self, medication_ids)

        monkeypatch.setattr(LotLedger, "lock_lots", _flaky_lock)

        result = coordinator.create_sale([SaleLineRequest(med, 4)], operator_id)

        assert result.is_success
        assert result.attempts == 2
        assert lot_quantity(lot) == 6

    def test_attempts_exhausted(
        self,
        session_factory,
        catalog,
        clock,
        operator_id,
        make_medication,
        make_lot,
        lot_quantity,
        sale_count,
        monkeypatch,
        captured_logs,
    ):
        med = make_medication()
        lot = make_lot(med, 10, 10)
        sleeps = []
        coordinator = SaleCoordinator(
            session_factory,
            catalog,
            clock=clock,
            max_attempts=3,
            retry_backoff_ms=10,
            sleep=sleeps.append,
        )

        def _always_locked(self, medication_ids):
            raise LockTimeoutError("SQLSTATE 55P03: canceling statement due to lock timeout")

        monkeypatch.setattr(LotLedger, "lock_lots", _always_locked)

        result = coordinator.create_sale([SaleLineRequest(med, 4)], operator_id)

        assert result.status == SaleStatus.CONCURRENCY_CONFLICT
        assert result.is_retryable
        assert result.attempts == 3
        assert sleeps == [0.01, 0.02]
        assert lot_quantity(lot) == 10
        assert sale_count() == 0
        messages = [r["message"] for r in captured_logs()]
        assert messages.count("sale_attempt_retrying") == 2
        assert "sale_retries_exhausted" in messages

    def test_pre_validation_not_repeated_on_retry(
        self, session_factory, catalog, clock, operator_id, make_medication, make_lot, monkeypatch
    ):
        med = make_medication()
        make_lot(med, 10, 10)
        promotions = FixedDiscount("0")
        coordinator = SaleCoordinator(
            session_factory,
            catalog,
            promotions,
            clock,
            retry_backoff_ms=0,
        )
        original = LotLedger.lock_lots
        calls = []

        def _flaky_lock(self, medication_ids):
            calls.append(1)
            if len(calls) < 3:
                raise LockTimeoutError("database is locked")
            return original(self, medication_ids)

        monkeypatch.setattr(LotLedger, "lock_lots", _flaky_lock)

        result = coordinator.create_sale([SaleLineRequest(med, 1)], operator_id)

        assert result.attempts == 3
        assert len(promotions.calls) == 1

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"retry_backoff_ms": -1}],
    )
    def test_invalid_retry_settings(self, session_factory, catalog, kwargs):
        with pytest.raises(ValueError):
            SaleCoordinator(session_factory, catalog, **kwargs)


class TestFaults:
    def test_storage_fault_rolls_back(
        self,
        coordinator,
        operator_id,
        make_medication,
        make_lot,
        lot_quantity,
        sale_count,
        monkeypatch,
    ):
        med = make_medication()
        lot = make_lot(med, 10, 10)

        def _broken_insert(self, **kwargs):
            raise OperationalError("INSERT INTO sales", {}, Exception("disk I/O error"))

        monkeypatch.setattr(SaleLedger, "record_sale", _broken_insert)

        result = coordinator.create_sale([SaleLineRequest(med, 4)], operator_id)

        assert result.status == SaleStatus.STORAGE_FAULT
        assert isinstance(result.error, StorageFaultError)
        assert not result.is_retryable
        assert result.attempts == 1
        assert lot_quantity(lot) == 10
        assert sale_count() == 0

    def test_programming_error_propagates_after_rollback(
        self,
        coordinator,
        operator_id,
        make_medication,
        make_lot,
        lot_quantity,
        sale_count,
        monkeypatch,
    ):
        med = make_medication()
        lot = make_lot(med, 10, 10)

        def _bug(self, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(SaleLedger, "record_sale", _bug)

        with pytest.raises(RuntimeError, match="boom"):
            coordinator.create_sale([SaleLineRequest(med, 4)], operator_id)

        assert lot_quantity(lot) == 10
        assert sale_count() == 0


def test_successful_sale_log_trail(
    coordinator, operator_id, make_medication, make_lot, captured_logs
):
    med = make_medication()
    make_lot(med, 10, 10)

    result = coordinator.create_sale([SaleLineRequest(med, 1)], operator_id)

    records = captured_logs()
    messages = [r["message"] for r in records]
    for event in (
        "sale_started",
        "lots_locked",
        "fefo_allocation_completed",
        "lot_decremented",
        "sale_recorded",
        "sale_committed",
        "sale_completed",
    ):
        assert event in messages

    committed = next(r for r in records if r["message"] == "sale_committed")
    assert committed["sale_id"] == str(result.sale.sale_id)
    completed = next(r for r in records if r["message"] == "sale_completed")
    assert completed["attempts"] == 1
    assert "duration_ms" in completed
