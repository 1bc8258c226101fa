"""
Module: pharmacy_kernel.selectors.sale_selector
Responsibility: Read-only access to committed sales, with every line
    resolved to its lot (lot number, medication, expiration date).
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Lines within a SaleRecord are in line_number order.
    - Multi-sale results are newest first (sold_at desc, then id).

Failure modes:
    - get_sale raises SaleNotFoundError for an unknown id.  List queries
      return an empty list when nothing matches.
"""

from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from pharmacy_kernel.domain.dtos import SaleRecord
from pharmacy_kernel.exceptions import SaleNotFoundError
from pharmacy_kernel.models.lot import LotModel
from pharmacy_kernel.models.sale import SaleModel
from pharmacy_kernel.selectors.base import BaseSelector


class SaleSelector(BaseSelector[SaleModel]):
    """
    Selector for sale history queries.

    Guarantees:
        - Sale lines are loaded with selectinload; referenced lots are
          fetched in one query per call.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def _to_records(self, sales: list[SaleModel]) -> list[SaleRecord]:
        lot_ids = {line.lot_id for sale in sales for line in sale.lines}
        lots_by_id: dict[UUID, LotModel] = {}
        if lot_ids:
            lots = self.session.execute(
                select(LotModel).where(LotModel.id.in_(lot_ids))
            ).scalars().all()
            lots_by_id = {lot.id: lot for lot in lots}
        return [SaleRecord.from_model(sale, lots_by_id) for sale in sales]

    def _query(self):
        return (
            select(SaleModel)
            .options(selectinload(SaleModel.lines))
            .order_by(SaleModel.sold_at.desc(), SaleModel.id)
        )

    def get_sale(self, sale_id: UUID) -> SaleRecord:
        """
        Get one sale by id.

        Raises:
            SaleNotFoundError: No sale with that id.
        """
        sale = self.session.execute(
            select(SaleModel)
            .options(selectinload(SaleModel.lines))
            .where(SaleModel.id == sale_id)
        ).scalar_one_or_none()

        if sale is None:
            raise SaleNotFoundError(str(sale_id))

        return self._to_records([sale])[0]

    def list_sales(self, start_date: date, end_date: date) -> list[SaleRecord]:
        """
        Sales made between two calendar dates (UTC), both inclusive.

        Args:
            start_date: First day of the range.
            end_date: Last day of the range.
        """
        start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
        end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
        sales = self.session.execute(
            self._query().where(SaleModel.sold_at >= start, SaleModel.sold_at < end)
        ).scalars().all()
        return self._to_records(list(sales))

    def list_sales_by_operator(self, operator_id: UUID) -> list[SaleRecord]:
        sales = self.session.execute(
            self._query().where(SaleModel.operator_id == operator_id)
        ).scalars().all()
        return self._to_records(list(sales))

    def list_prescription_sales(self) -> list[SaleRecord]:
        sales = self.session.execute(
            self._query().where(SaleModel.is_prescription.is_(True))
        ).scalars().all()
        return self._to_records(list(sales))

    def sales_history(self, limit: int | None = None) -> list[SaleRecord]:
        """All sales, newest first, optionally capped at ``limit``."""
        query = self._query()
        if limit is not None:
            query = query.limit(limit)
        sales = self.session.execute(query).scalars().all()
        return self._to_records(list(sales))
