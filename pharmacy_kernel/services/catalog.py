"""
Medication catalog adapter.

The catalog subsystem owns medications; the sale engine only looks up list
price and the prescription flag.  ``MedicationCatalog`` is the seam: any
object with ``find_medication`` will do.  ``SqlMedicationCatalog`` reads the
``medications`` table in its own short session, outside the sale
transaction.
"""

from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from pharmacy_kernel.domain.dtos import MedicationInfo
from pharmacy_kernel.exceptions import MedicationNotFoundError
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.models.medication import MedicationModel

logger = get_logger("services.catalog")


class MedicationCatalog(Protocol):
    def find_medication(self, medication_id: UUID) -> MedicationInfo:
        """Raises MedicationNotFoundError for an unknown id."""
        ...


class SqlMedicationCatalog:
    """Catalog lookups against the medications table."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def find_medication(self, medication_id: UUID) -> MedicationInfo:
        with self._session_factory() as session:
            model = session.get(MedicationModel, medication_id)
            if model is None:
                logger.info(
                    "medication_not_found",
                    extra={"medication_id": str(medication_id)},
                )
                raise MedicationNotFoundError(str(medication_id))
            return MedicationInfo.from_model(model)
