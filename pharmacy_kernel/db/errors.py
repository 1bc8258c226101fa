"""
Module: pharmacy_kernel.db.errors
Responsibility: Translate SQLAlchemy / driver errors into the kernel's typed
    exceptions so callers never see raw storage-driver errors.
Architecture position: Kernel > DB.  May import from exceptions only.

Classification:
    StaleDataError                      -> OptimisticLockError
    PostgreSQL SQLSTATE 40001           -> LockTimeoutError (serialization failure)
    PostgreSQL SQLSTATE 40P01           -> LockTimeoutError (deadlock detected)
    PostgreSQL SQLSTATE 55P03           -> LockTimeoutError (lock_timeout expired)
    SQLite "database is locked"/"busy"  -> LockTimeoutError
    any other SQLAlchemyError           -> StorageFaultError
"""

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from pharmacy_kernel.exceptions import (
    LockTimeoutError,
    OptimisticLockError,
    PharmacyKernelError,
    StorageFaultError,
)

RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

_SQLITE_LOCK_MARKERS = (
    "database is locked",
    "database is busy",
    "database table is locked",
)


def _sqlstate(orig: BaseException | None) -> str | None:
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def classify_storage_error(exc: SQLAlchemyError, operation: str) -> PharmacyKernelError:
    """Map a SQLAlchemy error to a typed kernel exception (not raised)."""
    if isinstance(exc, StaleDataError):
        return OptimisticLockError("Lot", "unknown")

    if isinstance(exc, DBAPIError):
        sqlstate = _sqlstate(exc.orig)
        if sqlstate in RETRYABLE_SQLSTATES:
            return LockTimeoutError(f"SQLSTATE {sqlstate}: {exc.orig}")
        message = str(exc.orig).lower()
        if any(marker in message for marker in _SQLITE_LOCK_MARKERS):
            return LockTimeoutError(str(exc.orig))

    return StorageFaultError(operation, str(exc))
