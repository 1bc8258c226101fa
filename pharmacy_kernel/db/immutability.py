"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

A committed sale is a historical fact: the receipt has been printed and the
stock has left the shelf.  Returns and corrections are separate records, never
edits of the original.  Lots are the physical inventory history: an emptied
lot stays in the ledger, and the batch it describes never changes identity.

SQLAlchemy fires events before UPDATE/DELETE statements reach the database.
We register listeners that check these rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity      | Rule
------------|-------------------------------------------------------------
Sale        | No UPDATE of any column, no DELETE (append-only)
SaleLine    | No UPDATE of any column, no DELETE (append-only)
Lot         | No DELETE; medication_id, lot_number, expiration_date fixed;
            | quantity_on_hand never negative

===============================================================================
USAGE
===============================================================================

Called once at application startup:

    from pharmacy_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    # ... forbidden operation ...
    register_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from pharmacy_kernel.exceptions import ImmutabilityViolationError
from pharmacy_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Lot fields that identify the physical batch
LOT_IDENTITY_FIELDS = ("medication_id", "lot_number", "expiration_date")


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_columns(target) -> list[str]:
    """Column attributes of ``target`` with pending changes."""
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if insp.attrs[attr.key].history.has_changes()
    ]


# =============================================================================
# Sale / SaleLine: append-only
# =============================================================================


def _check_sale_immutability(mapper, connection, target):
    """Committed sales cannot be modified."""
    from pharmacy_kernel.models.sale import SaleModel

    if not isinstance(target, SaleModel):
        return

    changed = _changed_columns(target)
    if changed:
        _blocked(
            "Sale",
            target.id,
            "UPDATE",
            f"Committed sales are immutable (attempted to change {', '.join(changed)})",
            fields=changed,
        )


def _check_sale_delete(mapper, connection, target):
    """Committed sales cannot be deleted."""
    from pharmacy_kernel.models.sale import SaleModel

    if not isinstance(target, SaleModel):
        return

    _blocked("Sale", target.id, "DELETE", "Committed sales cannot be deleted")


def _check_sale_line_immutability(mapper, connection, target):
    """Sale lines are part of the committed sale."""
    from pharmacy_kernel.models.sale import SaleLineModel

    if not isinstance(target, SaleLineModel):
        return

    changed = _changed_columns(target)
    if changed:
        _blocked(
            "SaleLine",
            target.id,
            "UPDATE",
            f"Sale lines are immutable (attempted to change {', '.join(changed)})",
            fields=changed,
        )


def _check_sale_line_delete(mapper, connection, target):
    from pharmacy_kernel.models.sale import SaleLineModel

    if not isinstance(target, SaleLineModel):
        return

    _blocked("SaleLine", target.id, "DELETE", "Sale lines cannot be deleted")


# =============================================================================
# Lot: identity fixed, never deleted, never negative
# =============================================================================


def _check_lot_immutability(mapper, connection, target):
    """
    Prevent changes to a lot's identity fields and negative quantities.

    quantity_on_hand, purchase_price and audit timestamps may change;
    the batch a lot describes may not.
    """
    from pharmacy_kernel.models.lot import LotModel

    if not isinstance(target, LotModel):
        return

    for field in LOT_IDENTITY_FIELDS:
        if get_history(target, field).has_changes():
            _blocked(
                "Lot",
                target.id,
                "UPDATE",
                f"Cannot modify field '{field}' of a lot",
                field=field,
            )

    if target.quantity_on_hand is not None and target.quantity_on_hand < 0:
        _blocked(
            "Lot",
            target.id,
            "UPDATE",
            f"Quantity on hand cannot be negative (got {target.quantity_on_hand})",
            field="quantity_on_hand",
        )


def _check_lot_delete(mapper, connection, target):
    """Lots stay in the ledger as history, even when emptied."""
    from pharmacy_kernel.models.lot import LotModel

    if not isinstance(target, LotModel):
        return

    _blocked("Lot", target.id, "DELETE", "Lots are never deleted")


# =============================================================================
# Registration
# =============================================================================


def _listeners():
    from pharmacy_kernel.models.lot import LotModel
    from pharmacy_kernel.models.sale import SaleLineModel, SaleModel

    return (
        (SaleModel, "before_update", _check_sale_immutability),
        (SaleModel, "before_delete", _check_sale_delete),
        (SaleLineModel, "before_update", _check_sale_line_immutability),
        (SaleLineModel, "before_delete", _check_sale_line_delete),
        (LotModel, "before_update", _check_lot_immutability),
        (LotModel, "before_delete", _check_lot_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call after the models are importable and before any database
    operations begin.  Registering twice is harmless.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)

    logger.debug("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only for testing.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
