from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from cooltrack.core.errors import ValidationError
from cooltrack.core.numbers import money, quantity
from cooltrack.models.ledger_entry import INVENTORY_TYPES, TRANSACTION_TYPES, LedgerEntry


def record_entry(
    db: Session,
    *,
    transaction_type: str,
    inventory_type: str,
    item_id: int,
    item_name: str,
    quantity_change: Any,
    unit_cost: Any,
    performed_by: str,
    reference_type: str = "manual",
    reference_id: Any = None,
    lot_id: Optional[str] = None,
    serial_number: Optional[str] = None,
    reason: Optional[str] = None,
    details: Optional[dict] = None,
) -> LedgerEntry:
    """
    Append one entry. Caller owns the transaction: the entry commits or rolls
    back together with the mutation it describes.
    """
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type: {transaction_type}")
    if inventory_type not in INVENTORY_TYPES:
        raise ValidationError(f"Unknown inventory type: {inventory_type}")

    delta = quantity(quantity_change)
    cost = money(unit_cost)

    entry = LedgerEntry(
        transaction_type=transaction_type,
        inventory_type=inventory_type,
        item_id=int(item_id),
        item_name=str(item_name),
        lot_id=lot_id,
        serial_number=serial_number,
        quantity_change=delta,
        unit_cost=cost,
        total_value=money(abs(delta) * cost),
        reference_type=reference_type,
        reference_id=None if reference_id is None else str(reference_id),
        performed_by=str(performed_by),
        reason=reason,
        details=details,
    )
    db.add(entry)
    return entry


def entries_for_item(
    db: Session,
    *,
    inventory_type: str,
    item_id: int,
    limit: int = 50,
    offset: int = 0,
) -> list[LedgerEntry]:
    return (
        db.query(LedgerEntry)
        .filter(
            LedgerEntry.inventory_type == inventory_type,
            LedgerEntry.item_id == int(item_id),
        )
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        .limit(int(limit))
        .offset(int(offset))
        .all()
    )


def entries_for_reference(db: Session, *, reference_type: str, reference_id: Any) -> list[LedgerEntry]:
    return (
        db.query(LedgerEntry)
        .filter(
            LedgerEntry.reference_type == reference_type,
            LedgerEntry.reference_id == str(reference_id),
        )
        .order_by(LedgerEntry.id.asc())
        .all()
    )


def reconstructed_value(
    db: Session, *, item_id: int, lot_id: Optional[str] = None, inventory_type: str = "grouped"
) -> Decimal:
    """
    Audit view of an item's (or one lot's) stock: the sum of its ledger deltas.
    A serialized unit balances to 1 while in stock and 0 while installed.
    """
    q = db.query(func.coalesce(func.sum(LedgerEntry.quantity_change), 0)).filter(
        LedgerEntry.inventory_type == inventory_type,
        LedgerEntry.item_id == int(item_id),
    )
    if lot_id is not None:
        q = q.filter(LedgerEntry.lot_id == str(lot_id))
    return quantity(q.scalar() or 0)


def history_action(entry: LedgerEntry) -> str:
    return {
        "purchase": "added",
        "job_usage": "removed",
        "installation": "installed",
        "return": "returned",
        "status_change": "status_changed",
    }.get(entry.transaction_type, "adjusted")


def serialize_entry(entry: LedgerEntry) -> dict:
    return {
        "id": entry.id,
        "transaction_type": entry.transaction_type,
        "action": history_action(entry),
        "inventory_type": entry.inventory_type,
        "item_id": entry.item_id,
        "item_name": entry.item_name,
        "lot_id": entry.lot_id,
        "serial_number": entry.serial_number,
        "quantity_change": str(entry.quantity_change),
        "unit_cost": str(entry.unit_cost),
        "total_value": str(entry.total_value),
        "reference_type": entry.reference_type,
        "reference_id": entry.reference_id,
        "performed_by": entry.performed_by,
        "reason": entry.reason,
        "details": entry.details,
        "created_at": entry.created_at.isoformat(),
    }
