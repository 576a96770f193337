from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from cooltrack.core.dates import as_utc, parse_datetime, utcnow
from cooltrack.core.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from cooltrack.core.numbers import ZERO, money, quantity, to_decimal
from cooltrack.database import unit_of_work
from cooltrack.models.grouped_item import (
    GROUPED_CATEGORIES,
    LINEAR_UNITS,
    UNITS,
    GroupedItem,
    StockLot,
    name_key,
)
from cooltrack.services import ledger_service
from cooltrack.services.events import GLOBAL_SCOPE, EventPublisher, inventory_scope, queue_event

logger = logging.getLogger(__name__)

_LOT_METADATA = ("supplier", "brand", "location", "batch_number", "notes")


@dataclass(frozen=True)
class LotUsage:
    lot_id: str
    amount: Decimal
    unit_cost: Decimal
    cost: Decimal


@dataclass(frozen=True)
class StockUsage:
    item: GroupedItem
    used_lots: list[LotUsage]
    total_cost: Decimal
    average_unit_cost: Decimal


@dataclass(frozen=True)
class Availability:
    available: bool
    item: Optional[GroupedItem]
    message: Optional[str] = None


def value_field_for(unit: str) -> str:
    return "length" if unit in LINEAR_UNITS else "quantity"


def extract_value(unit: str, data: dict) -> Decimal:
    """
    Amount carried by a lot/usage/return payload. Linear units read `length`,
    piece-like units read `quantity`; a generic `value` is accepted for both.
    """
    field = value_field_for(unit)
    raw = data.get(field)
    if raw is None:
        raw = data.get("value")
    if raw is None:
        raise ValidationError(f"{field} is required for items measured in {unit}")
    amount = quantity(to_decimal(raw, field))
    if amount <= 0:
        raise ValidationError(f"Invalid {field}: must be greater than 0")
    return amount


def recompute_item(item: GroupedItem) -> GroupedItem:
    """totalValue and averagePurchasePrice from active lots only."""
    total = ZERO
    weighted = ZERO
    for lot in item.lots:
        if not lot.is_active:
            continue
        value = quantity(lot.value)
        total += value
        weighted += value * money(lot.purchase_price)

    item.total_value = quantity(total)
    item.average_purchase_price = money(weighted / total) if total > 0 else money(ZERO)
    item.updated_at = utcnow()
    return item


def fifo_order(lots) -> list[StockLot]:
    """Oldest purchase first; insertion position breaks ties."""
    candidates = [lot for lot in lots if lot.is_active and quantity(lot.value) > 0]
    return sorted(candidates, key=lambda lot: (as_utc(lot.purchase_date), lot.position))


def _summary(item: GroupedItem) -> dict:
    return {
        "item_id": item.id,
        "item_name": item.item_name,
        "unit": item.unit,
        "total_value": item.total_value,
        "low_stock": item.low_stock,
    }


class GroupedInventoryService:
    def __init__(self, publisher: Optional[EventPublisher] = None):
        self.publisher = publisher

    # -- lookups -----------------------------------------------------------

    @staticmethod
    def _locked(q):
        # Row lock, then reload the item and its lots over anything already in the identity map.
        return q.options(selectinload(GroupedItem.lots)).with_for_update().populate_existing()

    def _find_by_name(self, db: Session, item_name: str, *, lock: bool = False) -> Optional[GroupedItem]:
        q = db.query(GroupedItem).filter(GroupedItem.name_key == name_key(item_name))
        if lock:
            q = self._locked(q)
        return q.one_or_none()

    def _get_by_name(self, db: Session, item_name: str, *, lock: bool = False) -> GroupedItem:
        item = self._find_by_name(db, item_name, lock=lock)
        if item is None:
            raise NotFoundError(f'Item "{item_name}" not found in inventory')
        return item

    def _get_by_id(self, db: Session, item_id: int, *, lock: bool = False) -> GroupedItem:
        q = db.query(GroupedItem).filter(GroupedItem.id == int(item_id))
        if lock:
            q = self._locked(q)
        item = q.one_or_none()
        if item is None:
            raise NotFoundError("Item not found")
        return item

    def get_item(self, item_id: int, *, db: Optional[Session] = None) -> GroupedItem:
        with unit_of_work(db) as session:
            item = self._get_by_id(session, item_id)
            item.lots  # loaded before the session closes
            return item

    def get_item_by_name(self, item_name: str, *, db: Optional[Session] = None) -> Optional[GroupedItem]:
        with unit_of_work(db) as session:
            item = self._find_by_name(session, item_name)
            if item is not None:
                item.lots
            return item

    def list_items(
        self,
        *,
        category: Optional[str] = None,
        low_stock: Optional[bool] = None,
        db: Optional[Session] = None,
    ) -> list[GroupedItem]:
        with unit_of_work(db) as session:
            q = session.query(GroupedItem)
            if category is not None:
                q = q.filter(GroupedItem.category == category)
            if low_stock is True:
                q = q.filter(GroupedItem.total_value <= GroupedItem.min_value)
            elif low_stock is False:
                q = q.filter(GroupedItem.total_value > GroupedItem.min_value)
            items = q.order_by(GroupedItem.item_name.asc()).all()
            for item in items:
                item.lots
            return items

    def get_low_stock_items(self, *, db: Optional[Session] = None) -> list[GroupedItem]:
        return self.list_items(low_stock=True, db=db)

    def item_history(self, item_name: str, *, limit: int = 50, db: Optional[Session] = None):
        with unit_of_work(db) as session:
            item = self._get_by_name(session, item_name)
            item.lots
            entries = ledger_service.entries_for_item(
                session, inventory_type="grouped", item_id=item.id, limit=limit
            )
            return item, entries

    def check_availability(self, item_name: str, required: Any, *, db: Optional[Session] = None) -> Availability:
        with unit_of_work(db) as session:
            item = self._find_by_name(session, item_name)
            if item is None:
                return Availability(available=False, item=None, message=f'Item "{item_name}" not found')
            item.lots

            needed = quantity(to_decimal(required, "required"))
            total = quantity(item.total_value)
            if total < needed:
                return Availability(
                    available=False,
                    item=item,
                    message=f"Only {total} {item.unit} available",
                )
            return Availability(available=True, item=item)

    # -- mutations ---------------------------------------------------------

    def add_stock(self, item_name: str, lot_data: dict, actor_id: str, *, db: Optional[Session] = None) -> GroupedItem:
        item_name = " ".join(str(item_name or "").split())
        if not item_name:
            raise ValidationError("Item name is required")

        with unit_of_work(db) as session:
            item = self._find_by_name(session, item_name, lock=True)
            unit = lot_data.get("unit")

            if item is None:
                if not unit:
                    raise ValidationError("Unit type is required")
                if unit not in UNITS:
                    raise ValidationError(f"Invalid unit: {unit}")
                category = lot_data.get("category") or "other"
                if category not in GROUPED_CATEGORIES:
                    raise ValidationError(f"Invalid category: {category}")
                item = GroupedItem(
                    item_name=item_name,
                    name_key=name_key(item_name),
                    category=category,
                    unit=unit,
                    total_value=ZERO,
                    average_purchase_price=ZERO,
                    min_value=ZERO,
                )
                session.add(item)
                try:
                    session.flush()
                except IntegrityError as exc:
                    raise ConflictError(f"Item \"{item_name}\" was just created by another request; retry") from exc
            elif unit and unit != item.unit:
                raise ValidationError(f"Unit mismatch: {item.item_name} is measured in {item.unit}, not {unit}")

            value = extract_value(item.unit, lot_data)
            price = money(to_decimal(lot_data.get("purchase_price", 0), "purchase_price"))
            if price < 0:
                raise ValidationError("purchase_price cannot be negative")

            if lot_data.get("min_value") is not None:
                min_value = quantity(to_decimal(lot_data["min_value"], "min_value"))
                if min_value < 0:
                    raise ValidationError("min_value cannot be negative")
                item.min_value = min_value

            now = utcnow()
            lot = StockLot(
                lot_id=uuid.uuid4().hex,
                position=max((lot.position for lot in item.lots), default=0) + 1,
                value=value,
                purchase_price=price,
                purchase_date=parse_datetime(lot_data.get("purchase_date"), "purchase_date") or now,
                expiry_date=parse_datetime(lot_data.get("expiry_date"), "expiry_date"),
                is_active=True,
            )
            for field in _LOT_METADATA:
                if lot_data.get(field) is not None:
                    setattr(lot, field, lot_data[field])
            item.lots.append(lot)

            item.last_restocked = now
            recompute_item(item)
            session.flush()

            ledger_service.record_entry(
                session,
                transaction_type="purchase",
                inventory_type="grouped",
                item_id=item.id,
                item_name=item.item_name,
                lot_id=lot.lot_id,
                quantity_change=value,
                unit_cost=price,
                performed_by=actor_id,
                reference_type="manual",
                reason=lot_data.get("reason") or "Stock purchase",
                details={"supplier": lot.supplier, "batch_number": lot.batch_number},
            )

            queue_event(
                session,
                self.publisher,
                inventory_scope(item.id),
                "inventory:stock-added",
                {**_summary(item), "lot_id": lot.lot_id, "added": value, "added_by": actor_id},
            )

            logger.info(
                "Grouped stock added",
                extra={"item_id": item.id, "lot_id": lot.lot_id, "value": str(value), "actor_id": actor_id},
            )
            return item

    def use_stock(
        self,
        item_name: str,
        usage: dict,
        job_id: Any,
        actor_id: str,
        *,
        db: Optional[Session] = None,
    ) -> StockUsage:
        with unit_of_work(db) as session:
            item = self._get_by_name(session, item_name, lock=True)
            requested = extract_value(item.unit, usage)

            available = quantity(item.total_value)
            if requested > available:
                raise InsufficientStockError(
                    f'Insufficient stock for "{item.item_name}": requested {requested} {item.unit}, '
                    f"available {available} {item.unit}",
                    available=available,
                    requested=requested,
                )

            remaining = requested
            total_cost = ZERO
            used: list[LotUsage] = []

            for lot in fifo_order(item.lots):
                if remaining <= 0:
                    break

                take = min(quantity(lot.value), remaining)
                lot.value = quantity(quantity(lot.value) - take)
                if lot.value == 0:
                    lot.is_active = False

                unit_cost = money(lot.purchase_price)
                cost = money(take * unit_cost)
                remaining = quantity(remaining - take)
                total_cost += cost
                used.append(LotUsage(lot_id=lot.lot_id, amount=take, unit_cost=unit_cost, cost=cost))

                ledger_service.record_entry(
                    session,
                    transaction_type="job_usage",
                    inventory_type="grouped",
                    item_id=item.id,
                    item_name=item.item_name,
                    lot_id=lot.lot_id,
                    quantity_change=-take,
                    unit_cost=unit_cost,
                    performed_by=actor_id,
                    reference_type="job" if job_id is not None else "manual",
                    reference_id=job_id,
                    reason=usage.get("reason") or "Used on job",
                )

            if remaining > 0:
                # Lots changed under us after the total check; the caller's rollback discards all of the above.
                raise InsufficientStockError(
                    f'Insufficient stock for "{item.item_name}": {remaining} {item.unit} could not be allocated',
                    available=available,
                    requested=requested,
                )

            recompute_item(item)
            session.flush()

            total_cost = money(total_cost)
            average = money(total_cost / requested)

            queue_event(
                session,
                self.publisher,
                inventory_scope(item.id),
                "inventory:used",
                {
                    **_summary(item),
                    "used": requested,
                    "job_id": job_id,
                    "used_by": actor_id,
                    "lots": [{"lot_id": u.lot_id, "amount": u.amount} for u in used],
                },
            )

            logger.info(
                "Grouped stock used",
                extra={
                    "item_id": item.id,
                    "job_id": job_id,
                    "requested": str(requested),
                    "lots_touched": len(used),
                    "total_cost": str(total_cost),
                },
            )
            return StockUsage(item=item, used_lots=used, total_cost=total_cost, average_unit_cost=average)

    def return_stock(
        self,
        item_name: str,
        return_data: dict,
        lot_id: str,
        actor_id: str,
        *,
        job_id: Any = None,
        db: Optional[Session] = None,
    ) -> GroupedItem:
        with unit_of_work(db) as session:
            item = self._get_by_name(session, item_name, lock=True)
            amount = extract_value(item.unit, return_data)

            lot = next((lot for lot in item.lots if lot.lot_id == str(lot_id)), None)
            if lot is None:
                raise NotFoundError(f"Lot {lot_id} not found")

            lot.value = quantity(quantity(lot.value) + amount)
            lot.is_active = True

            recompute_item(item)
            session.flush()

            ledger_service.record_entry(
                session,
                transaction_type="return",
                inventory_type="grouped",
                item_id=item.id,
                item_name=item.item_name,
                lot_id=lot.lot_id,
                quantity_change=amount,
                unit_cost=lot.purchase_price,
                performed_by=actor_id,
                reference_type="job" if job_id is not None else "manual",
                reference_id=job_id,
                reason=return_data.get("reason") or "Stock returned",
            )

            queue_event(
                session,
                self.publisher,
                inventory_scope(item.id),
                "inventory:returned",
                {**_summary(item), "lot_id": lot.lot_id, "returned": amount, "returned_by": actor_id},
            )

            logger.info(
                "Grouped stock returned",
                extra={"item_id": item.id, "lot_id": lot.lot_id, "value": str(amount), "actor_id": actor_id},
            )
            return item

    def update_item(self, item_id: int, patch: dict, actor_id: str, *, db: Optional[Session] = None) -> GroupedItem:
        with unit_of_work(db) as session:
            item = self._get_by_id(session, item_id, lock=True)

            if patch.get("unit") is not None and patch["unit"] != item.unit:
                raise ValidationError("Unit cannot be changed once an item exists")

            new_name = patch.get("item_name")
            if new_name is not None:
                new_name = " ".join(str(new_name).split())
                if not new_name:
                    raise ValidationError("Item name is required")
                clash = self._find_by_name(session, new_name)
                if clash is not None and clash.id != item.id:
                    raise ConflictError(f'An item named "{new_name}" already exists')
                item.item_name = new_name
                item.name_key = name_key(new_name)

            category = patch.get("category")
            if category is not None:
                if category not in GROUPED_CATEGORIES:
                    raise ValidationError(f"Invalid category: {category}")
                item.category = category

            if patch.get("min_value") is not None:
                min_value = quantity(to_decimal(patch["min_value"], "min_value"))
                if min_value < 0:
                    raise ValidationError("min_value cannot be negative")
                item.min_value = min_value

            if "notes" in patch:
                item.notes = patch["notes"]

            lot_patch = patch.get("lot") or {}
            delta = ZERO
            lot = None
            if lot_patch:
                if not item.lots:
                    raise NotFoundError("Item has no lots to update")
                lot = max(item.lots, key=lambda candidate: candidate.position)

                for field in _LOT_METADATA:
                    if field in lot_patch:
                        setattr(lot, field, lot_patch[field])
                if lot_patch.get("purchase_price") is not None:
                    price = money(to_decimal(lot_patch["purchase_price"], "purchase_price"))
                    if price < 0:
                        raise ValidationError("purchase_price cannot be negative")
                    lot.purchase_price = price
                if "expiry_date" in lot_patch:
                    lot.expiry_date = parse_datetime(lot_patch["expiry_date"], "expiry_date")
                if lot_patch.get("purchase_date") is not None:
                    lot.purchase_date = parse_datetime(lot_patch["purchase_date"], "purchase_date")

                field = value_field_for(item.unit)
                raw = lot_patch.get(field, lot_patch.get("value"))
                if raw is not None:
                    new_value = quantity(to_decimal(raw, field))
                    if new_value < 0:
                        raise ValidationError(f"{field} cannot be negative")
                    delta = quantity(new_value - quantity(lot.value))
                    lot.value = new_value
                    lot.is_active = new_value > 0

            recompute_item(item)
            session.flush()

            if delta != 0:
                ledger_service.record_entry(
                    session,
                    transaction_type="adjustment",
                    inventory_type="grouped",
                    item_id=item.id,
                    item_name=item.item_name,
                    lot_id=lot.lot_id,
                    quantity_change=delta,
                    unit_cost=lot.purchase_price,
                    performed_by=actor_id,
                    reference_type="manual",
                    reason=patch.get("reason") or "Manual adjustment",
                )

            queue_event(
                session,
                self.publisher,
                inventory_scope(item.id),
                "inventory:updated",
                {**_summary(item), "updated_by": actor_id},
            )

            logger.info(
                "Grouped item updated",
                extra={"item_id": item.id, "delta": str(delta), "actor_id": actor_id},
            )
            return item

    def delete_item(self, item_id: int, *, db: Optional[Session] = None) -> None:
        with unit_of_work(db) as session:
            item = self._get_by_id(session, item_id, lock=True)

            if any(lot.is_active and quantity(lot.value) > 0 for lot in item.lots):
                raise ConflictError("Cannot delete item with active stock. Please use all stock first.")

            payload = {"item_id": item.id, "item_name": item.item_name}
            session.delete(item)
            session.flush()

            queue_event(session, self.publisher, GLOBAL_SCOPE, "inventory:deleted", payload)
            logger.info("Grouped item deleted", extra=payload)
