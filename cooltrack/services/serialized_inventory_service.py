from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from cooltrack.core.dates import parse_datetime, utcnow
from cooltrack.core.errors import ConflictError, NotFoundError, ValidationError
from cooltrack.core.numbers import money, to_decimal
from cooltrack.database import unit_of_work
from cooltrack.models.serialized_unit import SERIALIZED_CATEGORIES, UNIT_STATUSES, SerializedUnit
from cooltrack.services import ledger_service
from cooltrack.services.events import GLOBAL_SCOPE, EventPublisher, job_scope, queue_event

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("item_name", "brand", "model", "supplier", "location", "notes")
_DATE_FIELDS = ("purchase_date", "warranty_expiry")
_PRICE_FIELDS = ("purchase_price", "sale_price")


def _price(data: dict, field: str):
    amount = money(to_decimal(data.get(field, 0) or 0, field))
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    return amount


class SerializedInventoryService:
    """
    Lifecycle of uniquely identified equipment:
    available -> installed -> available (return), available -> maintenance/retired.
    """

    def __init__(self, publisher: Optional[EventPublisher] = None):
        self.publisher = publisher

    def _by_serial(self, db: Session, serial_number: str, *, lock: bool = False) -> SerializedUnit:
        q = db.query(SerializedUnit).filter(SerializedUnit.serial_number == str(serial_number).strip())
        if lock:
            q = q.with_for_update().populate_existing()
        unit = q.one_or_none()
        if unit is None:
            raise NotFoundError(f"Serialized item {serial_number} not found")
        return unit

    def _by_id(self, db: Session, unit_id: int, *, lock: bool = False) -> SerializedUnit:
        q = db.query(SerializedUnit).filter(SerializedUnit.id == int(unit_id))
        if lock:
            q = q.with_for_update().populate_existing()
        unit = q.one_or_none()
        if unit is None:
            raise NotFoundError("Item not found")
        return unit

    def get_by_serial(self, serial_number: str, *, db: Optional[Session] = None) -> SerializedUnit:
        with unit_of_work(db) as session:
            return self._by_serial(session, serial_number)

    def installed_on(self, serial_number: str, job_id: Any, *, db: Optional[Session] = None) -> bool:
        with unit_of_work(db) as session:
            unit = (
                session.query(SerializedUnit)
                .filter(SerializedUnit.serial_number == str(serial_number).strip())
                .one_or_none()
            )
            return unit is not None and unit.status == "installed" and unit.current_job_id == int(job_id)

    def list_items(
        self,
        *,
        status: Optional[str] = None,
        category: Optional[str] = None,
        db: Optional[Session] = None,
    ) -> list[SerializedUnit]:
        with unit_of_work(db) as session:
            q = session.query(SerializedUnit)
            if status is not None:
                q = q.filter(SerializedUnit.status == status)
            if category is not None:
                q = q.filter(SerializedUnit.category == category)
            return q.order_by(SerializedUnit.serial_number.asc()).all()

    def item_history(self, serial_number: str, *, limit: int = 50, db: Optional[Session] = None):
        with unit_of_work(db) as session:
            unit = self._by_serial(session, serial_number)
            entries = ledger_service.entries_for_item(
                session, inventory_type="serialized", item_id=unit.id, limit=limit
            )
            return unit, entries

    def add_item(self, data: dict, actor_id: str, *, db: Optional[Session] = None) -> SerializedUnit:
        serial_number = str(data.get("serial_number") or "").strip()
        if not serial_number:
            raise ValidationError("serial_number is required")
        for field in ("item_name", "brand", "model"):
            if not data.get(field):
                raise ValidationError(f"{field} is required")

        category = data.get("category") or "other"
        if category not in SERIALIZED_CATEGORIES:
            raise ValidationError(f"Invalid category: {category}")

        status = data.get("status") or "available"
        if status not in UNIT_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        if status == "installed":
            raise ValidationError("Units are installed through a job, not at intake")

        with unit_of_work(db) as session:
            existing = (
                session.query(SerializedUnit.id)
                .filter(SerializedUnit.serial_number == serial_number)
                .first()
            )
            if existing is not None:
                raise ConflictError("Serial number already exists")

            unit = SerializedUnit(
                serial_number=serial_number,
                category=category,
                status=status,
                purchase_price=_price(data, "purchase_price"),
                sale_price=_price(data, "sale_price"),
                purchase_date=parse_datetime(data.get("purchase_date"), "purchase_date") or utcnow(),
                warranty_expiry=parse_datetime(data.get("warranty_expiry"), "warranty_expiry"),
            )
            for field in _TEXT_FIELDS:
                if data.get(field) is not None:
                    setattr(unit, field, data[field])

            session.add(unit)
            session.flush()

            ledger_service.record_entry(
                session,
                transaction_type="purchase",
                inventory_type="serialized",
                item_id=unit.id,
                item_name=unit.item_name,
                serial_number=unit.serial_number,
                quantity_change=1,
                unit_cost=unit.purchase_price,
                performed_by=actor_id,
                reason="Initial stock entry",
            )

            queue_event(
                session,
                self.publisher,
                GLOBAL_SCOPE,
                "inventory:serialized-added",
                {"serial_number": unit.serial_number, "item_name": unit.item_name, "status": unit.status},
            )
            logger.info("Serialized unit added", extra={"unit_id": unit.id, "serial_number": unit.serial_number})
            return unit

    def install_item(
        self,
        serial_number: str,
        job_id: Any,
        customer_id: Any,
        actor_id: str,
        *,
        db: Optional[Session] = None,
    ) -> SerializedUnit:
        with unit_of_work(db) as session:
            unit = self._by_serial(session, serial_number, lock=True)
            if unit.status != "available":
                raise ConflictError(f"Item is not available. Current status: {unit.status}")

            previous_status = unit.status
            unit.status = "installed"
            unit.current_job_id = int(job_id)
            unit.current_customer_id = int(customer_id) if customer_id is not None else None
            unit.installed_date = utcnow()
            unit.updated_at = utcnow()
            session.flush()

            ledger_service.record_entry(
                session,
                transaction_type="installation",
                inventory_type="serialized",
                item_id=unit.id,
                item_name=unit.item_name,
                serial_number=unit.serial_number,
                quantity_change=-1,
                unit_cost=unit.purchase_price,
                performed_by=actor_id,
                reference_type="job",
                reference_id=job_id,
                reason="Installed for job",
                details={
                    "previous_status": previous_status,
                    "new_status": "installed",
                    "customer_id": unit.current_customer_id,
                },
            )

            payload = {"serial_number": unit.serial_number, "item_name": unit.item_name}
            queue_event(
                session,
                self.publisher,
                GLOBAL_SCOPE,
                "inventory:serialized-installed",
                {**payload, "job_id": unit.current_job_id, "customer_id": unit.current_customer_id},
            )
            queue_event(session, self.publisher, job_scope(job_id), "job:equipment-installed", payload)

            logger.info(
                "Serialized unit installed",
                extra={"unit_id": unit.id, "serial_number": unit.serial_number, "job_id": job_id},
            )
            return unit

    def return_item(
        self,
        serial_number: str,
        actor_id: str,
        reason: str = "Job completed",
        *,
        job_id: Any = None,
        db: Optional[Session] = None,
    ) -> SerializedUnit:
        with unit_of_work(db) as session:
            unit = self._by_serial(session, serial_number, lock=True)
            if unit.status != "installed":
                raise ConflictError(f"Item is not in use. Current status: {unit.status}")
            if job_id is not None and unit.current_job_id != int(job_id):
                raise ConflictError(f"Item {unit.serial_number} is not installed on job {job_id}")

            previous_job_id = unit.current_job_id
            previous_customer_id = unit.current_customer_id

            unit.status = "available"
            unit.current_job_id = None
            unit.current_customer_id = None
            unit.installed_date = None
            unit.updated_at = utcnow()
            session.flush()

            ledger_service.record_entry(
                session,
                transaction_type="return",
                inventory_type="serialized",
                item_id=unit.id,
                item_name=unit.item_name,
                serial_number=unit.serial_number,
                quantity_change=1,
                unit_cost=unit.purchase_price,
                performed_by=actor_id,
                reference_type="job" if previous_job_id is not None else "manual",
                reference_id=previous_job_id,
                reason=reason,
                details={
                    "previous_status": "installed",
                    "new_status": "available",
                    "previous_job_id": previous_job_id,
                    "previous_customer_id": previous_customer_id,
                },
            )

            payload = {"serial_number": unit.serial_number, "item_name": unit.item_name}
            queue_event(
                session,
                self.publisher,
                GLOBAL_SCOPE,
                "inventory:serialized-returned",
                {**payload, "previous_job_id": previous_job_id},
            )
            if previous_job_id is not None:
                queue_event(session, self.publisher, job_scope(previous_job_id), "job:equipment-returned", payload)

            logger.info(
                "Serialized unit returned",
                extra={"unit_id": unit.id, "serial_number": unit.serial_number, "job_id": previous_job_id},
            )
            return unit

    def update_item(self, unit_id: int, patch: dict, actor_id: str, *, db: Optional[Session] = None) -> SerializedUnit:
        with unit_of_work(db) as session:
            unit = self._by_id(session, unit_id, lock=True)

            if patch.get("serial_number") is not None and str(patch["serial_number"]).strip() != unit.serial_number:
                raise ValidationError("serial_number cannot be changed")

            for field in _TEXT_FIELDS:
                if field in patch and patch[field] is not None:
                    setattr(unit, field, patch[field])
            for field in _PRICE_FIELDS:
                if patch.get(field) is not None:
                    setattr(unit, field, _price(patch, field))
            for field in _DATE_FIELDS:
                if field in patch:
                    setattr(unit, field, parse_datetime(patch[field], field))

            category = patch.get("category")
            if category is not None:
                if category not in SERIALIZED_CATEGORIES:
                    raise ValidationError(f"Invalid category: {category}")
                unit.category = category

            previous_status = unit.status
            new_status = patch.get("status")
            status_changed = new_status is not None and new_status != previous_status
            if status_changed:
                if new_status not in UNIT_STATUSES:
                    raise ValidationError(f"Invalid status: {new_status}")
                if new_status == "installed":
                    raise ValidationError("Use a job to install a unit")
                unit.status = new_status
                if previous_status == "installed":
                    unit.current_job_id = None
                    unit.current_customer_id = None
                    unit.installed_date = None

            unit.updated_at = utcnow()
            session.flush()

            if status_changed:
                ledger_service.record_entry(
                    session,
                    transaction_type="status_change",
                    inventory_type="serialized",
                    item_id=unit.id,
                    item_name=unit.item_name,
                    serial_number=unit.serial_number,
                    quantity_change=1 if previous_status == "installed" else 0,
                    unit_cost=unit.purchase_price if previous_status == "installed" else 0,
                    performed_by=actor_id,
                    reason=patch.get("reason") or f"Status changed from {previous_status} to {new_status}",
                    details={"previous_status": previous_status, "new_status": new_status},
                )

            queue_event(
                session,
                self.publisher,
                GLOBAL_SCOPE,
                "inventory:serialized-updated",
                {
                    "serial_number": unit.serial_number,
                    "item_name": unit.item_name,
                    "status": unit.status,
                    "previous_status": previous_status,
                },
            )
            logger.info(
                "Serialized unit updated",
                extra={"unit_id": unit.id, "previous_status": previous_status, "status": unit.status},
            )
            return unit

    def delete_item(self, unit_id: int, *, db: Optional[Session] = None) -> None:
        with unit_of_work(db) as session:
            unit = self._by_id(session, unit_id, lock=True)
            if unit.status == "installed":
                raise ConflictError("Cannot delete item that is currently in use. Please change status first.")

            payload = {"serial_number": unit.serial_number, "item_name": unit.item_name}
            session.delete(unit)
            session.flush()

            queue_event(session, self.publisher, GLOBAL_SCOPE, "inventory:serialized-deleted", payload)
            logger.info("Serialized unit deleted", extra=payload)
