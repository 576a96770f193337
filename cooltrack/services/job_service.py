from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session, selectinload

from cooltrack.core.authorization import Actor, JobPolicy, job_policy
from cooltrack.core.dates import parse_datetime, utcnow
from cooltrack.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PolicyError,
    ValidationError,
)
from cooltrack.core.numbers import ZERO, money, quantity, to_decimal
from cooltrack.database import unit_of_work
from cooltrack.models.app_settings import PAYMENT_TYPES
from cooltrack.models.customer import Customer
from cooltrack.models.grouped_item import LINEAR_UNITS
from cooltrack.models.job import JOB_STATUSES, JOB_TYPES, Job, JobAdditionalCost, JobMaterial, recompute_totals
from cooltrack.services import settings_service
from cooltrack.services.events import (
    DASHBOARD_SCOPE,
    GLOBAL_SCOPE,
    EventPublisher,
    job_scope,
    queue_event,
)
from cooltrack.services.file_storage import FileStorage
from cooltrack.services.grouped_inventory_service import GroupedInventoryService, value_field_for
from cooltrack.services.serialized_inventory_service import SerializedInventoryService

logger = logging.getLogger(__name__)

JOB_NUMBER_PREFIX = "JOB"

ALLOWED_TRANSITIONS = {
    "pending": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed", "cancelled"}),
    "completed": frozenset({"paid"}),
    "cancelled": frozenset(),
    "paid": frozenset(),
}

_STATUS_STAMPS = {
    "in_progress": "started_at",
    "completed": "completed_at",
    "paid": "paid_at",
}

_FILE_KINDS = {"photo": "photo_urls", "document": "document_urls"}


def format_job_number(year: int, sequence: int) -> str:
    return f"{JOB_NUMBER_PREFIX}-{year}-{sequence:05d}"


def next_job_number(last_job_number: Optional[str], now: datetime) -> str:
    """Sequence restarts at 00001 when the latest job belongs to an earlier year."""
    if not last_job_number:
        return format_job_number(now.year, 1)

    try:
        _, year, sequence = last_job_number.split("-")
        year, sequence = int(year), int(sequence)
    except ValueError:
        return format_job_number(now.year, 1)

    if year != now.year:
        return format_job_number(now.year, 1)
    return format_job_number(now.year, sequence + 1)


def effective_labor_rate(job: Job, settings) -> Decimal:
    if job.labor_rate is not None:
        return money(job.labor_rate)
    return settings_service.hourly_rate_for(settings, job.type)


def technician_payout(job: Job, settings) -> dict:
    if job.technician_payment_overridden and job.technician_payment_override_amount is not None:
        return {
            "calculation_type": job.technician_payment_type or settings.technician_payment_type,
            "amount": money(job.technician_payment_override_amount),
            "is_overridden": True,
        }

    kind = job.technician_payment_type or settings.technician_payment_type
    fixed = job.technician_payment_fixed_amount
    if fixed is None:
        fixed = settings.technician_payment_fixed_amount
    percentage = job.technician_payment_percentage
    if percentage is None:
        percentage = settings.technician_payment_percentage

    if kind == "fixed":
        amount = money(fixed)
    elif kind == "percentage_revenue":
        amount = money(money(job.total_revenue) * to_decimal(percentage) / 100)
    elif kind == "percentage_profit":
        amount = money(max(money(job.profit), ZERO) * to_decimal(percentage) / 100)
    else:
        amount = money(job.labor_cost)

    return {"calculation_type": kind, "amount": amount, "is_overridden": False}


def _index(value: Any, size: int, label: str) -> int:
    try:
        index = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {label} index") from exc
    if index < 0 or index >= size:
        raise ValidationError(f"Invalid {label} index")
    return index


def _non_negative(value: Any, field: str) -> Decimal:
    amount = to_decimal(value, field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    return amount


def _allocation_cost(allocations: list[dict]) -> Decimal:
    return money(sum((quantity(a["amount"]) * money(a["unit_cost"]) for a in allocations), ZERO))


class JobService:
    def __init__(
        self,
        publisher: Optional[EventPublisher] = None,
        grouped: Optional[GroupedInventoryService] = None,
        serialized: Optional[SerializedInventoryService] = None,
        policy: Optional[JobPolicy] = None,
    ):
        self.publisher = publisher
        self.grouped = grouped or GroupedInventoryService(publisher)
        self.serialized = serialized or SerializedInventoryService(publisher)
        self.policy = policy or job_policy

    # -- helpers -----------------------------------------------------------

    def _load(self, db: Session, job_id: int, *, lock: bool = True) -> Job:
        q = (
            db.query(Job)
            .options(selectinload(Job.materials), selectinload(Job.additional_costs))
            .filter(Job.id == int(job_id))
        )
        if lock:
            q = q.with_for_update().populate_existing()
        job = q.one_or_none()
        if job is None:
            raise NotFoundError("Job not found")
        return job

    def _require_edit(self, actor: Actor, job: Job, action: str) -> None:
        if not self.policy.can_edit_job(actor, job):
            raise AuthorizationError(f"You are not authorized to {action} for this job")

    def _require_admin(self, actor: Actor, action: str) -> None:
        if not self.policy.can_manage_costing(actor):
            raise AuthorizationError(f"Only admins can {action}")

    def _require_unlocked(self, job: Job, action: str) -> None:
        if self.policy.is_costing_locked(job):
            raise ConflictError(f"Cannot {action} on a {job.status} job")

    def _refresh_labor(self, job: Job, settings) -> None:
        if not job.labor_overridden:
            job.labor_cost = money(money(job.labor_hours) * effective_labor_rate(job, settings))

    def _grouped_amount(self, unit: str, line: dict) -> Decimal:
        """Unit-specific field wins over the generic value_used."""
        specific = "length_used" if unit in LINEAR_UNITS else "quantity"
        raw = line.get(specific)
        if raw is None:
            raw = line.get("value_used")
        if raw is None:
            raise ValidationError(
                "Please specify amount used for grouped materials (value_used | quantity | length_used)"
            )
        amount = quantity(to_decimal(raw, specific))
        if amount <= 0:
            raise ValidationError("Amount used must be greater than 0")
        return amount

    # -- reads -------------------------------------------------------------

    def get_job(self, job_id: int, actor: Actor, *, db: Optional[Session] = None) -> Job:
        with unit_of_work(db) as session:
            job = self._load(session, job_id, lock=False)
            if not self.policy.can_view_job(actor, job):
                raise AuthorizationError("You are not authorized to view this job")
            return job

    def list_jobs(
        self,
        actor: Actor,
        *,
        status: Optional[str] = None,
        assigned_to: Optional[str] = None,
        customer_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
        db: Optional[Session] = None,
    ) -> list[Job]:
        with unit_of_work(db) as session:
            q = session.query(Job).options(selectinload(Job.materials), selectinload(Job.additional_costs))
            if not actor.is_admin:
                # Technicians only ever see their own jobs.
                assigned_to = actor.id
            if assigned_to is not None:
                q = q.filter(Job.assigned_to == str(assigned_to))
            if status is not None:
                q = q.filter(Job.status == status)
            if customer_id is not None:
                q = q.filter(Job.customer_id == int(customer_id))
            return (
                q.order_by(Job.scheduled_date.asc(), Job.created_at.desc(), Job.id.desc())
                .offset(int(offset))
                .limit(int(limit))
                .all()
            )

    def cost_breakdown(self, job_id: int, actor: Actor, *, db: Optional[Session] = None) -> dict:
        with unit_of_work(db) as session:
            job = self._load(session, job_id, lock=False)
            if not self.policy.can_view_job(actor, job):
                raise AuthorizationError("You are not authorized to view this job")
            settings = settings_service.get_settings(session)

            additional_total = money(sum((money(c.amount) for c in job.additional_costs), ZERO))
            return {
                "job_id": job.id,
                "job_number": job.job_number,
                "materials": [
                    {
                        "index": i,
                        "inventory_type": m.inventory_type,
                        "item_name": m.item_name,
                        "serial_number": m.serial_number,
                        "unit": m.unit,
                        "value_used": quantity(m.value_used),
                        "unit_cost": money(m.unit_cost),
                        "total_cost": money(m.total_cost),
                    }
                    for i, m in enumerate(job.materials)
                ],
                "labor": {
                    "hours": money(job.labor_hours),
                    "rate": effective_labor_rate(job, settings),
                    "cost": money(job.labor_cost),
                    "is_overridden": bool(job.labor_overridden),
                },
                "additional_costs": [
                    {"index": i, "description": c.description, "amount": money(c.amount)}
                    for i, c in enumerate(job.additional_costs)
                ],
                "total_material_cost": money(job.total_material_cost),
                "total_additional_cost": additional_total,
                "total_cost": money(job.total_cost),
                "total_revenue": money(job.total_revenue),
                "profit": money(job.profit),
                "technician_payment": technician_payout(job, settings),
                "costing_approval": job.costing_approval,
            }

    # -- lifecycle ---------------------------------------------------------

    def create_job(self, data: dict, actor: Actor, *, db: Optional[Session] = None) -> Job:
        if not self.policy.can_create_job(actor):
            raise AuthorizationError("Only admins can create jobs")

        job_type = data.get("type")
        if job_type not in JOB_TYPES:
            raise ValidationError(f"Invalid job type: {job_type}")
        if data.get("customer_id") is None:
            raise ValidationError("customer_id is required")

        with unit_of_work(db) as session:
            customer = (
                session.query(Customer)
                .filter(Customer.id == int(data["customer_id"]))
                .with_for_update()
                .one_or_none()
            )
            if customer is None:
                raise NotFoundError("Customer not found")

            settings = settings_service.get_settings(session)
            now = utcnow()

            last = (
                session.query(Job)
                .order_by(Job.created_at.desc(), Job.id.desc())
                .with_for_update()
                .first()
            )

            revenue = data.get("total_revenue")
            job = Job(
                job_number=next_job_number(last.job_number if last else None, now),
                customer_id=customer.id,
                customer_name=customer.name,
                customer_address=customer.address,
                customer_phone=customer.phone,
                type=job_type,
                description=data.get("description") or "",
                assigned_to=str(data["assigned_to"]) if data.get("assigned_to") is not None else None,
                status="pending",
                scheduled_date=parse_datetime(data.get("scheduled_date"), "scheduled_date"),
                labor_hours=money(_non_negative(data.get("labor_hours") or 0, "labor_hours")),
                total_revenue=(
                    money(_non_negative(revenue, "total_revenue"))
                    if revenue is not None
                    else settings_service.default_revenue_for(settings, job_type)
                ),
                technician_notes=data.get("technician_notes") or "",
                admin_notes=data.get("admin_notes") or "",
                photo_urls=[],
                document_urls=[],
                created_by=actor.id,
                created_at=now,
            )
            self._refresh_labor(job, settings)
            recompute_totals(job)
            session.add(job)

            customer.total_jobs = int(customer.total_jobs or 0) + 1
            customer.updated_at = now
            session.flush()

            queue_event(
                session,
                self.publisher,
                DASHBOARD_SCOPE,
                "job:created",
                {"job_id": job.id, "job_number": job.job_number, "customer": customer.name},
            )
            logger.info(
                "Job created",
                extra={"job_id": job.id, "job_number": job.job_number, "customer_id": customer.id},
            )
            return job

    def update_status(
        self,
        job_id: int,
        status: str,
        actor: Actor,
        extra: Optional[dict] = None,
        *,
        db: Optional[Session] = None,
    ) -> Job:
        if status not in JOB_STATUSES:
            raise ValidationError(f"Invalid status: {status}")

        extra = dict(extra or {})
        unknown = set(extra) - {"technician_notes", "admin_notes"}
        if unknown:
            raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}")

        with unit_of_work(db) as session:
            job = self._load(session, job_id)
            self._require_edit(actor, job, "change the status")
            if "admin_notes" in extra and not actor.is_admin:
                raise AuthorizationError("Only admins can edit admin notes")

            old_status = job.status
            if status != old_status:
                if status not in ALLOWED_TRANSITIONS[old_status]:
                    raise ValidationError(f"Cannot change status from {old_status} to {status}")
                if status == "paid" and not actor.is_admin:
                    raise AuthorizationError("Only admins can mark a job as paid")
                if status == "completed":
                    settings = settings_service.get_settings(session)
                    if settings.require_cost_approval and not job.costing_approved:
                        raise PolicyError("Costing must be approved before the job can be completed")
                job.status = status

            now = utcnow()
            stamp = _STATUS_STAMPS.get(status)
            if stamp is not None and getattr(job, stamp) is None:
                setattr(job, stamp, now)
                if status == "paid":
                    customer = (
                        session.query(Customer)
                        .filter(Customer.id == job.customer_id)
                        .with_for_update()
                        .one_or_none()
                    )
                    if customer is not None:
                        customer.total_revenue = money(money(customer.total_revenue) + money(job.total_revenue))
                        customer.updated_at = now

            for field, value in extra.items():
                setattr(job, field, value)

            session.flush()

            if status == "completed":
                queue_event(
                    session,
                    self.publisher,
                    GLOBAL_SCOPE,
                    "job:completed",
                    {"job_id": job.id, "job_number": job.job_number, "status": status},
                )
            else:
                queue_event(
                    session,
                    self.publisher,
                    GLOBAL_SCOPE,
                    "job:status-changed",
                    {
                        "job_id": job.id,
                        "job_number": job.job_number,
                        "old_status": old_status,
                        "new_status": status,
                        "updated_by": actor.id,
                    },
                )
            logger.info(
                "Job status updated",
                extra={"job_id": job.id, "old_status": old_status, "new_status": status, "actor_id": actor.id},
            )
            return job

    # -- materials ---------------------------------------------------------

    def add_materials(self, job_id: int, materials: list[dict], actor: Actor, *, db: Optional[Session] = None) -> Job:
        if not materials:
            raise ValidationError("At least one material is required")

        with unit_of_work(db) as session:
            job = self._load(session, job_id)
            self._require_edit(actor, job, "add materials")
            self._require_unlocked(job, "add materials")

            for line in materials:
                kind = line.get("inventory_type")
                if kind == "serialized":
                    serial = line.get("serial_number")
                    if not serial:
                        raise ValidationError("serial_number is required for serialized materials")
                    unit = self.serialized.install_item(serial, job.id, job.customer_id, actor.id, db=session)
                    sale_price = money(unit.sale_price)
                    job.materials.append(
                        JobMaterial(
                            inventory_type="serialized",
                            inventory_item_id=unit.id,
                            item_name=unit.item_name,
                            serial_number=unit.serial_number,
                            unit="pcs",
                            value_used=quantity(1),
                            unit_cost=sale_price,
                            total_cost=sale_price,
                            lot_allocations=[],
                            added_by=actor.id,
                        )
                    )

                elif kind == "grouped":
                    item_name = line.get("item_name")
                    if not item_name:
                        raise ValidationError("Item name is required for grouped materials")
                    item = self.grouped.get_item_by_name(item_name, db=session)
                    if item is None:
                        raise NotFoundError(f"Grouped item not found: {item_name}")

                    amount = self._grouped_amount(item.unit, line)
                    usage = self.grouped.use_stock(
                        item.item_name,
                        {value_field_for(item.unit): amount},
                        job.id,
                        actor.id,
                        db=session,
                    )
                    job.materials.append(
                        JobMaterial(
                            inventory_type="grouped",
                            inventory_item_id=usage.item.id,
                            item_name=usage.item.item_name,
                            unit=usage.item.unit,
                            value_used=amount,
                            unit_cost=usage.average_unit_cost,
                            total_cost=usage.total_cost,
                            lot_allocations=[
                                {"lot_id": u.lot_id, "amount": str(u.amount), "unit_cost": str(u.unit_cost)}
                                for u in usage.used_lots
                            ],
                            added_by=actor.id,
                        )
                    )

                else:
                    raise ValidationError(f"Invalid inventory type: {kind}")

            recompute_totals(job)
            session.flush()

            queue_event(
                session,
                self.publisher,
                job_scope(job.id),
                "job:materials-added",
                {"job_id": job.id, "job_number": job.job_number, "materials_count": len(materials)},
            )
            logger.info(
                "Job materials added",
                extra={"job_id": job.id, "count": len(materials), "total_material_cost": str(job.total_material_cost)},
            )
            return job

    def _return_allocations(self, session: Session, line: JobMaterial, allocations: list[dict], actor: Actor, job_id: int) -> None:
        item = self.grouped.get_item(line.inventory_item_id, db=session)
        for allocation in allocations:
            self.grouped.return_stock(
                item.item_name,
                {"value": allocation["amount"], "reason": "Material removed from job"},
                allocation["lot_id"],
                actor.id,
                job_id=job_id,
                db=session,
            )

    def remove_material(self, job_id: int, index: Any, actor: Actor, *, db: Optional[Session] = None) -> Job:
        with unit_of_work(db) as session:
            job = self._load(session, job_id)
            self._require_edit(actor, job, "remove materials")
            self._require_unlocked(job, "remove materials")
            position = _index(index, len(job.materials), "material")
            line = job.materials[position]

            if line.inventory_type == "grouped":
                self._return_allocations(session, line, list(line.lot_allocations or []), actor, job.id)
            elif self.serialized.installed_on(line.serial_number, job.id, db=session):
                self.serialized.return_item(
                    line.serial_number, actor.id, "Material removed from job", job_id=job.id, db=session
                )
            else:
                # Unit already left this job through inventory; only the line goes.
                logger.warning(
                    "Serialized material no longer installed on job",
                    extra={"job_id": job.id, "serial_number": line.serial_number},
                )

            job.materials.remove(line)
            recompute_totals(job)
            session.flush()

            queue_event(
                session,
                self.publisher,
                job_scope(job.id),
                "job:material-removed",
                {"job_id": job.id, "job_number": job.job_number, "material_index": position},
            )
            logger.info(
                "Job material removed",
                extra={"job_id": job.id, "material_index": position, "item_name": line.item_name},
            )
            return job

    def edit_material(self, job_id: int, index: Any, patch: dict, actor: Actor, *, db: Optional[Session] = None) -> Job:
        with unit_of_work(db) as session:
            job = self._load(session, job_id)
            self._require_edit(actor, job, "edit materials")
            self._require_unlocked(job, "edit materials")
            position = _index(index, len(job.materials), "material")
            line = job.materials[position]

            amount_given = any(patch.get(k) is not None for k in ("quantity", "length_used", "value_used"))

            if line.inventory_type == "serialized":
                if amount_given:
                    raise ValidationError("Serialized materials always use exactly one unit")
            elif amount_given:
                new_amount = self._grouped_amount(line.unit, patch)
                old_amount = quantity(line.value_used)
                allocations = [dict(a) for a in (line.lot_allocations or [])]

                if new_amount < old_amount:
                    # Give back the most recently drawn stock first.
                    remaining = quantity(old_amount - new_amount)
                    returned = []
                    for allocation in reversed(allocations):
                        if remaining <= 0:
                            break
                        take = min(quantity(allocation["amount"]), remaining)
                        returned.append({"lot_id": allocation["lot_id"], "amount": str(take)})
                        allocation["amount"] = str(quantity(quantity(allocation["amount"]) - take))
                        remaining = quantity(remaining - take)
                    self._return_allocations(session, line, returned, actor, job.id)
                    allocations = [a for a in allocations if quantity(a["amount"]) > 0]

                elif new_amount > old_amount:
                    usage = self.grouped.use_stock(
                        self.grouped.get_item(line.inventory_item_id, db=session).item_name,
                        {value_field_for(line.unit): quantity(new_amount - old_amount)},
                        job.id,
                        actor.id,
                        db=session,
                    )
                    allocations.extend(
                        {"lot_id": u.lot_id, "amount": str(u.amount), "unit_cost": str(u.unit_cost)}
                        for u in usage.used_lots
                    )

                line.value_used = new_amount
                line.lot_allocations = allocations
                if line.unit_cost_overridden:
                    line.total_cost = money(money(line.unit_cost) * new_amount)
                else:
                    line.total_cost = _allocation_cost(allocations)
                    line.unit_cost = money(line.total_cost / new_amount)

            if patch.get("unit_cost") is not None:
                unit_cost = money(_non_negative(patch["unit_cost"], "unit_cost"))
                line.unit_cost = unit_cost
                line.unit_cost_overridden = True
                line.total_cost = money(unit_cost * quantity(line.value_used))

            recompute_totals(job)
            session.flush()

            queue_event(
                session,
                self.publisher,
                job_scope(job.id),
                "job:material-updated",
                {"job_id": job.id, "job_number": job.job_number, "material_index": position},
            )
            logger.info("Job material edited", extra={"job_id": job.id, "material_index": position})
            return job

    # -- costing -----------------------------------------------------------

    def update_labor(self, job_id: int, labor: dict, actor: Actor, *, db: Optional[Session] = None) -> Job:
        with unit_of_work(db) as session:
            job = self._load(session, job_id)
            if not self.policy.can_update_labor(actor, job):
                raise AuthorizationError("Only the assigned technician can update labor for this job")
            self._require_unlocked(job, "update labor")

            if labor.get("hours") is not None:
                job.labor_hours = money(_non_negative(labor["hours"], "hours"))
                self._refresh_labor(job, settings_service.get_settings(session))

            recompute_totals(job)
            session.flush()

            queue_event(
                session,
                self.publisher,
                job_scope(job.id),
                "job:labor-updated",
                {"job_id": job.id, "job_number": job.job_number, "hours": job.labor_hours, "labor_cost": job.labor_cost},
            )
            logger.info(
                "Job labor updated",
                extra={"job_id": job.id, "hours": str(job.labor_hours), "labor_cost": str(job.labor_cost)},
            )
            return job

    def update_revenue(self, job_id: int, revenue: dict, actor: Actor, *, db: Optional[Session] = None) -> Job:
        self._require_admin(actor, "update revenue")

        with unit_of_work(db) as session:
            job = self._load(session, job_id)
            self._require_unlocked(job, "update revenue")

            if revenue.get("base_revenue") is not None:
                job.total_revenue = money(_non_negative(revenue["base_revenue"], "base_revenue"))

            recompute_totals(job)
            session.flush()

            queue_event(
                session,
                self.publisher,
                job_scope(job.id),
                "job:revenue-updated",
                {"job_id": job.id, "job_number": job.job_number, "total_revenue": job.total_revenue, "profit": job.profit},
            )
            logger.info("Job revenue updated", extra={"job_id": job.id, "total_revenue": str(job.total_revenue)})
            return job

    def update_labor_rate(self, job_id: int, rate: dict, actor: Actor, *, db: Optional[Session] = None) -> Job:
        self._require_admin(actor, "update labor rate")
        if rate.get("rate_per_hour") is None and rate.get("override_total_cost") is None and not rate.get("remove_override"):
            raise ValidationError("Provide rate_per_hour, override_total_cost or remove_override")

        with unit_of_work(db) as session:
            job = self._load(session, job_id)
            self._require_unlocked(job, "update labor rate")

            if rate.get("rate_per_hour") is not None:
                job.labor_rate = money(_non_negative(rate["rate_per_hour"], "rate_per_hour"))
                job.labor_overridden = False
                job.labor_overridden_by = None

            if rate.get("override_total_cost") is not None:
                job.labor_cost = money(_non_negative(rate["override_total_cost"], "override_total_cost"))
                job.labor_overridden = True
                job.labor_overridden_by = actor.id
            elif rate.get("remove_override"):
                job.labor_overridden = False
                job.labor_overridden_by = None

            self._refresh_labor(job, settings_service.get_settings(session))
            recompute_totals(job)
            session.flush()

            queue_event(
                session,
                self.publisher,
                job_scope(job.id),
                "job:labor-updated",
                {"job_id": job.id, "job_number": job.job_number, "hours": job.labor_hours, "labor_cost": job.labor_cost},
            )
            logger.info(
                "Job labor rate updated",
                extra={"job_id": job.id, "labor_cost": str(job.labor_cost), "overridden": bool(job.labor_overridden)},
            )
            return job

    def update_technician_payment(self, job_id: int, patch: dict, actor: Actor, *, db: Optional[Session] = None) -> Job:
        self._require_admin(actor, "update technician payment settings")

        kind = patch.get("calculation_type")
        if kind is not None and kind not in PAYMENT_TYPES:
            raise ValidationError(f"Invalid calculation type: {kind}")

        with unit_of_work(db) as session:
            job = self._load(session, job_id)

            if kind is not None:
                job.technician_payment_type = kind
            if patch.get("fixed_amount") is not None:
                job.technician_payment_fixed_amount = money(_non_negative(patch["fixed_amount"], "fixed_amount"))
            if patch.get("percentage") is not None:
                percentage = _non_negative(patch["percentage"], "percentage")
                if percentage > 100:
                    raise ValidationError("percentage cannot exceed 100")
                job.technician_payment_percentage = money(percentage)

            if patch.get("override_amount") is not None:
                job.technician_payment_overridden = True
                job.technician_payment_override_amount = money(_non_negative(patch["override_amount"], "override_amount"))
                job.technician_payment_overridden_by = actor.id
            elif patch.get("remove_override"):
                job.technician_payment_overridden = False
                job.technician_payment_override_amount = None
                job.technician_payment_overridden_by = None

            session.flush()

            queue_event(
                session,
                self.publisher,
                job_scope(job.id),
                "job:technician-payment-updated",
                {"job_id": job.id, "job_number": job.job_number},
            )
            logger.info("Job technician payment updated", extra={"job_id": job.id, "actor_id": actor.id})
            return job

    def approve_costing(self, job_id: int, notes: Optional[str], actor: Actor, *, db: Optional[Session] = None) -> Job:
        if not self.policy.can_approve_costing(actor):
            raise AuthorizationError("Only admins can approve costing")

        with unit_of_work(db) as session:
            job = self._load(session, job_id)
            if job.costing_approved:
                raise ConflictError("Costing is already approved")

            recompute_totals(job)
            settings = settings_service.get_settings(session)
            if not settings.allow_negative_profit and money(job.profit) < 0:
                raise PolicyError("Cannot approve job with negative profit")

            job.costing_approved = True
            job.costing_approved_by = actor.id
            job.costing_approved_at = utcnow()
            job.costing_notes = notes or ""
            job.profit_at_approval = money(job.profit)
            job.total_cost_at_approval = money(job.total_cost)
            job.total_revenue_at_approval = money(job.total_revenue)
            session.flush()

            queue_event(
                session,
                self.publisher,
                GLOBAL_SCOPE,
                "job:costing-approved",
                {"job_id": job.id, "job_number": job.job_number, "approved_by": actor.id, "profit": job.profit},
            )
            logger.info("Job costing approved", extra={"job_id": job.id, "profit": str(job.profit), "actor_id": actor.id})
            return job

    # -- additional costs --------------------------------------------------

    def add_additional_cost(self, job_id: int, cost: dict, actor: Actor, *, db: Optional[Session] = None) -> Job:
        description = str(cost.get("description") or "").strip()
        if not description or cost.get("amount") is None:
            raise ValidationError("Description and amount are required")
        amount = money(to_decimal(cost["amount"], "amount"))
        if amount <= 0:
            raise ValidationError("Amount must be greater than 0")

        with unit_of_work(db) as session:
            job = self._load(session, job_id)
            self._require_edit(actor, job, "add costs")
            self._require_unlocked(job, "add costs")

            job.additional_costs.append(JobAdditionalCost(description=description, amount=amount, added_by=actor.id))
            recompute_totals(job)
            session.flush()

            queue_event(
                session,
                self.publisher,
                job_scope(job.id),
                "job:cost-added",
                {"job_id": job.id, "job_number": job.job_number, "total_cost": job.total_cost},
            )
            logger.info("Job additional cost added", extra={"job_id": job.id, "amount": str(amount)})
            return job

    def remove_additional_cost(self, job_id: int, index: Any, actor: Actor, *, db: Optional[Session] = None) -> Job:
        with unit_of_work(db) as session:
            job = self._load(session, job_id)
            self._require_edit(actor, job, "remove costs")
            self._require_unlocked(job, "remove costs")
            position = _index(index, len(job.additional_costs), "cost")

            job.additional_costs.pop(position)
            recompute_totals(job)
            session.flush()

            queue_event(
                session,
                self.publisher,
                job_scope(job.id),
                "job:cost-removed",
                {"job_id": job.id, "job_number": job.job_number, "total_cost": job.total_cost},
            )
            logger.info("Job additional cost removed", extra={"job_id": job.id, "cost_index": position})
            return job

    # -- files -------------------------------------------------------------

    def attach_files(self, job_id: int, files: list[dict], actor: Actor, storage: FileStorage) -> dict:
        """
        Upload through `storage`, then record the URLs. Uploads happen outside
        the transaction; a failed save leaves orphaned objects in storage, never
        a job pointing at missing files.
        """
        if not files:
            raise ValidationError("No files provided")
        for f in files:
            if f.get("kind") not in _FILE_KINDS:
                raise ValidationError(f"Invalid file kind: {f.get('kind')}")
            if not f.get("filename"):
                raise ValidationError("filename is required")

        with unit_of_work() as session:
            job = self._load(session, job_id, lock=False)
            self._require_edit(actor, job, "upload files")

        uploaded = {"photo": [], "document": []}
        for f in files:
            name = str(f["filename"]).replace("/", "_").replace("\\", "_")
            path = f"jobs/{int(job_id)}/{f['kind']}s/{uuid.uuid4().hex[:10]}_{name}"
            url = storage.upload(path, f.get("content") or b"", f.get("content_type") or "application/octet-stream")
            uploaded[f["kind"]].append(url)

        with unit_of_work() as session:
            job = self._load(session, job_id)
            for kind, column in _FILE_KINDS.items():
                if uploaded[kind]:
                    setattr(job, column, list(getattr(job, column) or []) + uploaded[kind])
            session.flush()

            result = {"photos": uploaded["photo"], "documents": uploaded["document"]}
            queue_event(session, self.publisher, job_scope(job.id), "job:files-updated", {"job_id": job.id, **result})
            logger.info(
                "Job files attached",
                extra={"job_id": job.id, "photos": len(uploaded["photo"]), "documents": len(uploaded["document"])},
            )
            return result
