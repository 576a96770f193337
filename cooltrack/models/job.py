from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Session, relationship

from cooltrack.core.numbers import money
from cooltrack.database import Base

JOB_TYPES = ("installation", "repair", "maintenance", "inspection")
JOB_STATUSES = ("pending", "in_progress", "completed", "cancelled", "paid")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    job_number = Column(String, nullable=False, unique=True, index=True)

    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False, index=True)
    customer_name = Column(String, nullable=True)
    customer_address = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)

    type = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    assigned_to = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="pending", index=True)

    scheduled_date = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    labor_hours = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    labor_rate = Column(Numeric(14, 2), nullable=True)
    labor_cost = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    labor_overridden = Column(Boolean, nullable=False, default=False)
    labor_overridden_by = Column(String, nullable=True)

    # Derived; see recompute_totals.
    total_material_cost = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_cost = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_revenue = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    profit = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))

    costing_approved = Column(Boolean, nullable=False, default=False)
    costing_approved_by = Column(String, nullable=True)
    costing_approved_at = Column(DateTime(timezone=True), nullable=True)
    costing_notes = Column(Text, nullable=True)
    profit_at_approval = Column(Numeric(14, 2), nullable=True)
    total_cost_at_approval = Column(Numeric(14, 2), nullable=True)
    total_revenue_at_approval = Column(Numeric(14, 2), nullable=True)

    technician_payment_type = Column(String, nullable=True)
    technician_payment_fixed_amount = Column(Numeric(14, 2), nullable=True)
    technician_payment_percentage = Column(Numeric(6, 2), nullable=True)
    technician_payment_overridden = Column(Boolean, nullable=False, default=False)
    technician_payment_override_amount = Column(Numeric(14, 2), nullable=True)
    technician_payment_overridden_by = Column(String, nullable=True)

    photo_urls = Column(JSON, nullable=False, default=list)
    document_urls = Column(JSON, nullable=False, default=list)

    technician_notes = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    version = Column(Integer, nullable=False)

    materials = relationship(
        "JobMaterial",
        back_populates="job",
        order_by="JobMaterial.id",
        cascade="all, delete-orphan",
    )
    additional_costs = relationship(
        "JobAdditionalCost",
        back_populates="job",
        order_by="JobAdditionalCost.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def costing_approval(self) -> dict:
        return {
            "is_approved": bool(self.costing_approved),
            "approved_by": self.costing_approved_by,
            "approved_at": self.costing_approved_at,
            "notes": self.costing_notes,
            "profit_at_approval": self.profit_at_approval,
            "total_cost_at_approval": self.total_cost_at_approval,
            "total_revenue_at_approval": self.total_revenue_at_approval,
        }


class JobMaterial(Base):
    __tablename__ = "job_materials"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)

    inventory_type = Column(String, nullable=False)  # serialized|grouped
    inventory_item_id = Column(Integer, nullable=False)
    item_name = Column(String, nullable=False)
    serial_number = Column(String, nullable=True)
    unit = Column(String, nullable=False)

    value_used = Column(Numeric(14, 3), nullable=False)
    unit_cost = Column(Numeric(14, 2), nullable=False)
    total_cost = Column(Numeric(14, 2), nullable=False)
    unit_cost_overridden = Column(Boolean, nullable=False, default=False)

    # [{"lot_id": ..., "amount": "20.000", "unit_cost": "10.00"}] in consumption order.
    lot_allocations = Column(JSON, nullable=False, default=list)

    added_by = Column(String, nullable=True)
    added_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    job = relationship("Job", back_populates="materials")


class JobAdditionalCost(Base):
    __tablename__ = "job_additional_costs"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(String, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    added_by = Column(String, nullable=True)
    added_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    job = relationship("Job", back_populates="additional_costs")


def recompute_totals(job: Job) -> Job:
    """
    totalMaterialCost = sum(materials.total_cost)
    totalCost = totalMaterialCost + laborCost + sum(additional_costs.amount)
    profit = totalRevenue - totalCost
    """
    material_total = sum((money(m.total_cost) for m in job.materials), Decimal("0"))
    additional_total = sum((money(c.amount) for c in job.additional_costs), Decimal("0"))

    job.total_material_cost = money(material_total)
    job.total_cost = money(material_total + money(job.labor_cost) + additional_total)
    job.profit = money(money(job.total_revenue) - job.total_cost)
    return job


@event.listens_for(Session, "before_flush")
def _recompute_job_totals_on_flush(session, flush_context, instances):
    touched = {}

    with session.no_autoflush:
        for obj in list(session.new) + list(session.dirty):
            if isinstance(obj, Job):
                touched[id(obj)] = obj
            elif isinstance(obj, (JobMaterial, JobAdditionalCost)) and obj.job is not None:
                touched[id(obj.job)] = obj.job

        for job in touched.values():
            if job in session.deleted:
                continue
            recompute_totals(job)
            job.updated_at = _utcnow()
