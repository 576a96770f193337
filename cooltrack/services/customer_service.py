import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from cooltrack.core.dates import utcnow
from cooltrack.core.errors import ConflictError, NotFoundError, ValidationError
from cooltrack.database import unit_of_work
from cooltrack.models.customer import Customer
from cooltrack.models.job import Job

logger = logging.getLogger(__name__)

_REQUIRED = ("name", "email", "phone", "address")
# total_jobs / total_revenue are owned by the job lifecycle.
_EDITABLE = ("name", "email", "phone", "address", "company", "notes")


def _email_taken(db: Session, email: str, exclude_id: Optional[int] = None) -> bool:
    q = db.query(Customer.id).filter(func.lower(Customer.email) == email.strip().lower())
    if exclude_id is not None:
        q = q.filter(Customer.id != int(exclude_id))
    return q.first() is not None


def get_customer(customer_id: int, *, db: Optional[Session] = None) -> Customer:
    with unit_of_work(db) as session:
        customer = session.get(Customer, int(customer_id))
        if customer is None:
            raise NotFoundError("Customer not found")
        return customer


def list_customers(*, search: Optional[str] = None, limit: int = 50, offset: int = 0, db: Optional[Session] = None):
    with unit_of_work(db) as session:
        q = session.query(Customer)
        if search:
            pattern = f"%{search.strip().lower()}%"
            q = q.filter(func.lower(Customer.name).like(pattern) | func.lower(Customer.email).like(pattern))
        return q.order_by(Customer.name.asc(), Customer.id.asc()).offset(int(offset)).limit(int(limit)).all()


def create_customer(data: dict, *, db: Optional[Session] = None) -> Customer:
    for field in _REQUIRED:
        if not str(data.get(field) or "").strip():
            raise ValidationError(f"{field} is required")

    with unit_of_work(db) as session:
        if _email_taken(session, data["email"]):
            raise ConflictError("A customer with this email already exists")

        customer = Customer(**{field: data.get(field) for field in _EDITABLE})
        customer.email = customer.email.strip()
        session.add(customer)
        session.flush()

        logger.info("Customer created", extra={"customer_id": customer.id})
        return customer


def update_customer(customer_id: int, patch: dict, *, db: Optional[Session] = None) -> Customer:
    with unit_of_work(db) as session:
        customer = session.get(Customer, int(customer_id))
        if customer is None:
            raise NotFoundError("Customer not found")

        for field in _EDITABLE:
            if field not in patch or patch[field] is None:
                continue
            if field in _REQUIRED and not str(patch[field]).strip():
                raise ValidationError(f"{field} cannot be empty")
            setattr(customer, field, patch[field])

        if patch.get("email") is not None and _email_taken(session, patch["email"], exclude_id=customer.id):
            raise ConflictError("A customer with this email already exists")

        customer.updated_at = utcnow()
        session.flush()
        logger.info("Customer updated", extra={"customer_id": customer.id})
        return customer


def delete_customer(customer_id: int, *, db: Optional[Session] = None) -> None:
    with unit_of_work(db) as session:
        customer = session.get(Customer, int(customer_id))
        if customer is None:
            raise NotFoundError("Customer not found")
        if session.query(Job.id).filter(Job.customer_id == customer.id).first() is not None:
            raise ConflictError("Cannot delete a customer with jobs")

        session.delete(customer)
        session.flush()
        logger.info("Customer deleted", extra={"customer_id": int(customer_id)})
