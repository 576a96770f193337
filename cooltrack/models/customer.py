from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text

from cooltrack.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    phone = Column(String, nullable=False, index=True)
    address = Column(String, nullable=False)
    company = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    # Maintained by job lifecycle only.
    total_jobs = Column(Integer, nullable=False, default=0)
    total_revenue = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
