from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text

from cooltrack.database import Base

SERIALIZED_CATEGORIES = ("aircon", "compressor", "motor", "other")
UNIT_STATUSES = ("available", "installed", "maintenance", "retired")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SerializedUnit(Base):
    __tablename__ = "serialized_units"

    id = Column(Integer, primary_key=True, index=True)

    serial_number = Column(String, nullable=False, unique=True, index=True)
    item_name = Column(String, nullable=False)
    brand = Column(String, nullable=False)
    model = Column(String, nullable=False)
    category = Column(String, nullable=False, default="other")

    purchase_price = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    sale_price = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))

    status = Column(String, nullable=False, default="available", index=True)

    # Populated only while status == installed.
    current_job_id = Column(Integer, nullable=True, index=True)
    current_customer_id = Column(Integer, nullable=True)
    installed_date = Column(DateTime(timezone=True), nullable=True)

    supplier = Column(String, nullable=True)
    purchase_date = Column(DateTime(timezone=True), nullable=True)
    warranty_expiry = Column(DateTime(timezone=True), nullable=True)
    location = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
