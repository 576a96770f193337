from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, Numeric, String

from cooltrack.database import Base

PAYMENT_TYPES = ("fixed", "hourly", "percentage_revenue", "percentage_profit")

SETTINGS_ROW_ID = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AppSettings(Base):
    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True, default=SETTINGS_ROW_ID)

    default_hourly_rate = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    # {"installation": "55.00", ...}; amounts kept as strings.
    hourly_rates_by_job_type = Column(JSON, nullable=False, default=dict)
    default_revenue_by_job_type = Column(JSON, nullable=False, default=dict)

    technician_payment_type = Column(String, nullable=False, default="hourly")
    technician_payment_fixed_amount = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    technician_payment_percentage = Column(Numeric(6, 2), nullable=False, default=Decimal("0"))

    allow_negative_profit = Column(Boolean, nullable=False, default=False)
    require_cost_approval = Column(Boolean, nullable=False, default=True)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_by = Column(String, nullable=True)
