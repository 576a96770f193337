from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SettingsUpdate(BaseModel):
    default_hourly_rate: Optional[Decimal] = None
    hourly_rates_by_job_type: Optional[dict[str, Decimal]] = None
    default_revenue_by_job_type: Optional[dict[str, Decimal]] = None
    technician_payment_type: Optional[str] = None
    technician_payment_fixed_amount: Optional[Decimal] = None
    technician_payment_percentage: Optional[Decimal] = None
    allow_negative_profit: Optional[bool] = None
    require_cost_approval: Optional[bool] = None


class SettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    default_hourly_rate: Decimal
    hourly_rates_by_job_type: dict[str, Decimal]
    default_revenue_by_job_type: dict[str, Decimal]
    technician_payment_type: str
    technician_payment_fixed_amount: Decimal
    technician_payment_percentage: Decimal
    allow_negative_profit: bool
    require_cost_approval: bool
    updated_at: datetime
    updated_by: Optional[str]
