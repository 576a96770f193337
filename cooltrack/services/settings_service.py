from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from cooltrack.core.errors import ValidationError
from cooltrack.core.numbers import ZERO, money, to_decimal
from cooltrack.database import SessionLocal
from cooltrack.models.app_settings import PAYMENT_TYPES, SETTINGS_ROW_ID, AppSettings
from cooltrack.models.job import JOB_TYPES

logger = logging.getLogger(__name__)

_SCALAR_FIELDS = ("default_hourly_rate", "technician_payment_fixed_amount", "technician_payment_percentage")
_MAP_FIELDS = ("hourly_rates_by_job_type", "default_revenue_by_job_type")
_FLAG_FIELDS = ("allow_negative_profit", "require_cost_approval")


def get_settings(db: Session) -> AppSettings:
    """Single settings row, created with defaults on first read."""
    row = db.get(AppSettings, SETTINGS_ROW_ID)
    if row is None:
        row = AppSettings(
            id=SETTINGS_ROW_ID,
            default_hourly_rate=ZERO,
            hourly_rates_by_job_type={},
            default_revenue_by_job_type={},
            technician_payment_type="hourly",
            technician_payment_fixed_amount=ZERO,
            technician_payment_percentage=ZERO,
            allow_negative_profit=False,
            require_cost_approval=True,
        )
        db.add(row)
        db.flush()
    return row


def _rate_for(mapping: Optional[dict], job_type: str) -> Optional[Decimal]:
    if not mapping:
        return None
    raw = mapping.get(job_type)
    if raw is None:
        return None
    return money(raw)


def hourly_rate_for(settings: AppSettings, job_type: str) -> Decimal:
    rate = _rate_for(settings.hourly_rates_by_job_type, job_type)
    if rate is not None:
        return rate
    return money(settings.default_hourly_rate)


def default_revenue_for(settings: AppSettings, job_type: str) -> Decimal:
    revenue = _rate_for(settings.default_revenue_by_job_type, job_type)
    return revenue if revenue is not None else ZERO


def _clean_rate_map(field: str, value: Any) -> dict:
    if not isinstance(value, dict):
        raise ValidationError(f"{field} must be an object keyed by job type")
    cleaned = {}
    for job_type, amount in value.items():
        if job_type not in JOB_TYPES:
            raise ValidationError(f"Unknown job type in {field}: {job_type}")
        amount = money(to_decimal(amount, field))
        if amount < 0:
            raise ValidationError(f"{field} amounts cannot be negative")
        cleaned[job_type] = str(amount)
    return cleaned


def update_settings(patch: dict, actor_id: str, *, db: Optional[Session] = None) -> AppSettings:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        row = get_settings(db)

        for field in _SCALAR_FIELDS:
            if field in patch and patch[field] is not None:
                amount = money(to_decimal(patch[field], field))
                if amount < 0:
                    raise ValidationError(f"{field} cannot be negative")
                setattr(row, field, amount)

        for field in _MAP_FIELDS:
            if field in patch and patch[field] is not None:
                setattr(row, field, _clean_rate_map(field, patch[field]))

        for field in _FLAG_FIELDS:
            if field in patch and patch[field] is not None:
                setattr(row, field, bool(patch[field]))

        payment_type = patch.get("technician_payment_type")
        if payment_type is not None:
            if payment_type not in PAYMENT_TYPES:
                raise ValidationError(f"Invalid technician payment type: {payment_type}")
            row.technician_payment_type = payment_type

        row.updated_at = datetime.now(timezone.utc)
        row.updated_by = str(actor_id)

        db.flush()

        if owns_db:
            db.commit()
            db.refresh(row)

        logger.info("Settings updated", extra={"updated_by": str(actor_id)})
        return row

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
