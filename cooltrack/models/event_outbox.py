from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String
from sqlalchemy.schema import Index

from cooltrack.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventOutbox(Base):
    __tablename__ = "event_outbox"

    id = Column(Integer, primary_key=True)

    # "global", "dashboard", "inventory:<id>" or "job:<id>"
    scope = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False, index=True)

    payload = Column(JSON, nullable=False)

    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    retry_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    last_error = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_event_outbox_due", "processed", "next_attempt_at"),
    )
