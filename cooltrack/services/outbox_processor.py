import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from cooltrack.database import SessionLocal
from cooltrack.models.event_outbox import EventOutbox

logger = logging.getLogger(__name__)

# (scope, event, payload); raising marks the delivery as failed.
EventTransport = Callable[[str, str, dict], None]

_LOCK_KEYS = (5151, 5152)


@dataclass(frozen=True)
class DispatchResult:
    delivered: int
    failed: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _retry_wait(retry_count: int) -> timedelta:
    """Exponential backoff: 0s before the first retry, then 2s, 4s, 8s ... capped at 60s."""
    n = int(retry_count) if retry_count is not None else 0
    if n <= 0:
        return timedelta(seconds=0)

    seconds = 2**n
    if seconds > 60:
        seconds = 60
    return timedelta(seconds=seconds)


def log_transport(scope: str, event: str, payload: dict) -> None:
    logger.info("Event delivered", extra={"scope": scope, "event": event, "payload": payload})


def dispatch_pending_events(
    *,
    transport: EventTransport = log_transport,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
    batch_size: int = 50,
    max_retries: int = 10,
) -> DispatchResult:
    """
    Deliver due outbox rows in id order. A failed delivery is rescheduled with
    backoff; after `max_retries` failures the row is closed out so it stops
    blocking the queue.
    """
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = _utcnow()

    delivered = 0
    failed = 0

    try:
        rows = (
            db.query(EventOutbox)
            .filter(EventOutbox.processed.is_(False))
            .filter(EventOutbox.next_attempt_at <= now)
            .order_by(EventOutbox.id.asc())
            .with_for_update(skip_locked=True)
            .limit(int(batch_size))
            .all()
        )

        for row in rows:
            try:
                transport(row.scope, row.event_type, row.payload)

                row.processed = True
                row.processed_at = now
                row.last_error = None
                db.flush()
                delivered += 1

            except Exception as exc:
                row.retry_count = int(row.retry_count or 0) + 1
                row.last_error = str(exc)[:500]
                row.next_attempt_at = now + _retry_wait(row.retry_count)

                if int(row.retry_count) >= int(max_retries):
                    row.processed = True
                    row.processed_at = now

                db.flush()
                failed += 1
                logger.exception(
                    "Event delivery failed",
                    extra={
                        "event_outbox_id": row.id,
                        "event_type": row.event_type,
                        "retry_count": int(row.retry_count),
                        "max_retries": int(max_retries),
                    },
                )

        if owns_db:
            db.commit()

        return DispatchResult(delivered=delivered, failed=failed)

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def try_acquire_dispatch_lock(db: Session) -> bool:
    # Advisory locks only exist in PostgreSQL; elsewhere a single process is assumed.
    if db.get_bind().dialect.name != "postgresql":
        return True
    res = db.execute(text("select pg_try_advisory_lock(:a, :b)"), {"a": _LOCK_KEYS[0], "b": _LOCK_KEYS[1]}).scalar()
    return bool(res)


def release_dispatch_lock(db: Session) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text("select pg_advisory_unlock(:a, :b)"), {"a": _LOCK_KEYS[0], "b": _LOCK_KEYS[1]})
