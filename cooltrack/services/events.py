import logging
from typing import Any, Optional, Protocol

from sqlalchemy import event
from sqlalchemy.orm import Session

from cooltrack.core.config import get_event_publisher_kind
from cooltrack.core.numbers import plain

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"
DASHBOARD_SCOPE = "dashboard"

_PENDING_KEY = "cooltrack.pending_events"


def inventory_scope(item_id) -> str:
    return f"inventory:{item_id}"


def job_scope(job_id) -> str:
    return f"job:{job_id}"


class EventPublisher(Protocol):
    def publish(self, scope: str, event: str, payload: dict) -> None:
        ...


class LoggingEventPublisher:
    def publish(self, scope: str, event: str, payload: dict) -> None:
        logger.info("Event published", extra={"scope": scope, "event": event, "payload": payload})


class NullEventPublisher:
    def publish(self, scope: str, event: str, payload: dict) -> None:
        return


class OutboxEventPublisher:
    """Stores events in event_outbox for the dispatcher, in a session of its own."""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _new_session(self) -> Session:
        if self._session_factory is not None:
            return self._session_factory()
        from cooltrack.database import SessionLocal

        return SessionLocal()

    def publish(self, scope: str, event: str, payload: dict) -> None:
        from cooltrack.models.event_outbox import EventOutbox

        db = self._new_session()
        try:
            db.add(EventOutbox(scope=scope, event_type=event, payload=plain(payload)))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def get_event_publisher() -> EventPublisher:
    kind = get_event_publisher_kind()
    if kind == "log":
        return LoggingEventPublisher()
    if kind == "none":
        return NullEventPublisher()
    return OutboxEventPublisher()


def queue_event(db: Session, publisher: Optional[EventPublisher], scope: str, name: str, payload: dict[str, Any]) -> None:
    """
    Defer publication until the session's transaction commits.

    Events queued in a transaction that rolls back are dropped.
    """
    if publisher is None:
        return
    db.info.setdefault(_PENDING_KEY, []).append((publisher, scope, name, plain(payload)))


def pending_events(db: Session) -> list:
    return list(db.info.get(_PENDING_KEY, []))


@event.listens_for(Session, "after_commit")
def _publish_pending_events(session):
    pending = session.info.pop(_PENDING_KEY, [])
    for publisher, scope, name, payload in pending:
        try:
            publisher.publish(scope, name, payload)
        except Exception:
            # Delivery is fire-and-forget; the mutation is already committed.
            logger.exception(
                "Event publication failed",
                extra={"scope": scope, "event": name},
            )


@event.listens_for(Session, "after_soft_rollback")
def _discard_pending_events(session, previous_transaction):
    session.info.pop(_PENDING_KEY, None)
