import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from cooltrack.core.config import event_batch_size, event_dispatch_enabled, event_poll_seconds
from cooltrack.database import SessionLocal
from cooltrack.services.outbox_processor import (
    EventTransport,
    dispatch_pending_events,
    log_transport,
    release_dispatch_lock,
    try_acquire_dispatch_lock,
)

logger = logging.getLogger(__name__)


def _dispose_engine(db: Session) -> None:
    engine = db.get_bind()
    if engine is not None and hasattr(engine, "dispose"):
        engine.dispose()


async def event_dispatch_loop(
    *,
    transport: EventTransport = log_transport,
    poll_seconds: float = 1.0,
    batch_size: int = 50,
) -> None:
    """
    Single-dispatcher loop. Only the process holding the advisory lock
    delivers; transient database failures are logged and retried on the next tick.
    """
    logger.info(
        "Event dispatcher started",
        extra={"poll_seconds": float(poll_seconds), "batch_size": int(batch_size)},
    )

    while True:
        lock_db: Session = SessionLocal()
        have_lock = False

        try:
            have_lock = try_acquire_dispatch_lock(lock_db)
            if not have_lock:
                lock_db.close()
                await asyncio.sleep(poll_seconds)
                continue

            while True:
                work_db: Session = SessionLocal()
                try:
                    dispatch_pending_events(
                        transport=transport,
                        db=work_db,
                        now=datetime.now(timezone.utc),
                        batch_size=batch_size,
                    )
                    work_db.commit()

                except asyncio.CancelledError:
                    raise

                except (OperationalError, DBAPIError):
                    work_db.rollback()
                    _dispose_engine(work_db)
                    logger.exception(
                        "Event dispatch tick failed",
                        extra={"component": "event_dispatcher", "reason": "dbapi_error"},
                    )

                except Exception:
                    work_db.rollback()
                    logger.exception(
                        "Event dispatch tick failed",
                        extra={"component": "event_dispatcher", "reason": "unexpected"},
                    )

                finally:
                    work_db.close()

                await asyncio.sleep(poll_seconds)

        except asyncio.CancelledError:
            logger.info("Event dispatcher cancelled; shutting down")
            raise

        except (OperationalError, DBAPIError):
            logger.exception(
                "Event dispatcher lock connection failed",
                extra={"component": "event_dispatcher", "reason": "lock_dbapi_error"},
            )
            _dispose_engine(lock_db)
            await asyncio.sleep(poll_seconds)

        except Exception:
            # Keep the server up; the next iteration starts over with a fresh lock session.
            logger.exception(
                "Event dispatcher crashed",
                extra={"component": "event_dispatcher", "reason": "outer_unexpected"},
            )
            await asyncio.sleep(poll_seconds)

        finally:
            if have_lock:
                try:
                    release_dispatch_lock(lock_db)
                except (OperationalError, DBAPIError):
                    logger.warning("Could not release event dispatch lock", exc_info=True)
            lock_db.close()


def start_event_dispatch_task(transport: Optional[EventTransport] = None) -> Optional[asyncio.Task]:
    if not event_dispatch_enabled():
        logger.info("Event dispatcher disabled")
        return None

    return asyncio.create_task(
        event_dispatch_loop(
            transport=transport or log_transport,
            poll_seconds=event_poll_seconds(),
            batch_size=event_batch_size(),
        )
    )
