from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from cooltrack.database import SessionLocal
from cooltrack.models.event_outbox import EventOutbox
from cooltrack.services.events import OutboxEventPublisher, pending_events, queue_event
from cooltrack.services.grouped_inventory_service import GroupedInventoryService
from cooltrack.services.outbox_processor import _retry_wait, dispatch_pending_events

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _outbox_row(db, **overrides):
    row = EventOutbox(
        scope="global",
        event_type="inventory:updated",
        payload={"item_id": 1},
        processed=False,
        retry_count=0,
        next_attempt_at=T0,
        created_at=T0,
    )
    for key, value in overrides.items():
        setattr(row, key, value)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def test_events_publish_only_after_commit(publisher):
    db = SessionLocal()
    try:
        queue_event(db, publisher, "global", "inventory:updated", {"item_id": 1})
        assert publisher.events == []

        db.execute(text("SELECT 1"))
        db.commit()
        assert publisher.events == [("global", "inventory:updated", {"item_id": 1})]
    finally:
        db.close()


def test_events_dropped_on_rollback(publisher):
    db = SessionLocal()
    try:
        queue_event(db, publisher, "global", "inventory:updated", {"item_id": 1})
        db.execute(text("SELECT 1"))
        db.rollback()
        assert pending_events(db) == []

        db.execute(text("SELECT 1"))
        db.commit()
        assert publisher.events == []
    finally:
        db.close()


def test_publisher_failure_does_not_undo_the_mutation():
    class Exploding:
        def publish(self, scope, event, payload):
            raise RuntimeError("transport down")

    service = GroupedInventoryService(Exploding())
    item = service.add_stock("Insulation Foam", {"unit": "roll", "length": 4, "purchase_price": 9}, "admin-1")

    assert service.get_item(item.id).total_value == 4


def test_outbox_publisher_persists_rows():
    service = GroupedInventoryService(OutboxEventPublisher())
    item = service.add_stock("Cable 3mm", {"unit": "meter", "length": 25, "purchase_price": 2}, "admin-1")

    db = SessionLocal()
    try:
        [row] = db.query(EventOutbox).all()
        assert row.scope == f"inventory:{item.id}"
        assert row.event_type == "inventory:stock-added"
        assert row.payload["added"] == "25.000"
        assert row.processed is False
    finally:
        db.close()


def test_dispatch_delivers_in_id_order():
    db = SessionLocal()
    try:
        first = _outbox_row(db, event_type="job:created")
        second = _outbox_row(db, event_type="job:completed")

        delivered = []
        result = dispatch_pending_events(
            transport=lambda scope, event, payload: delivered.append(event),
            db=db,
            now=T0,
        )
        db.commit()

        assert result.delivered == 2
        assert result.failed == 0
        assert delivered == ["job:created", "job:completed"]
        db.refresh(first)
        db.refresh(second)
        assert first.processed is True
        assert second.processed_at is not None
    finally:
        db.rollback()
        db.close()


def test_dispatch_skips_rows_not_yet_due():
    db = SessionLocal()
    try:
        _outbox_row(db, next_attempt_at=T0 + timedelta(minutes=5))

        result = dispatch_pending_events(transport=lambda *args: None, db=db, now=T0)

        assert result.delivered == 0
        assert result.failed == 0
    finally:
        db.rollback()
        db.close()


def test_failed_delivery_backs_off_then_closes_out():
    def failing(scope, event, payload):
        raise RuntimeError("push gateway unavailable")

    db = SessionLocal()
    try:
        row = _outbox_row(db)

        r1 = dispatch_pending_events(transport=failing, db=db, now=T0, max_retries=3)
        db.commit()
        db.refresh(row)
        assert r1.failed == 1
        assert row.retry_count == 1
        assert row.processed is False
        assert "push gateway unavailable" in row.last_error

        # Not due again until the 2s backoff has passed.
        r2 = dispatch_pending_events(transport=failing, db=db, now=T0 + timedelta(seconds=1), max_retries=3)
        db.commit()
        assert r2.failed == 0

        dispatch_pending_events(transport=failing, db=db, now=T0 + timedelta(seconds=3), max_retries=3)
        db.commit()
        dispatch_pending_events(transport=failing, db=db, now=T0 + timedelta(seconds=10), max_retries=3)
        db.commit()
        db.refresh(row)
        assert row.retry_count == 3
        assert row.processed is True
    finally:
        db.rollback()
        db.close()


@pytest.mark.parametrize(
    "retry_count,seconds",
    [(0, 0), (1, 2), (2, 4), (5, 32), (6, 60), (12, 60)],
)
def test_retry_wait_is_capped_exponential(retry_count, seconds):
    assert _retry_wait(retry_count) == timedelta(seconds=seconds)
