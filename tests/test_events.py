from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from eventsync.logging import bind_tenant
from eventsync.storage.models import ActivityEvent
from eventsync.telemetry import events

EXPECTED_EVENT_COUNT = 2


def _add_event(ts: datetime, level: str = "INFO", kind: str = "test_event") -> None:
    with events.session_scope() as session:
        session.add(ActivityEvent(ts=ts, level=level, kind=kind))


def test_record_event_prunes_events_older_than_yesterday():
    threshold = datetime.now(timezone.utc)

    _add_event(threshold - timedelta(days=3))
    _add_event(threshold - timedelta(days=1))

    events.record_event("tenant_sync_failed", "ERROR", message="kept")

    with events.session_scope() as session:
        rows = session.scalars(select(ActivityEvent).order_by(ActivityEvent.ts)).all()

    assert len(rows) == EXPECTED_EVENT_COUNT
    first_ts = rows[0].ts
    if first_ts.tzinfo is None:
        first_ts = first_ts.replace(tzinfo=timezone.utc)
    assert first_ts >= events._current_retention_cutoff()


def test_list_recent_events_returns_only_retained_records():
    now = datetime.now(timezone.utc)

    _add_event(now - timedelta(days=4))
    _add_event(now - timedelta(days=2))
    _add_event(now - timedelta(hours=6))
    _add_event(now - timedelta(hours=1))

    data = events.list_recent_events(limit=10)

    assert len(data) == EXPECTED_EVENT_COUNT
    for item in data:
        timestamp = datetime.fromisoformat(item["timestamp"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        assert timestamp >= events._current_retention_cutoff()


def test_record_event_picks_up_bound_tenant_and_filters_by_it():
    with bind_tenant("tenant-a"):
        events.record_event("alert_raised", "warning", provider="calendly", meta={"alert_id": 7})
    events.record_event("alert_raised", "WARNING", tenant_id="tenant-b")

    data = events.list_recent_events(tenant_id="tenant-a")

    assert len(data) == 1
    assert data[0]["tenant_id"] == "tenant-a"
    assert data[0]["level"] == "WARNING"
    assert data[0]["meta"] == {"alert_id": 7}
