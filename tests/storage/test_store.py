from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from eventsync.providers.base import EventStatus
from eventsync.storage.models import CalendarEvent
from eventsync.storage.store import EventRecord

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


def _record(event_id: str = "E1", **overrides) -> EventRecord:
    values = {
        "tenant_id": "tenant-a",
        "provider": "calendly",
        "provider_event_id": event_id,
        "event_type_id": "T1",
        "event_type_name": "Discovery call",
        "scheduled_at": NOW + timedelta(days=1),
        "created_at": NOW - timedelta(hours=2),
        "status": EventStatus.ACTIVE,
        "invitee_name": "Ada",
        "invitee_email": "ada@example.com",
    }
    values.update(overrides)
    return EventRecord(**values)


def _row_count(session_scope) -> int:
    with session_scope() as session:
        return session.scalar(select(func.count(CalendarEvent.id)))


def test_upsert_event_is_idempotent(store, session_scope):
    store.upsert_event(_record())
    store.upsert_event(_record())

    assert _row_count(session_scope) == 1


def test_upsert_keeps_known_invitee_when_new_value_missing(store):
    store.upsert_event(_record())
    store.upsert_event(_record(invitee_name=None, invitee_email=None, status=EventStatus.CANCELLED))

    stored = store.get_event("tenant-a", "E1")
    assert stored is not None
    assert stored.status is EventStatus.CANCELLED
    assert stored.invitee_name == "Ada"
    assert stored.invitee_email == "ada@example.com"


def test_cancellation_stamps_cancelled_at_once(store, session_scope):
    store.upsert_event(_record(status=EventStatus.CANCELLED))
    with session_scope() as session:
        first = session.scalar(select(CalendarEvent.cancelled_at))

    store.upsert_event(_record(status=EventStatus.CANCELLED))
    with session_scope() as session:
        second = session.scalar(select(CalendarEvent.cancelled_at))

    assert first is not None
    assert second == first


def test_list_local_events_matches_created_or_scheduled_in_window(store):
    store.upsert_event(_record("created-in-window", scheduled_at=NOW + timedelta(days=30)))
    store.upsert_event(
        _record(
            "scheduled-in-window",
            created_at=NOW - timedelta(days=20),
            scheduled_at=NOW - timedelta(hours=1),
        )
    )
    store.upsert_event(
        _record(
            "outside",
            created_at=NOW - timedelta(days=20),
            scheduled_at=NOW - timedelta(days=19),
        )
    )

    local = store.list_local_events("tenant-a", NOW - timedelta(days=1), NOW)

    assert set(local) == {"created-in-window", "scheduled-in-window"}
    assert store.list_local_event_ids("tenant-b", NOW - timedelta(days=1), NOW) == set()


def test_update_last_sync_never_rewinds(store):
    store.connect_integration("tenant-a", "calendly")

    assert store.update_last_sync("tenant-a", "calendly", NOW) is True
    assert store.update_last_sync("tenant-a", "calendly", NOW - timedelta(hours=3)) is False

    integration = store.get_integration("tenant-a", "calendly")
    assert integration is not None
    assert integration.last_sync == NOW


def test_connected_integrations_in_registration_order(store):
    for tenant in ("tenant-b", "tenant-a", "tenant-c"):
        store.connect_integration(tenant, "calendly")
    store.disconnect_integration("tenant-c", "calendly")

    tenants = [i.tenant_id for i in store.list_connected_integrations("calendly")]

    assert tenants == ["tenant-b", "tenant-a"]
    assert [i.tenant_id for i in store.list_connected_integrations("calendly", "tenant-a")] == [
        "tenant-a"
    ]


def test_tracked_event_types_replacement_deactivates_missing(store):
    store.set_tracked_event_types("tenant-a", {"T1": "Intro", "T2": "Demo"})
    store.set_tracked_event_types("tenant-a", {"T2": "Demo call"})

    assert store.get_tracked_event_types("tenant-a") == {"T2": "Demo call"}


def test_stale_active_events_and_status_update(store):
    store.upsert_event(_record("past", scheduled_at=NOW - timedelta(days=2)))
    store.upsert_event(_record("future", scheduled_at=NOW + timedelta(days=2)))

    stale = store.list_stale_active_events("tenant-a", NOW)
    assert [event.provider_event_id for event in stale] == ["past"]

    assert store.update_event_status("tenant-a", "past", EventStatus.COMPLETED) is True
    assert store.list_stale_active_events("tenant-a", NOW) == []


def test_stale_active_events_filter_by_provider(store):
    store.upsert_event(_record("cal", scheduled_at=NOW - timedelta(days=2)))
    store.upsert_event(
        _record("other", provider="zoom", scheduled_at=NOW - timedelta(days=2))
    )

    stale = store.list_stale_active_events("tenant-a", NOW, provider="calendly")

    assert [event.provider_event_id for event in stale] == ["cal"]
    assert len(store.list_stale_active_events("tenant-a", NOW)) == 2


def test_tenants_tracking_an_event_type(store):
    for tenant in ("tenant-a", "tenant-b", "tenant-c"):
        store.connect_integration(tenant, "calendly")
    store.set_tracked_event_types("tenant-a", {"T1": "Intro"})
    store.set_tracked_event_types("tenant-b", {"T2": "Demo"})
    store.set_tracked_event_types("tenant-c", {"T1": "Discovery"})
    store.disconnect_integration("tenant-c", "calendly")

    assert store.list_tenants_tracking("calendly", "T1") == {"tenant-a": "Intro"}
    assert store.list_tenants_tracking("zoom", "T1") == {}


def test_metrics_are_returned_newest_first_with_metadata(store):
    store.record_metric("tenant-a", "calendly", "sync_run", 1, {"status": "completed"})
    store.record_metric("tenant-a", "calendly", "health_score", 80)
    store.record_metric("tenant-b", "calendly", "sync_run", 0)

    metrics = store.list_recent_metrics(
        "tenant-a", datetime.now(timezone.utc) - timedelta(minutes=5)
    )

    assert [m.metric_type for m in metrics] == ["health_score", "sync_run"]
    assert metrics[1].metadata == {"status": "completed"}

    runs = store.list_recent_metrics(
        "tenant-a", datetime.now(timezone.utc) - timedelta(minutes=5), metric_types=["sync_run"]
    )
    assert [m.value for m in runs] == [1.0]


def test_alert_acknowledgement(store):
    alert = store.create_alert(
        "tenant-a",
        "calendly",
        metric_type="health_score",
        metric_value=30,
        threshold=40,
        severity="critical",
        title="health_score 30 below 40",
    )

    assert [a.id for a in store.list_alerts("tenant-a")] == [alert.id]
    assert store.acknowledge_alert(alert.id) is True
    assert store.acknowledge_alert(alert.id) is False
    assert store.list_alerts("tenant-a") == []
    assert store.list_alerts("tenant-a", status="acknowledged")[0].acknowledged_at is not None
