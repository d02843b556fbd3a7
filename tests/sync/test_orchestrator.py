from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from eventsync.core.config import AppConfig, ProviderModel, RateLimitSettings
from eventsync.core.exceptions import (
    NoConnectedTenantsError,
    RateLimitedError,
    RemoteUnavailableError,
    StoreUnavailableError,
)
from eventsync.providers.base import RemoteClient, RemoteEvent, RemoteEventDetail
from eventsync.providers.registry import ClientRegistry
from eventsync.storage.store import LocalStore
from eventsync.sync.orchestrator import SYNC_RUN_METRIC, SyncOrchestrator
from eventsync.sync.planner import SyncMode
from eventsync.sync.ratelimit import RateLimitCoordinator
from eventsync.telemetry.events import list_recent_events

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)
PROVIDER = ProviderModel(id="calendly", name="Calendly", base_url="https://calendly.test")


class ScriptedClient(RemoteClient):
    provider_id = "calendly"

    def __init__(self, failing: set[str] | None = None) -> None:
        super().__init__(PROVIDER)
        self.failing = failing or set()
        self.windows: dict[str, tuple[datetime, datetime]] = {}
        self.order: list[str] = []

    async def list_events(self, tenant_id, window_start, window_end):
        self.order.append(tenant_id)
        self.windows[tenant_id] = (window_start, window_end)
        if tenant_id in self.failing:
            raise RemoteUnavailableError("calendly", message="Provider error (HTTP 503)", status_code=503)
        return [
            RemoteEvent(
                event_id=f"{tenant_id}-e1",
                event_type_id="T1",
                start_time=NOW + timedelta(days=1),
                created_at=NOW - timedelta(hours=1),
            )
        ]

    async def get_event_detail(self, tenant_id, event_id):
        return RemoteEventDetail(invitee_name="Ada", invitee_email="ada@example.com")

    async def get_event(self, tenant_id, event_id):
        return None


def _orchestrator(store: LocalStore, client: RemoteClient) -> SyncOrchestrator:
    coordinator = RateLimitCoordinator(
        RateLimitSettings(tenant_spacing_seconds=0, request_spacing_seconds=0)
    )
    registry = ClientRegistry(AppConfig(providers=[PROVIDER]), coordinator)
    registry.register("calendly", client)
    return SyncOrchestrator(store, registry, coordinator, clock=lambda: NOW)


def _connect(store: LocalStore, *tenants: str) -> None:
    for tenant in tenants:
        store.connect_integration(tenant, "calendly")
        store.set_tracked_event_types(tenant, {"T1": "Discovery call"})


def _recent_runs(store: LocalStore, tenant: str):
    since = datetime.now(timezone.utc) - timedelta(minutes=5)
    return store.list_recent_metrics(tenant, since, metric_types=[SYNC_RUN_METRIC])


@pytest.mark.asyncio
async def test_one_failing_tenant_does_not_abort_the_batch(store):
    _connect(store, "tenant-a", "tenant-b")
    client = ScriptedClient(failing={"tenant-a"})

    summary = await _orchestrator(store, client).run_sync(SyncMode.INCREMENTAL)

    assert summary.stats()["tenantsProcessed"] == 1
    assert summary.stats()["tenantsWithErrors"] == 1
    assert summary.stats()["totalTenants"] == 2
    assert client.order == ["tenant-a", "tenant-b"]

    assert store.get_integration("tenant-a", "calendly").last_sync is None
    assert store.get_integration("tenant-b", "calendly").last_sync == NOW
    assert store.get_event("tenant-b", "tenant-b-e1") is not None

    failed_run = _recent_runs(store, "tenant-a")[0]
    assert failed_run.value == 0
    assert failed_run.metadata["status"] == "failed"
    assert "503" in failed_run.metadata["error"]
    ok_run = _recent_runs(store, "tenant-b")[0]
    assert ok_run.value == 1
    assert ok_run.metadata["events_synced"] == 1

    kinds = [event["kind"] for event in list_recent_events(tenant_id="tenant-a")]
    assert "tenant_sync_failed" in kinds


@pytest.mark.asyncio
async def test_tenant_without_tracked_types_is_counted_as_error(store):
    _connect(store, "tenant-a")
    store.connect_integration("tenant-b", "calendly")

    summary = await _orchestrator(store, ScriptedClient()).run_sync(SyncMode.DEFAULT, days_back=7)

    assert summary.tenants_processed == 1
    assert summary.tenants_with_errors == 1
    failed = next(o for o in summary.outcomes if o.tenant_id == "tenant-b")
    assert failed.error == "No tracked event types configured"


@pytest.mark.asyncio
async def test_incremental_run_overlaps_previous_cursor(store):
    _connect(store, "tenant-a")
    last_sync = NOW - timedelta(hours=6)
    store.update_last_sync("tenant-a", "calendly", last_sync)
    client = ScriptedClient()

    summary = await _orchestrator(store, client).run_sync(SyncMode.INCREMENTAL, "tenant-a")

    start, end = client.windows["tenant-a"]
    assert start == last_sync - timedelta(hours=1)
    assert end == NOW
    assert summary.outcomes[0].mode == "incremental"


@pytest.mark.asyncio
async def test_cancellation_is_honoured_between_tenants(store):
    _connect(store, "tenant-a", "tenant-b")
    cancel = asyncio.Event()
    cancel.set()
    client = ScriptedClient()

    summary = await _orchestrator(store, client).run_sync(SyncMode.INCREMENTAL, cancel_event=cancel)

    assert summary.cancelled is True
    assert summary.tenants_processed == 0
    assert client.order == []


@pytest.mark.asyncio
async def test_no_connected_tenants_raises(store):
    store.connect_integration("tenant-a", "calendly")
    store.disconnect_integration("tenant-a", "calendly")

    with pytest.raises(NoConnectedTenantsError):
        await _orchestrator(store, ScriptedClient()).run_sync(SyncMode.INCREMENTAL)


@pytest.mark.asyncio
async def test_unreachable_store_is_orchestrator_fatal(session_scope):
    class BrokenStore(LocalStore):
        def list_connected_integrations(self, provider, tenant_id=None):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    with pytest.raises(StoreUnavailableError):
        await _orchestrator(BrokenStore(session_scope), ScriptedClient()).run_sync(SyncMode.DEEP)


@pytest.mark.asyncio
async def test_refresh_statuses_reports_per_tenant(store):
    _connect(store, "tenant-a")
    client = ScriptedClient()
    orchestrator = _orchestrator(store, client)
    await orchestrator.run_sync(SyncMode.DEFAULT, days_back=3)

    stats = await orchestrator.refresh_statuses()

    assert stats["totalTenants"] == 1
    assert stats["tenantsProcessed"] == 1
    assert stats["results"][0]["events_checked"] == 0


@pytest.mark.asyncio
async def test_unstored_events_fail_the_tenant_and_keep_the_cursor(session_scope):
    class ReadOnlyStore(LocalStore):
        def upsert_event(self, event):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    store = ReadOnlyStore(session_scope)
    _connect(store, "tenant-a")
    last_sync = NOW - timedelta(hours=6)
    store.update_last_sync("tenant-a", "calendly", last_sync)

    summary = await _orchestrator(store, ScriptedClient()).run_sync(SyncMode.INCREMENTAL)

    assert summary.tenants_with_errors == 1
    assert summary.tenants_processed == 0
    assert store.get_integration("tenant-a", "calendly").last_sync == last_sync
    run = _recent_runs(store, "tenant-a")[0]
    assert run.value == 0
    assert run.metadata["events_failed"] == 1


@pytest.mark.asyncio
async def test_throttled_enrichment_completes_and_flags_rate_limit(store):
    class ThrottledClient(ScriptedClient):
        async def get_event_detail(self, tenant_id, event_id):
            raise RateLimitedError("calendly", status_code=429)

    _connect(store, "tenant-a")

    summary = await _orchestrator(store, ThrottledClient()).run_sync(SyncMode.DEFAULT, days_back=3)

    assert summary.tenants_processed == 1
    stored = store.get_event("tenant-a", "tenant-a-e1")
    assert stored is not None
    assert stored.invitee_email is None
    run = _recent_runs(store, "tenant-a")[0]
    assert run.value == 1
    assert run.metadata["rate_limit_hit"] is True
    kinds = [event["kind"] for event in list_recent_events(tenant_id="tenant-a")]
    assert "rate_limit_hit" in kinds
