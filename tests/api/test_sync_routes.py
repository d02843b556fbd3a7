from __future__ import annotations

import json

import pytest

from eventsync.api import health as health_api
from eventsync.api import sync as sync_api
from eventsync.core.config import AppConfig, ProviderModel
from eventsync.core.exceptions import NoConnectedTenantsError, StoreUnavailableError
from eventsync.sync.orchestrator import SyncSummary, TenantOutcome
from eventsync.sync.planner import SyncMode


def _config() -> AppConfig:
    return AppConfig(
        providers=[ProviderModel(id="calendly", name="Calendly", base_url="https://calendly.test")]
    )


class FakeOrchestrator:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[dict] = []

    async def run_sync(self, mode, tenant_id=None, *, provider, days_back=None, cancel_event=None):
        self.calls.append(
            {"mode": mode, "tenant_id": tenant_id, "provider": provider, "days_back": days_back}
        )
        if self.error:
            raise self.error
        summary = SyncSummary(provider=provider, mode=mode, total_tenants=2)
        summary.tenants_processed = 1
        summary.tenants_with_errors = 1
        summary.outcomes = [
            TenantOutcome(tenant_id="tenant-a", status="completed"),
            TenantOutcome(tenant_id="tenant-b", status="failed", error="boom"),
        ]
        return summary


@pytest.mark.asyncio
async def test_run_sync_reports_partial_failure_with_200(monkeypatch):
    orchestrator = FakeOrchestrator()
    monkeypatch.setattr(sync_api, "get_orchestrator", lambda: orchestrator)
    monkeypatch.setattr(sync_api, "load_config", _config)

    payload = sync_api.SyncRunRequest.model_validate(
        {"mode": "deep", "tenantId": "tenant-a", "daysBack": 3}
    )
    response = await sync_api.run_sync(payload)

    assert response.status_code == 200
    body = json.loads(response.body)
    assert body["success"] is True
    assert body["stats"]["tenantsProcessed"] == 1
    assert body["stats"]["tenantsWithErrors"] == 1
    assert body["stats"]["totalTenants"] == 2
    assert body["results"][1]["error"] == "boom"
    assert orchestrator.calls == [
        {"mode": SyncMode.DEEP, "tenant_id": "tenant-a", "provider": "calendly", "days_back": 3}
    ]


@pytest.mark.asyncio
async def test_run_sync_without_connected_tenants_is_404(monkeypatch):
    monkeypatch.setattr(
        sync_api, "get_orchestrator", lambda: FakeOrchestrator(NoConnectedTenantsError("calendly"))
    )
    monkeypatch.setattr(sync_api, "load_config", _config)

    response = await sync_api.run_sync(sync_api.SyncRunRequest())

    assert response.status_code == 404
    assert json.loads(response.body)["success"] is False


@pytest.mark.asyncio
async def test_run_sync_store_outage_is_500(monkeypatch):
    monkeypatch.setattr(
        sync_api,
        "get_orchestrator",
        lambda: FakeOrchestrator(StoreUnavailableError("Cannot list integrations")),
    )
    monkeypatch.setattr(sync_api, "load_config", _config)

    response = await sync_api.run_sync(sync_api.SyncRunRequest(mode="incremental"))

    assert response.status_code == 500
    assert json.loads(response.body)["error"]["code"] == "store_unavailable"


@pytest.mark.asyncio
async def test_unconfigured_provider_is_404(monkeypatch):
    orchestrator = FakeOrchestrator()
    monkeypatch.setattr(sync_api, "get_orchestrator", lambda: orchestrator)
    monkeypatch.setattr(sync_api, "load_config", _config)

    run = await sync_api.run_sync(sync_api.SyncRunRequest(provider="zoom"))
    refresh = await sync_api.refresh_statuses(sync_api.StatusRefreshRequest(provider="zoom"))

    assert run.status_code == 404
    assert json.loads(run.body)["error"]["code"] == "provider_not_found"
    assert refresh.status_code == 404
    assert orchestrator.calls == []


def test_negative_days_back_is_rejected():
    with pytest.raises(ValueError):
        sync_api.SyncRunRequest.model_validate({"daysBack": -1})


def test_health_check_route_wraps_report(monkeypatch):
    class FakeMonitor:
        def run_health_check(self, tenant_id=None, provider=None):
            return {"results": [], "summary": {"totalChecked": 0}}

    monkeypatch.setattr(health_api, "get_monitor", lambda: FakeMonitor())

    response = health_api.run_health_check(health_api.HealthCheckRequest(tenantId="tenant-a"))

    body = json.loads(response.body)
    assert body == {"success": True, "results": [], "summary": {"totalChecked": 0}}


def test_acknowledge_unknown_alert_is_404(monkeypatch, store):
    from fastapi import HTTPException

    monkeypatch.setattr(health_api, "get_store", lambda: store)

    with pytest.raises(HTTPException) as excinfo:
        health_api.acknowledge_alert(999)

    assert excinfo.value.status_code == 404
