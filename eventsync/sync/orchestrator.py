"""Drives one sync pass across every connected tenant of a provider."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from eventsync.core.clock import utcnow
from eventsync.core.config import SyncSettings
from eventsync.core.exceptions import (
    NoConnectedTenantsError,
    RemoteUnavailableError,
    StoreUnavailableError,
    TenantConfigurationError,
)
from eventsync.logging import bind_tenant
from eventsync.providers.registry import ClientRegistry
from eventsync.storage.store import IntegrationRecord, LocalStore
from eventsync.telemetry.events import record_event

from .planner import SyncMode, SyncWindow, plan_window
from .ratelimit import RateLimitCoordinator
from .reconciler import GapReconciler, ReconcileResult

logger = logging.getLogger("eventsync.sync")

# A fixed look-back, or one chosen per integration.
DaysBack = Union[int, None, Callable[[IntegrationRecord], Optional[int]]]

SYNC_RUN_METRIC = "sync_run"
STATUS_REFRESH_METRIC = "status_refresh"


@dataclass
class TenantOutcome:
    tenant_id: str
    status: str
    mode: str | None = None
    window_start: str | None = None
    window_end: str | None = None
    duration_ms: int = 0
    counts: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "tenantId": self.tenant_id,
            "status": self.status,
            "mode": self.mode,
            "windowStart": self.window_start,
            "windowEnd": self.window_end,
            "durationMs": self.duration_ms,
            "counts": self.counts,
            "error": self.error,
        }


@dataclass
class SyncSummary:
    provider: str
    mode: SyncMode
    total_tenants: int
    tenants_processed: int = 0
    tenants_with_errors: int = 0
    cancelled: bool = False
    outcomes: list[TenantOutcome] = field(default_factory=list)

    def stats(self) -> dict[str, Any]:
        return {
            "tenantsProcessed": self.tenants_processed,
            "tenantsWithErrors": self.tenants_with_errors,
            "totalTenants": self.total_tenants,
            "syncMode": self.mode.value,
            "cancelled": self.cancelled,
        }


class SyncOrchestrator:
    """Runs planner and reconciler for each tenant in turn, isolating failures."""

    def __init__(
        self,
        store: LocalStore,
        clients: ClientRegistry,
        coordinator: RateLimitCoordinator,
        settings: SyncSettings | None = None,
        *,
        clock: Callable[..., Any] = utcnow,
    ) -> None:
        self._store = store
        self._clients = clients
        self._coordinator = coordinator
        self._settings = settings or SyncSettings()
        self._clock = clock

    def _connected(self, provider: str, tenant_id: str | None) -> list[IntegrationRecord]:
        try:
            integrations = self._store.list_connected_integrations(provider, tenant_id)
        except SQLAlchemyError as exc:
            logger.exception("Cannot list integrations", extra={"provider": provider})
            raise StoreUnavailableError(f"Cannot list integrations: {exc}") from exc
        if not integrations:
            raise NoConnectedTenantsError(provider, tenant_id)
        return integrations

    async def run_sync(
        self,
        mode: SyncMode = SyncMode.INCREMENTAL,
        tenant_id: str | None = None,
        *,
        provider: str = "calendly",
        days_back: DaysBack = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SyncSummary:
        """Sync every connected tenant of ``provider`` sequentially.

        A tenant's failure is recorded and counted but never stops the batch.
        ``days_back`` may be a callable taking the integration, for look-backs
        that depend on each tenant's own cursor. ``cancel_event`` is honoured
        between tenants only.
        """
        integrations = self._connected(provider, tenant_id)
        client = self._clients.get_client(provider)
        reconciler = GapReconciler(self._store, client)
        summary = SyncSummary(provider=provider, mode=mode, total_tenants=len(integrations))

        logger.info(
            "Sync batch started",
            extra={
                "event": "sync_batch_started",
                "provider": provider,
                "mode": mode.value,
                "total_tenants": summary.total_tenants,
            },
        )

        for integration in integrations:
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                logger.warning(
                    "Sync batch cancelled",
                    extra={"event": "sync_batch_cancelled", "remaining": summary.total_tenants - len(summary.outcomes)},
                )
                break

            with bind_tenant(integration.tenant_id):
                outcome = await self._sync_tenant(
                    integration, reconciler, mode=mode, days_back=days_back
                )
            summary.outcomes.append(outcome)
            if outcome.status == "completed":
                summary.tenants_processed += 1
            else:
                summary.tenants_with_errors += 1

        logger.info(
            "Sync batch finished",
            extra={"event": "sync_batch_finished", "provider": provider, **summary.stats()},
        )
        return summary

    async def _sync_tenant(
        self,
        integration: IntegrationRecord,
        reconciler: GapReconciler,
        *,
        mode: SyncMode,
        days_back: DaysBack,
    ) -> TenantOutcome:
        tenant_id = integration.tenant_id
        provider = integration.provider
        started = time.perf_counter()
        window: SyncWindow | None = None
        result: ReconcileResult | None = None

        try:
            await self._coordinator.acquire(tenant_id)
            run_started_at = self._clock()
            lookback = days_back(integration) if callable(days_back) else days_back
            window = plan_window(
                integration.last_sync, run_started_at, mode, lookback, self._settings
            )
            result = await reconciler.reconcile(tenant_id, window)
            if result.events_failed:
                raise RuntimeError(f"{result.events_failed} event(s) could not be stored")
            self._store.update_last_sync(tenant_id, provider, run_started_at)
        except Exception as exc:
            duration_ms = int((time.perf_counter() - started) * 1000)
            error_text = getattr(exc, "message", None) or str(exc) or type(exc).__name__
            self._log_failure(tenant_id, provider, exc, error_text)
            outcome = TenantOutcome(
                tenant_id=tenant_id,
                status="failed",
                mode=window.mode.value if window else mode.value,
                window_start=window.start.isoformat() if window else None,
                window_end=window.end.isoformat() if window else None,
                duration_ms=duration_ms,
                counts=result.as_dict() if result else {},
                error=error_text,
            )
            self._record_run(provider, outcome, success=False)
            return outcome

        duration_ms = int((time.perf_counter() - started) * 1000)
        outcome = TenantOutcome(
            tenant_id=tenant_id,
            status="completed",
            mode=window.mode.value,
            window_start=window.start.isoformat(),
            window_end=window.end.isoformat(),
            duration_ms=duration_ms,
            counts=result.as_dict(),
        )
        if result.rate_limit_hit:
            record_event(
                "rate_limit_hit",
                "WARNING",
                tenant_id=tenant_id,
                provider=provider,
                message="Enrichment throttled; fallback invitee data used",
                meta=result.as_dict(),
            )
        logger.info(
            "Tenant synced",
            extra={"event": "tenant_synced", "duration_ms": duration_ms, **result.as_dict()},
        )
        self._record_run(provider, outcome, success=True)
        return outcome

    def _log_failure(self, tenant_id: str, provider: str, exc: Exception, error_text: str) -> None:
        if isinstance(exc, (RemoteUnavailableError, TenantConfigurationError)):
            logger.warning(
                "Tenant sync failed",
                extra={
                    "event": "tenant_sync_failed",
                    "error_type": type(exc).__name__,
                    "error_message": error_text,
                },
            )
        else:
            logger.exception(
                "Tenant sync failed unexpectedly",
                extra={"event": "tenant_sync_failed", "error_type": type(exc).__name__},
            )
        record_event(
            "tenant_sync_failed",
            "ERROR",
            tenant_id=tenant_id,
            provider=provider,
            message=error_text,
            meta={"error_type": type(exc).__name__},
        )

    def _record_run(self, provider: str, outcome: TenantOutcome, *, success: bool) -> None:
        metadata = {
            "status": outcome.status,
            "mode": outcome.mode,
            "window_start": outcome.window_start,
            "window_end": outcome.window_end,
            "duration_ms": outcome.duration_ms,
            "error": outcome.error,
            **outcome.counts,
        }
        try:
            self._store.record_metric(
                outcome.tenant_id, provider, SYNC_RUN_METRIC, 1.0 if success else 0.0, metadata
            )
        except SQLAlchemyError:
            logger.exception(
                "Failed to record sync run metric", extra={"tenant_id": outcome.tenant_id}
            )

    async def refresh_statuses(
        self,
        tenant_id: str | None = None,
        *,
        provider: str = "calendly",
        cancel_event: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        """Re-check recently past events still marked active, tenant by tenant."""
        integrations = self._connected(provider, tenant_id)
        client = self._clients.get_client(provider)
        reconciler = GapReconciler(self._store, client)
        results: list[dict[str, Any]] = []
        errors = 0

        for integration in integrations:
            if cancel_event is not None and cancel_event.is_set():
                break
            with bind_tenant(integration.tenant_id):
                try:
                    await self._coordinator.acquire(integration.tenant_id)
                    refreshed = await reconciler.refresh_statuses(
                        integration.tenant_id, self._clock(), self._settings.status_refresh_days
                    )
                except Exception as exc:
                    errors += 1
                    error_text = getattr(exc, "message", None) or str(exc)
                    self._log_failure(integration.tenant_id, provider, exc, error_text)
                    results.append(
                        {"tenantId": integration.tenant_id, "status": "failed", "error": error_text}
                    )
                    continue

                try:
                    self._store.record_metric(
                        integration.tenant_id,
                        provider,
                        STATUS_REFRESH_METRIC,
                        float(refreshed.events_updated),
                        refreshed.as_dict(),
                    )
                except SQLAlchemyError:
                    logger.exception("Failed to record status refresh metric")
                results.append(
                    {
                        "tenantId": integration.tenant_id,
                        "status": "completed",
                        **refreshed.as_dict(),
                    }
                )

        return {
            "tenantsProcessed": len(results) - errors,
            "tenantsWithErrors": errors,
            "totalTenants": len(integrations),
            "results": results,
        }


__all__ = ["SYNC_RUN_METRIC", "SyncOrchestrator", "SyncSummary", "TenantOutcome"]
