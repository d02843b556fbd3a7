"""Health and data-quality scoring per connected integration."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from eventsync.core.clock import utcnow
from eventsync.core.config import AppConfig, load_config
from eventsync.core.exceptions import StoreUnavailableError
from eventsync.logging import bind_tenant
from eventsync.storage.store import IntegrationRecord, LocalStore
from eventsync.sync.orchestrator import SYNC_RUN_METRIC

from .alerts import AlertEvaluator
from .strategies import BookingHealthStrategy, HealthInputs, strategy_for

logger = logging.getLogger("eventsync.health")

HEALTH_SCORE_METRIC = "health_score"
DATA_QUALITY_METRIC = "data_quality"
CHECK_DURATION_METRIC = "check_duration_ms"


@dataclass
class HealthReport:
    tenant_id: str
    provider: str
    status: str
    health_score: int
    data_quality: int
    metrics: dict[str, Any] = field(default_factory=dict)
    issues: list[str] = field(default_factory=list)
    alerts_raised: int = 0
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload = {
            "tenantId": self.tenant_id,
            "provider": self.provider,
            "status": self.status,
            "healthScore": self.health_score,
            "dataQuality": self.data_quality,
            "metrics": self.metrics,
            "issues": self.issues,
            "alertsRaised": self.alerts_raised,
        }
        if self.error:
            payload["error"] = self.error
        return payload


class HealthMonitor:
    def __init__(
        self,
        store: LocalStore,
        config: AppConfig | None = None,
        *,
        alerts: AlertEvaluator | None = None,
        clock: Callable[..., Any] = utcnow,
    ) -> None:
        self._store = store
        self._config = config or load_config()
        self._alerts = alerts or AlertEvaluator(store, self._config.alerts, clock=clock)
        self._clock = clock

    def strategy(self, provider: str) -> BookingHealthStrategy:
        provider_model = self._config.get_provider(provider)
        name = provider_model.health_strategy if provider_model else "booking"
        return strategy_for(name, self._config.health)

    def run_health_check(
        self, tenant_id: str | None = None, provider: str | None = None
    ) -> dict[str, Any]:
        """Score every connected integration and return per-tenant reports plus a summary."""
        provider = provider or self._config.default_provider
        try:
            integrations = self._store.list_connected_integrations(provider, tenant_id)
        except SQLAlchemyError as exc:
            logger.exception("Cannot list integrations for health check")
            raise StoreUnavailableError(f"Cannot list integrations: {exc}") from exc

        strategy = self.strategy(provider)
        reports: list[HealthReport] = []
        for integration in integrations:
            with bind_tenant(integration.tenant_id):
                reports.append(self._check(integration, strategy))

        healthy = sum(1 for report in reports if report.status == "healthy")
        average = (
            round(sum(report.health_score for report in reports) / len(reports), 1)
            if reports
            else 0
        )
        summary = {
            "totalChecked": len(reports),
            "healthy": healthy,
            "unhealthy": len(reports) - healthy,
            "averageHealthScore": average,
        }
        logger.info(
            "Health check finished",
            extra={"event": "health_check_finished", "provider": provider, **summary},
        )
        return {"results": [report.as_dict() for report in reports], "summary": summary}

    def _check(self, integration: IntegrationRecord, strategy: BookingHealthStrategy) -> HealthReport:
        started = time.perf_counter()
        now = self._clock()
        tenant_id = integration.tenant_id
        provider = integration.provider

        try:
            runs = self._store.list_recent_metrics(
                tenant_id,
                strategy.history_start(now),
                provider=provider,
                metric_types=[SYNC_RUN_METRIC],
            )
            stale = self._store.list_stale_active_events(
                tenant_id, now - timedelta(hours=self._config.health.staleness_hours),
                provider=provider,
            )
            assessment = strategy.evaluate(
                HealthInputs(
                    now=now,
                    sync_runs=runs,
                    stale_active_events=len(stale),
                    last_sync=integration.last_sync,
                )
            )
        except SQLAlchemyError as exc:
            logger.exception("Health check failed", extra={"event": "health_check_failed"})
            return HealthReport(
                tenant_id=tenant_id,
                provider=provider,
                status="unhealthy",
                health_score=0,
                data_quality=0,
                error=str(exc),
            )

        duration_ms = int((time.perf_counter() - started) * 1000)
        status = (
            "healthy"
            if assessment.health_score >= self._config.health.unhealthy_below
            else "unhealthy"
        )
        report = HealthReport(
            tenant_id=tenant_id,
            provider=provider,
            status=status,
            health_score=assessment.health_score,
            data_quality=assessment.data_quality,
            metrics=assessment.metrics,
            issues=assessment.issues,
        )

        try:
            self._store.record_metric(
                tenant_id, provider, HEALTH_SCORE_METRIC, assessment.health_score,
                {"issues": assessment.issues, "strategy": strategy.name},
            )
            self._store.record_metric(
                tenant_id, provider, DATA_QUALITY_METRIC, assessment.data_quality,
                {"stale_active_events": assessment.metrics.get("staleActiveEvents")},
            )
            self._store.record_metric(tenant_id, provider, CHECK_DURATION_METRIC, duration_ms)
            raised = self._alerts.evaluate(
                tenant_id,
                provider,
                {
                    HEALTH_SCORE_METRIC: assessment.health_score,
                    DATA_QUALITY_METRIC: assessment.data_quality,
                },
            )
            report.alerts_raised = len(raised)
            self._store.update_health(
                tenant_id,
                provider,
                health_score=assessment.health_score,
                data_quality_score=assessment.data_quality,
                checked_at=now,
            )
        except SQLAlchemyError:
            logger.exception("Failed to persist health results", extra={"event": "health_persist_failed"})

        logger.info(
            "Integration health scored",
            extra={
                "event": "health_scored",
                "status": status,
                "health_score": assessment.health_score,
                "data_quality": assessment.data_quality,
                "duration_ms": duration_ms,
            },
        )
        return report


__all__ = ["HealthMonitor", "HealthReport"]
