"""Threshold checks that turn low scores into alert records."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable, Mapping

from eventsync.core.clock import utcnow
from eventsync.core.config import AlertSettings
from eventsync.storage.store import AlertRecord, LocalStore
from eventsync.telemetry.events import record_event

logger = logging.getLogger("eventsync.alerts")


class AlertEvaluator:
    """Compares metric values against ``(metric, min_value)`` thresholds.

    An alert already raised for the same tenant, provider, metric and severity
    within the cooldown is not raised again, so re-evaluating an unchanged
    score is harmless.
    """

    def __init__(
        self,
        store: LocalStore,
        settings: AlertSettings | None = None,
        *,
        clock: Callable[..., Any] = utcnow,
    ) -> None:
        self._store = store
        self._settings = settings or AlertSettings()
        self._clock = clock

    def evaluate(
        self, tenant_id: str, provider: str, values: Mapping[str, float]
    ) -> list[AlertRecord]:
        raised: list[AlertRecord] = []
        since = self._clock() - timedelta(minutes=self._settings.cooldown_minutes)

        for threshold in self._settings.thresholds:
            value = values.get(threshold.metric)
            if value is None or value >= threshold.min_value:
                continue
            if self._store.has_recent_alert(
                tenant_id, provider, threshold.metric, threshold.severity, since
            ):
                logger.debug(
                    "Alert suppressed by cooldown",
                    extra={"metric": threshold.metric, "severity": threshold.severity},
                )
                continue

            alert = self._store.create_alert(
                tenant_id,
                provider,
                metric_type=threshold.metric,
                metric_value=value,
                threshold=threshold.min_value,
                severity=threshold.severity,
                title=f"{threshold.metric} {value:g} below {threshold.min_value:g}",
            )
            raised.append(alert)
            logger.warning(
                "Alert raised",
                extra={
                    "event": "alert_raised",
                    "alert_id": alert.id,
                    "metric": threshold.metric,
                    "metric_value": value,
                    "threshold": threshold.min_value,
                    "severity": threshold.severity,
                },
            )
            record_event(
                "alert_raised",
                "WARNING",
                tenant_id=tenant_id,
                provider=provider,
                message=alert.title,
                meta={"alert_id": alert.id, "severity": alert.severity},
            )
        return raised


__all__ = ["AlertEvaluator"]
