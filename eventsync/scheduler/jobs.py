"""Background jobs: daily incremental sync, health checks and status refresh."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from eventsync.core.clock import utcnow
from eventsync.core.config import ScheduleSettings
from eventsync.core.exceptions import NoConnectedTenantsError, StoreUnavailableError
from eventsync.health.monitor import HealthMonitor
from eventsync.storage.store import IntegrationRecord
from eventsync.sync.orchestrator import SyncOrchestrator, SyncSummary
from eventsync.sync.planner import SyncMode
from eventsync.telemetry.events import record_event

logger = logging.getLogger("eventsync.scheduler")


class SyncScheduler:
    """Owns the APScheduler instance and the cancellation flag for batch runs."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        monitor: HealthMonitor,
        settings: ScheduleSettings | None = None,
        *,
        provider: str = "calendly",
        clock: Callable[..., Any] = utcnow,
    ) -> None:
        self._orchestrator = orchestrator
        self._monitor = monitor
        self._settings = settings or ScheduleSettings()
        self._provider = provider
        self._clock = clock
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._cancel_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel_event

    def start(self) -> None:
        if not self._settings.enabled:
            logger.info("Scheduler disabled by configuration")
            return
        if self._scheduler.running:
            return

        self._cancel_event.clear()
        jobs = (
            ("incremental_sync", "Daily incremental sync", self._settings.sync_cron, self.run_scheduled_sync),
            ("health_check", "Integration health check", self._settings.health_cron, self.run_health_check),
            ("status_refresh", "Past event status refresh", self._settings.status_refresh_cron, self.run_status_refresh),
        )
        for job_id, name, cron, func in jobs:
            self._scheduler.add_job(
                func,
                trigger=CronTrigger.from_crontab(cron, timezone="UTC"),
                id=job_id,
                name=name,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
        self._scheduler.start()
        logger.info(
            "Scheduler started",
            extra={"event": "scheduler_started", "jobs": [job[0] for job in jobs]},
        )

    def shutdown(self) -> None:
        # In-flight batches stop at the next tenant boundary.
        self._cancel_event.set()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped", extra={"event": "scheduler_stopped"})

    def choose_days_back(self, integration: IntegrationRecord, now: datetime) -> int:
        """Short look-back for tenants whose own last sync is recent; long otherwise."""
        last_sync = integration.last_sync
        if last_sync is not None and now - last_sync < timedelta(hours=self._settings.recent_run_hours):
            return self._settings.recent_days_back
        return self._settings.stale_days_back

    async def run_scheduled_sync(self) -> SyncSummary | None:
        now = self._clock()
        logger.info("Scheduled sync starting", extra={"event": "scheduled_sync_started"})
        try:
            summary = await self._orchestrator.run_sync(
                SyncMode.INCREMENTAL,
                provider=self._provider,
                days_back=lambda integration: self.choose_days_back(integration, now),
                cancel_event=self._cancel_event,
            )
        except NoConnectedTenantsError:
            logger.info("Scheduled sync skipped: no connected tenants")
            return None
        except StoreUnavailableError as exc:
            logger.error(
                "Scheduled sync aborted",
                extra={"event": "scheduled_sync_aborted", "error_message": exc.message},
            )
            record_event("scheduled_sync_aborted", "ERROR", provider=self._provider, message=exc.message)
            return None

        record_event(
            "scheduled_sync_finished",
            "INFO" if summary.tenants_with_errors == 0 else "WARNING",
            provider=self._provider,
            message="Scheduled sync finished",
            meta=summary.stats(),
        )
        return summary

    async def run_health_check(self) -> dict[str, Any] | None:
        try:
            return self._monitor.run_health_check(None, self._provider)
        except StoreUnavailableError as exc:
            logger.error(
                "Scheduled health check aborted",
                extra={"event": "scheduled_health_aborted", "error_message": exc.message},
            )
            return None

    async def run_status_refresh(self) -> dict[str, Any] | None:
        try:
            return await self._orchestrator.refresh_statuses(
                provider=self._provider, cancel_event=self._cancel_event
            )
        except NoConnectedTenantsError:
            logger.info("Status refresh skipped: no connected tenants")
        except StoreUnavailableError as exc:
            logger.error(
                "Status refresh aborted",
                extra={"event": "status_refresh_aborted", "error_message": exc.message},
            )
        return None


__all__ = ["SyncScheduler"]
