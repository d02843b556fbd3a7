"""Gap detection and idempotent merge of remote events into the local store."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from eventsync.core.exceptions import (
    RateLimitedError,
    RemoteUnavailableError,
    TenantConfigurationError,
)
from eventsync.providers.base import EventStatus, RemoteClient, RemoteEvent, RemoteEventDetail
from eventsync.storage.store import EventRecord, LocalStore

from .planner import SyncWindow

logger = logging.getLogger("eventsync.reconciler")


@dataclass
class ReconcileResult:
    remote_events: int = 0
    untracked_skipped: int = 0
    gaps_found: int = 0
    events_synced: int = 0
    events_failed: int = 0
    status_updates: int = 0
    enrichment_failures: int = 0
    rate_limit_hit: bool = False

    def as_dict(self) -> dict[str, int | bool]:
        return asdict(self)


@dataclass
class StatusRefreshResult:
    events_checked: int = 0
    events_updated: int = 0
    errors: int = 0
    rate_limit_hit: bool = False

    def as_dict(self) -> dict[str, int | bool]:
        return asdict(self)


class GapReconciler:
    """Diffs one tenant's remote events against the local store and fills gaps."""

    def __init__(self, store: LocalStore, client: RemoteClient) -> None:
        self._store = store
        self._client = client
        self._detail_cache: dict[tuple[str, str], RemoteEventDetail] = {}

    @property
    def provider_id(self) -> str:
        return self._client.provider_id

    async def reconcile(self, tenant_id: str, window: SyncWindow) -> ReconcileResult:
        result = ReconcileResult()

        tracked = self._store.get_tracked_event_types(tenant_id)
        if not tracked:
            raise TenantConfigurationError(tenant_id, "No tracked event types configured")

        fetched = await self._client.list_events(tenant_id, window.start, window.end)
        remote: dict[str, RemoteEvent] = {}
        for event in fetched:
            remote.setdefault(event.event_id, event)
        result.remote_events = len(remote)

        relevant = [event for event in remote.values() if event.event_type_id in tracked]
        result.untracked_skipped = result.remote_events - len(relevant)

        local = self._store.list_local_events(tenant_id, window.start, window.end)
        gaps = [event for event in relevant if event.event_id not in local]
        changed = [
            event
            for event in relevant
            if event.event_id in local and local[event.event_id].status is not event.status
        ]
        result.gaps_found = len(gaps)

        logger.info(
            "Gap detection finished",
            extra={
                "event": "gaps_detected",
                "tenant_id": tenant_id,
                "remote_events": result.remote_events,
                "untracked_skipped": result.untracked_skipped,
                "local_events": len(local),
                "gaps_found": result.gaps_found,
                "status_changes": len(changed),
            },
        )

        for event in gaps:
            detail = await self._enrich(tenant_id, event, result)
            if self._write(tenant_id, event, tracked.get(event.event_type_id), detail):
                result.events_synced += 1
            else:
                result.events_failed += 1

        for event in changed:
            if self._write(tenant_id, event, tracked.get(event.event_type_id), RemoteEventDetail()):
                result.status_updates += 1
            else:
                result.events_failed += 1

        return result

    async def refresh_statuses(
        self, tenant_id: str, now: datetime, days: int
    ) -> StatusRefreshResult:
        """Re-check past events still marked active against the provider."""
        result = StatusRefreshResult()
        candidates = self._store.list_stale_active_events(
            tenant_id,
            scheduled_before=now,
            scheduled_after=now - timedelta(days=days),
            provider=self.provider_id,
        )

        for stored in candidates:
            result.events_checked += 1
            try:
                remote = await self._client.get_event(tenant_id, stored.provider_event_id)
            except RateLimitedError:
                result.rate_limit_hit = True
                logger.warning(
                    "Status refresh stopped by provider rate limit",
                    extra={"event": "status_refresh_throttled", "tenant_id": tenant_id},
                )
                break
            except RemoteUnavailableError as exc:
                result.errors += 1
                logger.warning(
                    "Status refresh failed for event",
                    extra={
                        "event": "status_refresh_error",
                        "provider_event_id": stored.provider_event_id,
                        "error_message": exc.message,
                    },
                )
                continue

            # Events the provider no longer knows about were cancelled there.
            status = EventStatus.CANCELLED if remote is None else remote.status
            if status is stored.status:
                continue
            try:
                if self._store.update_event_status(tenant_id, stored.provider_event_id, status):
                    result.events_updated += 1
            except SQLAlchemyError:
                result.errors += 1
                logger.exception(
                    "Failed to store refreshed status",
                    extra={"provider_event_id": stored.provider_event_id},
                )

        return result

    async def _enrich(
        self, tenant_id: str, event: RemoteEvent, result: ReconcileResult
    ) -> RemoteEventDetail:
        if result.rate_limit_hit:
            return self._known_detail(tenant_id, event.event_id)
        try:
            detail = await self._client.get_event_detail(tenant_id, event.event_id)
        except RateLimitedError:
            result.rate_limit_hit = True
            logger.warning(
                "Enrichment throttled; using last known invitee details",
                extra={"event": "enrichment_throttled", "provider_event_id": event.event_id},
            )
            return self._known_detail(tenant_id, event.event_id)
        except (RemoteUnavailableError, ValidationError) as exc:
            result.enrichment_failures += 1
            logger.warning(
                "Enrichment failed; storing event without invitee details",
                extra={
                    "event": "enrichment_failed",
                    "provider_event_id": event.event_id,
                    "error_message": str(exc),
                },
            )
            return RemoteEventDetail()

        self._detail_cache[(tenant_id, event.event_id)] = detail
        return detail

    def _known_detail(self, tenant_id: str, event_id: str) -> RemoteEventDetail:
        cached = self._detail_cache.get((tenant_id, event_id))
        if cached is not None:
            return cached
        stored = self._store.get_event(tenant_id, event_id)
        if stored is not None:
            return RemoteEventDetail(
                invitee_name=stored.invitee_name, invitee_email=stored.invitee_email
            )
        return RemoteEventDetail()

    def _write(
        self,
        tenant_id: str,
        event: RemoteEvent,
        event_type_name: str | None,
        detail: RemoteEventDetail,
    ) -> bool:
        record = EventRecord(
            tenant_id=tenant_id,
            provider=self.provider_id,
            provider_event_id=event.event_id,
            event_type_id=event.event_type_id,
            event_type_name=event_type_name or event.name or "Unknown",
            scheduled_at=event.start_time,
            created_at=event.created_at,
            status=event.status,
            invitee_name=detail.invitee_name,
            invitee_email=detail.invitee_email,
        )
        try:
            self._store.upsert_event(record)
        except SQLAlchemyError:
            logger.exception(
                "Failed to upsert event",
                extra={"event": "event_upsert_failed", "provider_event_id": event.event_id},
            )
            return False
        return True


__all__ = ["GapReconciler", "ReconcileResult", "StatusRefreshResult"]
