"""Local store access for integrations, synced events, metrics and alerts."""

from __future__ import annotations

import json
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from eventsync.core.clock import ensure_utc, utcnow
from eventsync.providers.base import EventStatus

from .database import session_scope
from .models import Alert, CalendarEvent, Integration, SyncMetric, TrackedEventType


SessionFactory = Callable[[], AbstractContextManager[Session]]


@dataclass(frozen=True)
class IntegrationRecord:
    tenant_id: str
    provider: str
    is_connected: bool
    last_sync: datetime | None
    health_score: int
    data_quality_score: int
    last_health_check: datetime | None


@dataclass(frozen=True)
class EventRecord:
    """A provider event ready to be written, keyed by ``provider_event_id``."""

    tenant_id: str
    provider: str
    provider_event_id: str
    event_type_id: str
    event_type_name: str | None
    scheduled_at: datetime
    created_at: datetime
    status: EventStatus
    invitee_name: str | None = None
    invitee_email: str | None = None


@dataclass(frozen=True)
class StoredEvent:
    provider_event_id: str
    status: EventStatus
    scheduled_at: datetime
    invitee_name: str | None
    invitee_email: str | None


@dataclass(frozen=True)
class MetricRecord:
    tenant_id: str
    provider: str
    metric_type: str
    value: float
    ts: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AlertRecord:
    id: int
    tenant_id: str
    provider: str
    metric_type: str
    metric_value: float
    threshold: float
    severity: str
    title: str
    status: str
    triggered_at: datetime
    acknowledged_at: datetime | None = None


def _integration_record(row: Integration) -> IntegrationRecord:
    return IntegrationRecord(
        tenant_id=row.tenant_id,
        provider=row.provider,
        is_connected=bool(row.is_connected),
        last_sync=ensure_utc(row.last_sync),
        health_score=row.health_score if row.health_score is not None else 100,
        data_quality_score=row.data_quality_score if row.data_quality_score is not None else 100,
        last_health_check=ensure_utc(row.last_health_check),
    )


def _alert_record(row: Alert) -> AlertRecord:
    return AlertRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        provider=row.provider,
        metric_type=row.metric_type,
        metric_value=row.metric_value,
        threshold=row.threshold,
        severity=row.severity,
        title=row.title,
        status=row.status,
        triggered_at=ensure_utc(row.triggered_at),
        acknowledged_at=ensure_utc(row.acknowledged_at),
    )


def _decode_meta(serialized: str | None) -> dict[str, Any]:
    if not serialized:
        return {}
    try:
        decoded = json.loads(serialized)
    except json.JSONDecodeError:
        return {"raw": serialized}
    return decoded if isinstance(decoded, dict) else {"value": decoded}


def _insert_for(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"Upsert not supported for dialect {dialect!r}")


class LocalStore:
    """CRUD and idempotent-upsert access to the canonical tables."""

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_scope = session_factory or session_scope

    # Integrations -----------------------------------------------------

    def list_connected_integrations(
        self, provider: str, tenant_id: str | None = None
    ) -> list[IntegrationRecord]:
        """Return connected integrations in registration order."""
        with self._session_scope() as session:
            stmt = (
                select(Integration)
                .where(Integration.provider == provider)
                .where(Integration.is_connected.is_(True))
                .order_by(Integration.id)
            )
            if tenant_id:
                stmt = stmt.where(Integration.tenant_id == tenant_id)
            rows = session.scalars(stmt).all()
            return [_integration_record(row) for row in rows]

    def list_integrations(
        self, tenant_id: str | None = None, provider: str | None = None
    ) -> list[IntegrationRecord]:
        with self._session_scope() as session:
            stmt = select(Integration).order_by(Integration.id)
            if tenant_id:
                stmt = stmt.where(Integration.tenant_id == tenant_id)
            if provider:
                stmt = stmt.where(Integration.provider == provider)
            return [_integration_record(row) for row in session.scalars(stmt).all()]

    def get_integration(self, tenant_id: str, provider: str) -> IntegrationRecord | None:
        with self._session_scope() as session:
            row = session.scalar(
                select(Integration)
                .where(Integration.tenant_id == tenant_id)
                .where(Integration.provider == provider)
            )
            return _integration_record(row) if row else None

    def connect_integration(self, tenant_id: str, provider: str) -> None:
        """Create the integration row, or reconnect an existing one."""
        with self._session_scope() as session:
            existing = session.scalar(
                select(Integration)
                .where(Integration.tenant_id == tenant_id)
                .where(Integration.provider == provider)
            )
            if existing:
                session.execute(
                    update(Integration)
                    .where(Integration.id == existing.id)
                    .values(is_connected=True)
                )
            else:
                session.add(Integration(tenant_id=tenant_id, provider=provider, is_connected=True))

    def disconnect_integration(self, tenant_id: str, provider: str) -> bool:
        """Flag an integration as disconnected; rows are never deleted."""
        with self._session_scope() as session:
            result = session.execute(
                update(Integration)
                .where(Integration.tenant_id == tenant_id)
                .where(Integration.provider == provider)
                .values(is_connected=False)
            )
            return bool(result.rowcount)

    def update_last_sync(self, tenant_id: str, provider: str, timestamp: datetime) -> bool:
        """Advance the sync cursor; an older ``timestamp`` leaves it untouched."""
        with self._session_scope() as session:
            result = session.execute(
                update(Integration)
                .where(Integration.tenant_id == tenant_id)
                .where(Integration.provider == provider)
                .where(or_(Integration.last_sync.is_(None), Integration.last_sync < timestamp))
                .values(last_sync=timestamp)
            )
            return bool(result.rowcount)

    def update_health(
        self,
        tenant_id: str,
        provider: str,
        *,
        health_score: int,
        data_quality_score: int,
        checked_at: datetime,
    ) -> None:
        with self._session_scope() as session:
            session.execute(
                update(Integration)
                .where(Integration.tenant_id == tenant_id)
                .where(Integration.provider == provider)
                .values(
                    health_score=health_score,
                    data_quality_score=data_quality_score,
                    last_health_check=checked_at,
                )
            )

    # Tracked event types ----------------------------------------------

    def get_tracked_event_types(self, tenant_id: str) -> dict[str, str | None]:
        """Return the active event-type whitelist as ``{type_id: name}``."""
        with self._session_scope() as session:
            rows = session.execute(
                select(TrackedEventType.event_type_id, TrackedEventType.event_type_name)
                .where(TrackedEventType.tenant_id == tenant_id)
                .where(TrackedEventType.is_active.is_(True))
                .order_by(TrackedEventType.id)
            ).all()
            return {type_id: name for type_id, name in rows}

    def set_tracked_event_types(self, tenant_id: str, event_types: dict[str, str | None]) -> None:
        """Replace the whitelist; types left out are deactivated, not deleted."""
        with self._session_scope() as session:
            existing = {
                row.event_type_id: row
                for row in session.scalars(
                    select(TrackedEventType).where(TrackedEventType.tenant_id == tenant_id)
                ).all()
            }
            for type_id, row in existing.items():
                if type_id not in event_types:
                    row.is_active = False
            for type_id, name in event_types.items():
                row = existing.get(type_id)
                if row is None:
                    session.add(
                        TrackedEventType(
                            tenant_id=tenant_id,
                            event_type_id=type_id,
                            event_type_name=name,
                            is_active=True,
                        )
                    )
                else:
                    row.is_active = True
                    row.event_type_name = name

    def list_tenants_tracking(self, provider: str, event_type_id: str) -> dict[str, str | None]:
        """Connected tenants that track ``event_type_id``, as ``{tenant_id: type_name}``."""
        with self._session_scope() as session:
            rows = session.execute(
                select(TrackedEventType.tenant_id, TrackedEventType.event_type_name)
                .join(Integration, Integration.tenant_id == TrackedEventType.tenant_id)
                .where(Integration.provider == provider)
                .where(Integration.is_connected.is_(True))
                .where(TrackedEventType.event_type_id == event_type_id)
                .where(TrackedEventType.is_active.is_(True))
                .order_by(TrackedEventType.tenant_id)
            ).all()
            return {tenant_id: name for tenant_id, name in rows}

    # Events -----------------------------------------------------------

    def list_local_events(
        self, tenant_id: str, window_start: datetime, window_end: datetime
    ) -> dict[str, StoredEvent]:
        """Events created or scheduled inside the window, keyed by provider id."""
        with self._session_scope() as session:
            rows = session.scalars(
                select(CalendarEvent)
                .where(CalendarEvent.tenant_id == tenant_id)
                .where(
                    or_(
                        and_(
                            CalendarEvent.created_at >= window_start,
                            CalendarEvent.created_at <= window_end,
                        ),
                        and_(
                            CalendarEvent.scheduled_at >= window_start,
                            CalendarEvent.scheduled_at <= window_end,
                        ),
                    )
                )
            ).all()
            return {
                row.provider_event_id: StoredEvent(
                    provider_event_id=row.provider_event_id,
                    status=EventStatus(row.status),
                    scheduled_at=ensure_utc(row.scheduled_at),
                    invitee_name=row.invitee_name,
                    invitee_email=row.invitee_email,
                )
                for row in rows
            }

    def list_local_event_ids(
        self, tenant_id: str, window_start: datetime, window_end: datetime
    ) -> set[str]:
        return set(self.list_local_events(tenant_id, window_start, window_end))

    def get_event(self, tenant_id: str, provider_event_id: str) -> StoredEvent | None:
        with self._session_scope() as session:
            row = session.scalar(
                select(CalendarEvent)
                .where(CalendarEvent.tenant_id == tenant_id)
                .where(CalendarEvent.provider_event_id == provider_event_id)
            )
            if row is None:
                return None
            return StoredEvent(
                provider_event_id=row.provider_event_id,
                status=EventStatus(row.status),
                scheduled_at=ensure_utc(row.scheduled_at),
                invitee_name=row.invitee_name,
                invitee_email=row.invitee_email,
            )

    def upsert_event(self, event: EventRecord) -> None:
        """Insert the event or update the existing row with the same provider id."""
        now = utcnow()
        values = {
            "tenant_id": event.tenant_id,
            "provider": event.provider,
            "provider_event_id": event.provider_event_id,
            "event_type_id": event.event_type_id,
            "event_type_name": event.event_type_name,
            "scheduled_at": event.scheduled_at,
            "created_at": event.created_at,
            "status": event.status.value,
            "invitee_name": event.invitee_name,
            "invitee_email": event.invitee_email,
            "cancelled_at": now if event.status is EventStatus.CANCELLED else None,
            "updated_at": now,
        }
        with self._session_scope() as session:
            insert = _insert_for(session)
            stmt = insert(CalendarEvent).values(**values)
            excluded = stmt.excluded
            stmt = stmt.on_conflict_do_update(
                index_elements=[CalendarEvent.tenant_id, CalendarEvent.provider_event_id],
                set_={
                    "event_type_id": excluded.event_type_id,
                    "event_type_name": excluded.event_type_name,
                    "scheduled_at": excluded.scheduled_at,
                    "status": excluded.status,
                    "invitee_name": func.coalesce(excluded.invitee_name, CalendarEvent.invitee_name),
                    "invitee_email": func.coalesce(
                        excluded.invitee_email, CalendarEvent.invitee_email
                    ),
                    "cancelled_at": func.coalesce(CalendarEvent.cancelled_at, excluded.cancelled_at),
                    "updated_at": excluded.updated_at,
                },
            )
            session.execute(stmt)

    def update_event_status(
        self, tenant_id: str, provider_event_id: str, status: EventStatus
    ) -> bool:
        now = utcnow()
        values: dict[str, Any] = {"status": status.value, "updated_at": now}
        if status is EventStatus.CANCELLED:
            values["cancelled_at"] = func.coalesce(CalendarEvent.cancelled_at, now)
        with self._session_scope() as session:
            result = session.execute(
                update(CalendarEvent)
                .where(CalendarEvent.tenant_id == tenant_id)
                .where(CalendarEvent.provider_event_id == provider_event_id)
                .values(**values)
            )
            return bool(result.rowcount)

    def list_stale_active_events(
        self,
        tenant_id: str,
        scheduled_before: datetime,
        scheduled_after: datetime | None = None,
        *,
        provider: str | None = None,
    ) -> list[StoredEvent]:
        """Active events whose scheduled time already passed ``scheduled_before``."""
        with self._session_scope() as session:
            stmt = (
                select(CalendarEvent)
                .where(CalendarEvent.tenant_id == tenant_id)
                .where(CalendarEvent.status == EventStatus.ACTIVE.value)
                .where(CalendarEvent.scheduled_at < scheduled_before)
                .order_by(CalendarEvent.scheduled_at)
            )
            if scheduled_after is not None:
                stmt = stmt.where(CalendarEvent.scheduled_at >= scheduled_after)
            if provider is not None:
                stmt = stmt.where(CalendarEvent.provider == provider)
            return [
                StoredEvent(
                    provider_event_id=row.provider_event_id,
                    status=EventStatus(row.status),
                    scheduled_at=ensure_utc(row.scheduled_at),
                    invitee_name=row.invitee_name,
                    invitee_email=row.invitee_email,
                )
                for row in session.scalars(stmt).all()
            ]

    # Metrics ----------------------------------------------------------

    def record_metric(
        self,
        tenant_id: str,
        provider: str,
        metric_type: str,
        value: float,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        with self._session_scope() as session:
            session.add(
                SyncMetric(
                    ts=utcnow(),
                    tenant_id=tenant_id,
                    provider=provider,
                    metric_type=metric_type,
                    metric_value=float(value),
                    meta=json.dumps(metadata, ensure_ascii=True, default=str) if metadata else None,
                )
            )

    def list_recent_metrics(
        self,
        tenant_id: str,
        since: datetime,
        *,
        provider: str | None = None,
        metric_types: Iterable[str] | None = None,
    ) -> list[MetricRecord]:
        """Metrics recorded at or after ``since``, newest first."""
        with self._session_scope() as session:
            stmt = (
                select(SyncMetric)
                .where(SyncMetric.tenant_id == tenant_id)
                .where(SyncMetric.ts >= since)
                .order_by(SyncMetric.ts.desc(), SyncMetric.id.desc())
            )
            if provider:
                stmt = stmt.where(SyncMetric.provider == provider)
            if metric_types is not None:
                stmt = stmt.where(SyncMetric.metric_type.in_(list(metric_types)))
            rows = session.scalars(stmt).all()
            return [
                MetricRecord(
                    tenant_id=row.tenant_id,
                    provider=row.provider,
                    metric_type=row.metric_type,
                    value=row.metric_value,
                    ts=ensure_utc(row.ts),
                    metadata=_decode_meta(row.meta),
                )
                for row in rows
            ]

    # Alerts -----------------------------------------------------------

    def create_alert(
        self,
        tenant_id: str,
        provider: str,
        *,
        metric_type: str,
        metric_value: float,
        threshold: float,
        severity: str,
        title: str,
    ) -> AlertRecord:
        with self._session_scope() as session:
            row = Alert(
                tenant_id=tenant_id,
                provider=provider,
                metric_type=metric_type,
                metric_value=float(metric_value),
                threshold=float(threshold),
                severity=severity,
                title=title,
                status="active",
                triggered_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return _alert_record(row)

    def has_recent_alert(
        self, tenant_id: str, provider: str, metric_type: str, severity: str, since: datetime
    ) -> bool:
        with self._session_scope() as session:
            found = session.scalar(
                select(Alert.id)
                .where(Alert.tenant_id == tenant_id)
                .where(Alert.provider == provider)
                .where(Alert.metric_type == metric_type)
                .where(Alert.severity == severity)
                .where(Alert.triggered_at >= since)
                .limit(1)
            )
            return found is not None

    def list_alerts(
        self, tenant_id: str | None = None, status: str | None = "active", limit: int = 100
    ) -> list[AlertRecord]:
        with self._session_scope() as session:
            stmt = select(Alert).order_by(Alert.triggered_at.desc(), Alert.id.desc()).limit(limit)
            if tenant_id:
                stmt = stmt.where(Alert.tenant_id == tenant_id)
            if status:
                stmt = stmt.where(Alert.status == status)
            return [_alert_record(row) for row in session.scalars(stmt).all()]

    def acknowledge_alert(self, alert_id: int) -> bool:
        with self._session_scope() as session:
            result = session.execute(
                update(Alert)
                .where(Alert.id == alert_id)
                .where(Alert.status == "active")
                .values(status="acknowledged", acknowledged_at=utcnow())
            )
            return bool(result.rowcount)


__all__ = [
    "AlertRecord",
    "EventRecord",
    "IntegrationRecord",
    "LocalStore",
    "MetricRecord",
    "StoredEvent",
]
