"""ORM models for integrations, synced events, metrics and alerts."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from .database import Base


class Integration(Base):
    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "provider", name="uq_integrations_tenant_provider"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(100), nullable=False)
    provider = Column(String(50), nullable=False)
    is_connected = Column(Boolean, nullable=False, default=True)
    last_sync = Column(DateTime(timezone=True))
    health_score = Column(Integer, nullable=False, default=100)
    data_quality_score = Column(Integer, nullable=False, default=100)
    last_health_check = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class TrackedEventType(Base):
    __tablename__ = "tracked_event_types"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "event_type_id", name="uq_tracked_event_types_tenant_type"
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(100), nullable=False)
    event_type_id = Column(String(512), nullable=False)
    event_type_name = Column(String(255))
    is_active = Column(Boolean, nullable=False, default=True)


class CalendarEvent(Base):
    __tablename__ = "calendar_events"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "provider_event_id", name="uq_calendar_events_tenant_event"
        ),
        Index("ix_calendar_events_tenant_scheduled", "tenant_id", "scheduled_at"),
        Index("ix_calendar_events_tenant_created", "tenant_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(100), nullable=False)
    provider = Column(String(50), nullable=False)
    provider_event_id = Column(String(512), nullable=False)
    event_type_id = Column(String(512), nullable=False)
    event_type_name = Column(String(255))
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(32), nullable=False, default="active")
    invitee_name = Column(String(255))
    invitee_email = Column(String(255))
    cancelled_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))


class SyncMetric(Base):
    __tablename__ = "sync_metrics"
    __table_args__ = (
        Index("ix_sync_metrics_tenant_provider_ts", "tenant_id", "provider", "ts"),
        Index("ix_sync_metrics_type_ts", "metric_type", "ts"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    ts = Column(DateTime(timezone=True), nullable=False)
    tenant_id = Column(String(100), nullable=False)
    provider = Column(String(50), nullable=False)
    metric_type = Column(String(64), nullable=False)
    metric_value = Column(Float, nullable=False)
    meta = Column(Text)


class Alert(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_tenant_metric_ts", "tenant_id", "provider", "metric_type", "triggered_at"),
        Index("ix_alerts_status", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(100), nullable=False)
    provider = Column(String(50), nullable=False)
    metric_type = Column(String(64), nullable=False)
    metric_value = Column(Float, nullable=False)
    threshold = Column(Float, nullable=False)
    severity = Column(String(16), nullable=False, default="medium")
    title = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False, default="active")
    triggered_at = Column(DateTime(timezone=True), nullable=False)
    acknowledged_at = Column(DateTime(timezone=True))


class TenantCredential(Base):
    __tablename__ = "tenant_credentials"
    __table_args__ = (
        UniqueConstraint("tenant_id", "provider", name="uq_tenant_credentials_tenant_provider"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(100), nullable=False)
    provider = Column(String(50), nullable=False)
    access_token = Column(String(2048), nullable=False)
    user_uri = Column(String(512))
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ActivityEvent(Base):
    __tablename__ = "activity_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ts = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    level = Column(String(16), nullable=False)
    kind = Column(String(64), nullable=False)
    request_id = Column(String(64))
    tenant_id = Column(String(100))
    provider = Column(String(50))
    message = Column(String(512))
    meta = Column(Text)

    __table_args__ = (
        Index("ix_activity_events_ts", "ts"),
        Index("ix_activity_events_kind_ts", "kind", "ts"),
    )
