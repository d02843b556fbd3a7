"""Remote client interfaces and validated provider payload types."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator

from eventsync.core.config import ProviderModel


class EventStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


_STATUS_ALIASES = {
    "active": EventStatus.ACTIVE,
    "scheduled": EventStatus.ACTIVE,
    "completed": EventStatus.COMPLETED,
    "cancelled": EventStatus.CANCELLED,
    "canceled": EventStatus.CANCELLED,
    "no_show": EventStatus.NO_SHOW,
    "no-show": EventStatus.NO_SHOW,
    "noshow": EventStatus.NO_SHOW,
}


def normalize_status(value: str | EventStatus | None) -> EventStatus:
    """Map the provider's status spellings onto the canonical set."""
    if value is None:
        return EventStatus.ACTIVE
    if isinstance(value, EventStatus):
        return value
    try:
        return _STATUS_ALIASES[value.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown event status: {value!r}") from None


class RemoteEvent(BaseModel):
    """One scheduled event as reported by the provider."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    event_type_id: str
    name: str | None = None
    start_time: datetime
    created_at: datetime
    status: EventStatus = EventStatus.ACTIVE

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: object) -> EventStatus:
        if value is None or isinstance(value, (str, EventStatus)):
            return normalize_status(value)
        raise ValueError("status must be a string")

    @field_validator("start_time", "created_at")
    @classmethod
    def _require_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("timestamps must carry a timezone")
        return value.astimezone(timezone.utc)


class RemoteEventDetail(BaseModel):
    """Invitee enrichment for one event; both fields may be missing."""

    model_config = ConfigDict(frozen=True)

    invitee_name: str | None = None
    invitee_email: str | None = None


class RemoteClient:
    """Abstract provider client used by the reconciler."""

    provider_id: str

    def __init__(self, config: ProviderModel) -> None:
        self._config = config

    async def list_events(
        self, tenant_id: str, window_start: datetime, window_end: datetime
    ) -> list[RemoteEvent]:
        """Return events created or scheduled inside the window, de-duplicated."""
        raise NotImplementedError

    async def get_event_detail(self, tenant_id: str, event_id: str) -> RemoteEventDetail:
        raise NotImplementedError

    async def get_event(self, tenant_id: str, event_id: str) -> RemoteEvent | None:
        """Return the current state of one event, or ``None`` if the provider dropped it."""
        raise NotImplementedError
