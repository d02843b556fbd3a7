"""Sync window planning."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from eventsync.core.config import SyncSettings


class SyncMode(str, Enum):
    INCREMENTAL = "incremental"
    DEEP = "deep"
    DEFAULT = "default"


@dataclass(frozen=True)
class SyncWindow:
    start: datetime
    end: datetime
    mode: SyncMode

    def as_dict(self) -> dict[str, str]:
        return {
            "window_start": self.start.isoformat(),
            "window_end": self.end.isoformat(),
            "mode": self.mode.value,
        }


def plan_window(
    last_sync: datetime | None,
    now: datetime,
    mode: SyncMode = SyncMode.DEFAULT,
    days_back: int | None = None,
    settings: SyncSettings | None = None,
) -> SyncWindow:
    """Pick the window and effective mode for a tenant's next run.

    Deep runs cover ``deep_days``. Incremental runs restart ``overlap_minutes``
    before the cursor. Everything else, including an incremental request for a
    tenant that has never synced, looks back ``days_back`` days.
    """
    settings = settings or SyncSettings()

    if mode is SyncMode.DEEP:
        return SyncWindow(now - timedelta(days=settings.deep_days), now, SyncMode.DEEP)

    if mode is SyncMode.INCREMENTAL and last_sync is not None:
        start = last_sync - timedelta(minutes=settings.overlap_minutes)
        return SyncWindow(min(start, now), now, SyncMode.INCREMENTAL)

    lookback = settings.default_days_back if days_back is None else days_back
    if lookback < 0:
        raise ValueError("days_back must not be negative")
    return SyncWindow(now - timedelta(days=lookback), now, SyncMode.DEFAULT)
