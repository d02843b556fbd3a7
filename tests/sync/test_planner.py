from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from eventsync.core.config import SyncSettings
from eventsync.sync.planner import SyncMode, plan_window

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


def test_never_synced_tenant_uses_days_back_and_default_mode():
    window = plan_window(None, NOW, SyncMode.INCREMENTAL, days_back=7)

    assert window.start == NOW - timedelta(days=7)
    assert window.end == NOW
    assert window.mode is SyncMode.DEFAULT


def test_incremental_window_starts_an_hour_before_cursor():
    last_sync = NOW - timedelta(hours=5)

    window = plan_window(last_sync, NOW, SyncMode.INCREMENTAL)

    assert window.start == last_sync - timedelta(hours=1)
    assert window.start <= last_sync
    assert window.mode is SyncMode.INCREMENTAL


@pytest.mark.parametrize("offset", [timedelta(0), timedelta(minutes=30), timedelta(days=40)])
def test_incremental_start_never_after_cursor(offset):
    last_sync = NOW - offset

    window = plan_window(last_sync, NOW, SyncMode.INCREMENTAL)

    assert window.start <= last_sync
    assert window.start <= window.end


def test_cursor_in_the_future_is_clamped_to_now():
    window = plan_window(NOW + timedelta(hours=3), NOW, SyncMode.INCREMENTAL)

    assert window.start == NOW


def test_deep_mode_ignores_cursor():
    window = plan_window(NOW - timedelta(hours=1), NOW, SyncMode.DEEP, days_back=2)

    assert window.start == NOW - timedelta(days=90)
    assert window.mode is SyncMode.DEEP


def test_default_mode_uses_configured_lookback():
    settings = SyncSettings(default_days_back=3)

    window = plan_window(NOW - timedelta(hours=1), NOW, SyncMode.DEFAULT, settings=settings)

    assert window.start == NOW - timedelta(days=3)
    assert window.as_dict()["mode"] == "default"


def test_negative_days_back_is_rejected():
    with pytest.raises(ValueError):
        plan_window(None, NOW, SyncMode.DEFAULT, days_back=-1)
