"""Application configuration loading utilities."""

from __future__ import annotations

import os
import pathlib
from functools import lru_cache
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR.parent / "config" / "eventsync.yaml"


class ProviderModel(BaseModel):
    id: str
    name: str
    base_url: str
    health_strategy: Literal["booking", "low_traffic"] = "booking"
    page_size: int = Field(default=100)
    request_timeout_seconds: float = Field(default=30.0)


class SyncSettings(BaseModel):
    deep_days: int = 90
    default_days_back: int = 7
    overlap_minutes: int = 60
    status_refresh_days: int = 3


class RateLimitSettings(BaseModel):
    tenant_spacing_seconds: float = 2.0
    request_spacing_seconds: float = 0.2
    cooldown_seconds: float = 60.0
    usage_threshold_percent: float = 80.0


class HealthSettings(BaseModel):
    lookback_hours: int = 24
    staleness_hours: int = 24
    unhealthy_below: int = 70
    no_runs_penalty: int = 40
    low_ratio_penalty: int = 20
    very_low_ratio_penalty: int = 30
    stale_events_penalty: int = 20
    quiet_days: int = 7
    quiet_penalty: int = 30


class AlertThreshold(BaseModel):
    metric: str
    min_value: float
    severity: Literal["low", "medium", "high", "critical"] = "medium"


class AlertSettings(BaseModel):
    cooldown_minutes: int = 60
    thresholds: List[AlertThreshold] = Field(
        default_factory=lambda: [
            AlertThreshold(metric="health_score", min_value=70, severity="medium"),
            AlertThreshold(metric="health_score", min_value=60, severity="critical"),
            AlertThreshold(metric="data_quality", min_value=80, severity="medium"),
        ]
    )


class ScheduleSettings(BaseModel):
    enabled: bool = True
    sync_cron: str = "0 2 * * *"
    health_cron: str = "0 */6 * * *"
    status_refresh_cron: str = "30 3 * * *"
    recent_run_hours: int = 48
    recent_days_back: int = 2
    stale_days_back: int = 7


class WebhookSettings(BaseModel):
    signing_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("CALENDLY_WEBHOOK_SIGNING_KEY")
    )
    tolerance_seconds: int = 180


class AppConfig(BaseModel):
    providers: List[ProviderModel]
    default_provider: str = "calendly"
    sync: SyncSettings = Field(default_factory=SyncSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    webhooks: WebhookSettings = Field(default_factory=WebhookSettings)

    def get_provider(self, provider_id: str) -> ProviderModel | None:
        return next((p for p in self.providers if p.id == provider_id), None)


@lru_cache(maxsize=1)
def load_config(path: pathlib.Path | None = None) -> AppConfig:
    """Load service configuration from YAML."""
    config_path = path or pathlib.Path(os.getenv("EVENTSYNC_CONFIG", DEFAULT_CONFIG_PATH))
    raw = yaml.safe_load(config_path.read_text()) or {}
    return AppConfig(**raw)
