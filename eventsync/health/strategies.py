"""Per-provider health scoring rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Sequence

from eventsync.core.config import HealthSettings
from eventsync.storage.store import MetricRecord


@dataclass(frozen=True)
class HealthInputs:
    """Facts gathered for one (tenant, provider) before scoring."""

    now: datetime
    sync_runs: Sequence[MetricRecord]
    stale_active_events: int
    last_sync: datetime | None = None


@dataclass
class HealthAssessment:
    health_score: int = 100
    data_quality: int = 100
    issues: list[str] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)

    def penalise_health(self, points: int, issue: str) -> None:
        self.health_score = max(0, self.health_score - points)
        self.issues.append(issue)

    def penalise_quality(self, points: int, issue: str) -> None:
        self.data_quality = max(0, self.data_quality - points)
        self.issues.append(issue)


class BookingHealthStrategy:
    """Scoring for providers where a day without a sync run is already a problem."""

    name = "booking"

    def __init__(self, settings: HealthSettings | None = None) -> None:
        self.settings = settings or HealthSettings()

    def history_start(self, now: datetime) -> datetime:
        return now - timedelta(hours=self.settings.lookback_hours)

    def evaluate(self, inputs: HealthInputs) -> HealthAssessment:
        settings = self.settings
        assessment = HealthAssessment()
        recent = [
            run for run in inputs.sync_runs
            if run.ts >= inputs.now - timedelta(hours=settings.lookback_hours)
        ]
        successful = sum(1 for run in recent if run.value >= 1)
        ratio = successful / len(recent) * 100 if recent else None

        assessment.metrics = {
            "syncRuns": len(recent),
            "successfulRuns": successful,
            "successRatio": round(ratio, 1) if ratio is not None else None,
            "staleActiveEvents": inputs.stale_active_events,
            "lastSync": inputs.last_sync.isoformat() if inputs.last_sync else None,
        }

        if not recent:
            self.penalise_inactivity(assessment, inputs)
        else:
            self.penalise_ratio(assessment, ratio)

        if inputs.stale_active_events > 0:
            assessment.penalise_quality(
                settings.stale_events_penalty,
                f"{inputs.stale_active_events} past event(s) still marked active",
            )
        return assessment

    def penalise_inactivity(self, assessment: HealthAssessment, inputs: HealthInputs) -> None:
        assessment.penalise_health(
            self.settings.no_runs_penalty,
            f"No sync runs in the last {self.settings.lookback_hours}h",
        )

    def penalise_ratio(self, assessment: HealthAssessment, ratio: float) -> None:
        if ratio < 90:
            assessment.penalise_health(
                self.settings.low_ratio_penalty, f"Sync success ratio {ratio:.0f}% below 90%"
            )
        if ratio < 70:
            assessment.penalise_health(
                self.settings.very_low_ratio_penalty, f"Sync success ratio {ratio:.0f}% below 70%"
            )


class LowTrafficHealthStrategy(BookingHealthStrategy):
    """Tolerates quiet days; only a silent ``quiet_days`` stretch is penalised."""

    name = "low_traffic"

    def history_start(self, now: datetime) -> datetime:
        hours = max(self.settings.lookback_hours, self.settings.quiet_days * 24)
        return now - timedelta(hours=hours)

    def penalise_inactivity(self, assessment: HealthAssessment, inputs: HealthInputs) -> None:
        quiet_since = inputs.now - timedelta(days=self.settings.quiet_days)
        if any(run.ts >= quiet_since for run in inputs.sync_runs):
            return
        assessment.penalise_health(
            self.settings.quiet_penalty,
            f"No sync runs in the last {self.settings.quiet_days} days",
        )


_STRATEGIES: dict[str, type[BookingHealthStrategy]] = {
    BookingHealthStrategy.name: BookingHealthStrategy,
    LowTrafficHealthStrategy.name: LowTrafficHealthStrategy,
}


def strategy_for(name: str, settings: HealthSettings | None = None) -> BookingHealthStrategy:
    try:
        return _STRATEGIES[name](settings)
    except KeyError:
        raise ValueError(f"Unknown health strategy: {name}") from None


__all__ = [
    "BookingHealthStrategy",
    "HealthAssessment",
    "HealthInputs",
    "LowTrafficHealthStrategy",
    "strategy_for",
]
