"""Process-wide service instances shared by the HTTP layer and the scheduler."""

from __future__ import annotations

from functools import lru_cache

from eventsync.core.config import load_config
from eventsync.health.monitor import HealthMonitor
from eventsync.providers.registry import ClientRegistry
from eventsync.scheduler.jobs import SyncScheduler
from eventsync.storage.store import LocalStore
from eventsync.sync.orchestrator import SyncOrchestrator
from eventsync.sync.ratelimit import RateLimitCoordinator


@lru_cache(maxsize=1)
def get_store() -> LocalStore:
    return LocalStore()


@lru_cache(maxsize=1)
def get_coordinator() -> RateLimitCoordinator:
    return RateLimitCoordinator(load_config().rate_limit)


@lru_cache(maxsize=1)
def get_registry() -> ClientRegistry:
    return ClientRegistry(load_config(), get_coordinator())


@lru_cache(maxsize=1)
def get_orchestrator() -> SyncOrchestrator:
    return SyncOrchestrator(
        get_store(), get_registry(), get_coordinator(), load_config().sync
    )


@lru_cache(maxsize=1)
def get_monitor() -> HealthMonitor:
    return HealthMonitor(get_store(), load_config())


@lru_cache(maxsize=1)
def get_scheduler() -> SyncScheduler:
    config = load_config()
    return SyncScheduler(
        get_orchestrator(),
        get_monitor(),
        config.schedule,
        provider=config.default_provider,
    )


__all__ = [
    "get_coordinator",
    "get_monitor",
    "get_orchestrator",
    "get_registry",
    "get_scheduler",
    "get_store",
]
