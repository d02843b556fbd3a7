"""Process-wide pacing of outbound provider calls.

The provider's request budget is shared by every tenant of the app, so one
coordinator instance serialises all outbound traffic: a fixed spacing between
tenants, a shorter spacing between sub-requests, and a global cooldown once
the provider reports that the budget is exhausted or nearly so.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Mapping

from eventsync.core.config import RateLimitSettings

logger = logging.getLogger("eventsync.ratelimit")

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[Any]]

_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "too many requests", "ratelimit")


def body_mentions_rate_limit(body: Any) -> bool:
    """Return True when an error payload says the request was throttled."""
    if body is None:
        return False
    if not isinstance(body, str):
        try:
            body = json.dumps(body)
        except (TypeError, ValueError):
            body = str(body)
    lowered = body.lower()
    return any(marker in lowered for marker in _RATE_LIMIT_MARKERS)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def _usage_from_headers(headers: Mapping[str, str]) -> float | None:
    limit = _header(headers, "x-ratelimit-limit")
    remaining = _header(headers, "x-ratelimit-remaining")
    if limit is not None and remaining is not None:
        try:
            limit_value = float(limit)
            remaining_value = float(remaining)
        except ValueError:
            limit_value = 0.0
        if limit_value > 0:
            return max(0.0, min(100.0, (limit_value - remaining_value) / limit_value * 100))

    app_usage = _header(headers, "x-app-usage")
    if app_usage:
        try:
            parsed = json.loads(app_usage)
        except json.JSONDecodeError:
            logger.debug("Unparseable usage header", extra={"header": app_usage})
            return None
        if isinstance(parsed, dict):
            values = [
                float(v) for v in parsed.values() if isinstance(v, (int, float))
            ]
            if values:
                return max(values)
    return None


@dataclass(frozen=True)
class UsageSignal:
    """What one provider response said about the remaining request budget."""

    usage_percent: float | None = None
    rate_limited: bool = False
    status_code: int | None = None

    @classmethod
    def from_response(
        cls,
        status_code: int,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> "UsageSignal":
        usage = _usage_from_headers(headers or {})
        limited = status_code == HTTPStatus.TOO_MANY_REQUESTS or (
            status_code in {HTTPStatus.BAD_REQUEST, HTTPStatus.FORBIDDEN}
            and body_mentions_rate_limit(body)
        )
        return cls(usage_percent=usage, rate_limited=limited, status_code=status_code)


class RateLimitCoordinator:
    """Serialises outbound calls and enforces a global cooldown."""

    def __init__(
        self,
        settings: RateLimitSettings | None = None,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._settings = settings or RateLimitSettings()
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_tenant_grant: float | None = None
        self._last_request_grant: float | None = None
        self._last_tenant_id: str | None = None
        self._cooldown_until = 0.0
        self.limit_hits = 0

    def cooldown_remaining(self) -> float:
        return max(0.0, self._cooldown_until - self._clock())

    async def acquire(self, tenant_id: str) -> float:
        """Wait for the tenant-level slot; returns the seconds spent waiting."""
        async with self._lock:
            waited = await self._wait_for(
                self._last_tenant_grant, self._settings.tenant_spacing_seconds
            )
            now = self._clock()
            self._last_tenant_grant = now
            self._last_request_grant = now
            self._last_tenant_id = tenant_id
        if waited:
            logger.debug(
                "Tenant slot granted after wait",
                extra={"tenant_id": tenant_id, "waited_seconds": round(waited, 3)},
            )
        return waited

    async def pace(self) -> float:
        """Wait for the next sub-request slot inside the current tenant."""
        async with self._lock:
            waited = await self._wait_for(
                self._last_request_grant, self._settings.request_spacing_seconds
            )
            self._last_request_grant = self._clock()
        return waited

    def report_usage(self, signal: UsageSignal) -> bool:
        """Start a global cooldown if ``signal`` shows the budget is spent.

        Returns True when a cooldown was started or extended.
        """
        high_usage = (
            signal.usage_percent is not None
            and signal.usage_percent >= self._settings.usage_threshold_percent
        )
        if not signal.rate_limited and not high_usage:
            return False

        until = self._clock() + self._settings.cooldown_seconds
        if until > self._cooldown_until:
            self._cooldown_until = until
        if signal.rate_limited:
            self.limit_hits += 1
        logger.warning(
            "Provider request budget exhausted; cooling down",
            extra={
                "event": "rate_limit_cooldown",
                "rate_limited": signal.rate_limited,
                "usage_percent": signal.usage_percent,
                "status_code": signal.status_code,
                "cooldown_seconds": self._settings.cooldown_seconds,
                "last_tenant_id": self._last_tenant_id,
            },
        )
        return True

    async def _wait_for(self, last_grant: float | None, spacing: float) -> float:
        now = self._clock()
        spacing_wait = 0.0 if last_grant is None else last_grant + spacing - now
        delay = max(spacing_wait, self._cooldown_until - now, 0.0)
        if delay > 0:
            await self._sleep(delay)
        return delay


__all__ = ["RateLimitCoordinator", "UsageSignal", "body_mentions_rate_limit"]
