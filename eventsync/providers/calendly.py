"""Calendly remote client."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any

import httpx

from eventsync.core.config import ProviderModel
from eventsync.core.exceptions import (
    AuthenticationRequiredError,
    RateLimitedError,
    RemoteUnavailableError,
)
from eventsync.storage import credentials
from eventsync.sync.ratelimit import RateLimitCoordinator, UsageSignal

from .base import RemoteClient, RemoteEvent, RemoteEventDetail
from .utils import extract_error_body, validate_items

logger = logging.getLogger("eventsync.providers.calendly")

MAX_PAGES = 50


def _isoformat(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def scheduled_event_fields(item: Any) -> Any:
    if not isinstance(item, dict):
        return item
    return {
        "event_id": item.get("uri"),
        "event_type_id": item.get("event_type"),
        "name": item.get("name"),
        "start_time": item.get("start_time"),
        "created_at": item.get("created_at"),
        "status": item.get("status"),
    }


class CalendlyClient(RemoteClient):
    provider_id = "calendly"

    def __init__(
        self, config: ProviderModel, coordinator: RateLimitCoordinator | None = None
    ) -> None:
        super().__init__(config)
        self._base_url = config.base_url.rstrip("/")
        self._coordinator = coordinator

    async def list_events(
        self, tenant_id: str, window_start: datetime, window_end: datetime
    ) -> list[RemoteEvent]:
        token, user_uri = await self._resolve_grant(tenant_id)

        # Calendly filters on start time only. Bookings made inside the window
        # for a date past its end are found with a second, open-ended query.
        scheduled = await self._collect_events(
            token,
            {
                "user": user_uri,
                "min_start_time": _isoformat(window_start),
                "max_start_time": _isoformat(window_end),
            },
        )
        upcoming = await self._collect_events(
            token,
            {"user": user_uri, "min_start_time": _isoformat(window_end)},
        )
        created_in_window = [
            event for event in upcoming if window_start <= event.created_at <= window_end
        ]

        merged: dict[str, RemoteEvent] = {}
        for event in [*scheduled, *created_in_window]:
            merged.setdefault(event.event_id, event)

        logger.info(
            "Listed remote events",
            extra={
                "event": "remote_list",
                "tenant_id": tenant_id,
                "scheduled_in_window": len(scheduled),
                "created_in_window": len(created_in_window),
                "merged": len(merged),
            },
        )
        return list(merged.values())

    async def get_event_detail(self, tenant_id: str, event_id: str) -> RemoteEventDetail:
        token, _ = await self._resolve_grant(tenant_id)
        data = await self._get(f"{self._event_url(event_id)}/invitees", token, {"count": 1})
        if data is None:
            return RemoteEventDetail()
        collection = data.get("collection") or []
        first = collection[0] if collection and isinstance(collection[0], dict) else {}
        return RemoteEventDetail.model_validate(
            {"invitee_name": first.get("name"), "invitee_email": first.get("email")}
        )

    async def get_event(self, tenant_id: str, event_id: str) -> RemoteEvent | None:
        token, _ = await self._resolve_grant(tenant_id)
        data = await self._get(self._event_url(event_id), token)
        if data is None:
            return None
        resource = data.get("resource")
        if not isinstance(resource, dict):
            raise RemoteUnavailableError(self.provider_id, message="Unexpected response format")
        events, rejected = validate_items(RemoteEvent, [scheduled_event_fields(resource)])
        if rejected:
            raise RemoteUnavailableError(self.provider_id, message="Invalid event payload")
        return events[0]

    def _event_url(self, event_id: str) -> str:
        if event_id.startswith("http"):
            return event_id.rstrip("/")
        return f"{self._base_url}/scheduled_events/{event_id}"

    async def _resolve_grant(self, tenant_id: str) -> tuple[str, str]:
        grant = credentials.get_access_grant(tenant_id, self.provider_id)
        if grant is None:
            raise AuthenticationRequiredError(self.provider_id, tenant_id)
        if grant.user_uri:
            return grant.access_token, grant.user_uri

        data = await self._get(f"{self._base_url}/users/me", grant.access_token)
        resource = (data or {}).get("resource") or {}
        user_uri = resource.get("uri")
        if not isinstance(user_uri, str) or not user_uri:
            raise RemoteUnavailableError(self.provider_id, message="Could not resolve user URI")
        credentials.remember_user_uri(tenant_id, self.provider_id, user_uri)
        return grant.access_token, user_uri

    async def _collect_events(self, token: str, params: dict[str, Any]) -> list[RemoteEvent]:
        events: list[RemoteEvent] = []
        query = {**params, "count": self._config.page_size, "sort": "start_time:asc"}
        for _ in range(MAX_PAGES):
            data = await self._get(f"{self._base_url}/scheduled_events", token, query)
            if data is None:
                break
            collection = data.get("collection") or []
            valid, rejected = validate_items(
                RemoteEvent, [scheduled_event_fields(item) for item in collection]
            )
            events.extend(valid)
            for entry in rejected:
                logger.warning(
                    "Skipping invalid remote event",
                    extra={"event": "remote_event_invalid", "errors": entry["errors"]},
                )
            next_token = (data.get("pagination") or {}).get("next_page_token")
            if not next_token:
                break
            query = {**query, "page_token": next_token}
        else:
            logger.warning(
                "Pagination limit reached",
                extra={"event": "remote_pagination_truncated", "max_pages": MAX_PAGES},
            )
        return events

    async def _get(
        self, url: str, token: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """GET ``url``; returns ``None`` for 404 and raises for other failures."""
        if self._coordinator is not None:
            await self._coordinator.pace()

        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._config.request_timeout_seconds) as client:
                response = await client.get(url, params=params, headers=headers)
        except httpx.RequestError as exc:
            raise RemoteUnavailableError(
                self.provider_id, message="Provider request failed"
            ) from exc

        error_body = extract_error_body(response) if response.is_error else None
        signal = UsageSignal.from_response(response.status_code, response.headers, error_body)
        if self._coordinator is not None:
            self._coordinator.report_usage(signal)

        if response.status_code == HTTPStatus.UNAUTHORIZED:
            raise AuthenticationRequiredError(self.provider_id)
        if signal.rate_limited:
            raise RateLimitedError(self.provider_id, status_code=response.status_code)
        if response.status_code == HTTPStatus.NOT_FOUND:
            return None
        if response.is_error:
            logger.warning(
                "Provider returned an error",
                extra={
                    "event": "remote_error",
                    "status_code": response.status_code,
                    "response_body": error_body,
                },
            )
            raise RemoteUnavailableError(
                self.provider_id,
                message=f"Provider error (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        data = response.json()
        if not isinstance(data, dict):
            raise RemoteUnavailableError(self.provider_id, message="Unexpected response format")
        return data
