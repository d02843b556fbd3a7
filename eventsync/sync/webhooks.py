"""Push ingestion: writes webhook deliveries into the same event table the reconciler fills."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from eventsync.providers.calendly_webhooks import parse_delivery
from eventsync.storage.store import EventRecord, LocalStore

logger = logging.getLogger("eventsync.webhooks")


@dataclass
class WebhookOutcome:
    kind: str | None
    event_id: str | None = None
    status: str | None = None
    tenants: list[str] = field(default_factory=list)
    ignored: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "event": self.kind,
            "eventId": self.event_id,
            "status": self.status,
            "tenants": self.tenants,
            "ignored": self.ignored,
        }


class WebhookIngestor:
    """Upserts the delivered event for every connected tenant tracking its type.

    Writes go through ``LocalStore.upsert_event`` so a redelivered webhook, or
    a later reconcile of the same event, leaves a single row.
    """

    def __init__(self, store: LocalStore, provider: str = "calendly") -> None:
        self._store = store
        self._provider = provider

    def ingest(self, delivery: dict[str, Any]) -> WebhookOutcome:
        outcome = WebhookOutcome(kind=delivery.get("event"))
        parsed = parse_delivery(delivery)
        if parsed is None:
            outcome.ignored = "unsupported_event"
            logger.info("Webhook ignored", extra={"event": "webhook_ignored", "kind": outcome.kind})
            return outcome

        event, detail = parsed
        outcome.event_id = event.event_id
        outcome.status = event.status.value

        tenants = self._store.list_tenants_tracking(self._provider, event.event_type_id)
        if not tenants:
            outcome.ignored = "untracked_event_type"
            logger.info(
                "Webhook for untracked event type",
                extra={"event": "webhook_untracked", "event_type_id": event.event_type_id},
            )
            return outcome

        for tenant_id, type_name in tenants.items():
            self._store.upsert_event(
                EventRecord(
                    tenant_id=tenant_id,
                    provider=self._provider,
                    provider_event_id=event.event_id,
                    event_type_id=event.event_type_id,
                    event_type_name=type_name or event.name or "Unknown",
                    scheduled_at=event.start_time,
                    created_at=event.created_at,
                    status=event.status,
                    invitee_name=detail.invitee_name,
                    invitee_email=detail.invitee_email,
                )
            )
            outcome.tenants.append(tenant_id)

        logger.info(
            "Webhook event stored",
            extra={
                "event": "webhook_stored",
                "kind": outcome.kind,
                "provider_event_id": event.event_id,
                "status": outcome.status,
                "tenants": outcome.tenants,
            },
        )
        return outcome


__all__ = ["WebhookIngestor", "WebhookOutcome"]
