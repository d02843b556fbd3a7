"""Calendly webhook signature checks and delivery parsing."""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any

from eventsync.core.exceptions import WebhookSignatureError

from .base import EventStatus, RemoteEvent, RemoteEventDetail
from .calendly import scheduled_event_fields

SIGNATURE_HEADER = "Calendly-Webhook-Signature"

INVITEE_CREATED = "invitee.created"
INVITEE_CANCELED = "invitee.canceled"
SUPPORTED_EVENTS = frozenset({INVITEE_CREATED, INVITEE_CANCELED})


def _parse_signature_header(header: str) -> tuple[str, str]:
    parts: dict[str, str] = {}
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key and value:
            parts[key] = value
    timestamp = parts.get("t")
    signature = parts.get("v1")
    if not timestamp or not signature:
        raise WebhookSignatureError("Malformed signature header", status_code=400)
    return timestamp, signature


def verify_signature(
    header: str | None,
    body: bytes,
    signing_key: str,
    *,
    tolerance_seconds: int = 180,
    now: float | None = None,
) -> None:
    """Check the ``t=<unix>,v1=<hex>`` header against ``HMAC-SHA256("<t>.<body>")``.

    Raises :class:`WebhookSignatureError` when the header is missing or
    malformed (400), the digest does not match, or the timestamp lies outside
    ``tolerance_seconds`` (401).
    """
    if not header:
        raise WebhookSignatureError("Missing signature header", status_code=400)
    timestamp, signature = _parse_signature_header(header)

    expected = hmac.new(
        signing_key.encode(), timestamp.encode() + b"." + body, hashlib.sha256
    ).hexdigest()
    if not hmac.compare_digest(expected.encode(), signature.encode()):
        raise WebhookSignatureError("Invalid signature")

    try:
        signed_at = int(timestamp)
    except ValueError:
        raise WebhookSignatureError("Malformed signature timestamp", status_code=400) from None
    current = time.time() if now is None else now
    if abs(current - signed_at) > tolerance_seconds:
        raise WebhookSignatureError("Signature timestamp outside tolerance")


def parse_delivery(delivery: dict[str, Any]) -> tuple[RemoteEvent, RemoteEventDetail] | None:
    """Return the scheduled event and invitee a delivery concerns.

    ``None`` for event kinds other than invitee creation and cancellation.
    Raises ``ValueError`` (including pydantic's ``ValidationError``) for
    deliveries that lack a usable scheduled event.
    """
    kind = delivery.get("event")
    if kind not in SUPPORTED_EVENTS:
        return None

    payload = delivery.get("payload")
    if not isinstance(payload, dict):
        raise ValueError("Delivery has no payload")
    # Older deliveries nest the invitee; current ones make the payload the invitee.
    invitee = payload.get("invitee") if isinstance(payload.get("invitee"), dict) else payload
    scheduled = payload.get("scheduled_event")
    if not isinstance(scheduled, dict):
        raise ValueError("Delivery has no scheduled_event")

    fields = scheduled_event_fields(scheduled)
    if fields["created_at"] is None:
        fields["created_at"] = invitee.get("created_at") or delivery.get("created_at")
    if kind == INVITEE_CANCELED:
        fields["status"] = EventStatus.CANCELLED

    event = RemoteEvent.model_validate(fields)
    detail = RemoteEventDetail(
        invitee_name=invitee.get("name") or None,
        invitee_email=invitee.get("email") or None,
    )
    return event, detail


__all__ = [
    "INVITEE_CANCELED",
    "INVITEE_CREATED",
    "SIGNATURE_HEADER",
    "parse_delivery",
    "verify_signature",
]
