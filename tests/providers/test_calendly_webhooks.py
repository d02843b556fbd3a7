from __future__ import annotations

import hashlib
import hmac

import pytest
from pydantic import ValidationError

from eventsync.core.exceptions import WebhookSignatureError
from eventsync.providers.base import EventStatus
from eventsync.providers.calendly_webhooks import parse_delivery, verify_signature

KEY = "whsec-test"
BODY = b'{"event":"invitee.created"}'
SIGNED_AT = 1715313600


def _header(body: bytes = BODY, key: str = KEY, timestamp: int = SIGNED_AT) -> str:
    digest = hmac.new(key.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _delivery(kind: str = "invitee.created", **scheduled) -> dict:
    scheduled_event = {
        "uri": "https://api.calendly.com/scheduled_events/E1",
        "name": "Discovery call",
        "event_type": "https://api.calendly.com/event_types/T1",
        "status": "active",
        "start_time": "2024-05-12T15:00:00.000000Z",
        "created_at": "2024-05-10T09:00:00.000000Z",
    }
    scheduled_event.update(scheduled)
    return {
        "event": kind,
        "created_at": "2024-05-10T09:00:01.000000Z",
        "payload": {
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "created_at": "2024-05-10T09:00:00.000000Z",
            "scheduled_event": scheduled_event,
        },
    }


def test_valid_signature_passes():
    verify_signature(_header(), BODY, KEY, now=SIGNED_AT + 10)


def test_signature_over_other_body_is_rejected():
    with pytest.raises(WebhookSignatureError) as excinfo:
        verify_signature(_header(b"{}"), BODY, KEY, now=SIGNED_AT)

    assert excinfo.value.status_code == 401


def test_wrong_key_is_rejected():
    with pytest.raises(WebhookSignatureError):
        verify_signature(_header(key="other"), BODY, KEY, now=SIGNED_AT)


def test_old_delivery_is_rejected():
    with pytest.raises(WebhookSignatureError) as excinfo:
        verify_signature(_header(), BODY, KEY, tolerance_seconds=180, now=SIGNED_AT + 600)

    assert "tolerance" in excinfo.value.message


@pytest.mark.parametrize("header", [None, "", "v1=abc", "t=123"])
def test_missing_or_malformed_header_is_a_bad_request(header):
    with pytest.raises(WebhookSignatureError) as excinfo:
        verify_signature(header, BODY, KEY, now=SIGNED_AT)

    assert excinfo.value.status_code == 400


def test_created_delivery_maps_event_and_invitee():
    event, detail = parse_delivery(_delivery())

    assert event.event_id == "https://api.calendly.com/scheduled_events/E1"
    assert event.event_type_id == "https://api.calendly.com/event_types/T1"
    assert event.status is EventStatus.ACTIVE
    assert event.start_time.tzinfo is not None
    assert detail.invitee_email == "ada@example.com"


def test_canceled_delivery_is_cancelled_regardless_of_event_status():
    event, _ = parse_delivery(_delivery("invitee.canceled", status="active"))

    assert event.status is EventStatus.CANCELLED


def test_nested_invitee_and_missing_created_at_fall_back():
    delivery = _delivery(created_at=None)
    delivery["payload"]["invitee"] = {"name": "Grace", "email": "grace@example.com"}

    event, detail = parse_delivery(delivery)

    assert detail.invitee_name == "Grace"
    assert event.created_at.isoformat().startswith("2024-05-10T09:00:01")


def test_other_event_kinds_are_ignored():
    assert parse_delivery({"event": "routing_form_submission.created", "payload": {}}) is None


def test_delivery_without_scheduled_event_is_invalid():
    with pytest.raises(ValueError):
        parse_delivery({"event": "invitee.created", "payload": {"email": "ada@example.com"}})


def test_delivery_without_start_time_is_invalid():
    with pytest.raises(ValidationError):
        parse_delivery(_delivery(start_time=None))
