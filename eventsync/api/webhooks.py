"""Inbound provider webhooks."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from eventsync.core.config import load_config
from eventsync.core.exceptions import WebhookSignatureError
from eventsync.providers.calendly_webhooks import SIGNATURE_HEADER, verify_signature
from eventsync.runtime import get_store
from eventsync.sync.webhooks import WebhookIngestor
from eventsync.telemetry.events import record_event

logger = logging.getLogger("eventsync.api.webhooks")

router = APIRouter(prefix="/webhooks")


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"message": message, "code": code}},
    )


@router.post("/calendly")
async def calendly_webhook(request: Request) -> JSONResponse:
    settings = load_config().webhooks
    if not settings.signing_key:
        logger.error("Webhook received but no signing key is configured")
        return _error(503, "Webhook signing key not configured", "webhook_not_configured")

    body = await request.body()
    try:
        verify_signature(
            request.headers.get(SIGNATURE_HEADER),
            body,
            settings.signing_key,
            tolerance_seconds=settings.tolerance_seconds,
        )
    except WebhookSignatureError as exc:
        logger.warning(
            "Webhook rejected",
            extra={"event": "webhook_rejected", "error_message": exc.message},
        )
        record_event("webhook_rejected", "WARNING", provider="calendly", message=exc.message)
        return _error(exc.status_code, exc.message, "invalid_signature")

    try:
        delivery = json.loads(body)
        if not isinstance(delivery, dict):
            raise ValueError("Delivery must be a JSON object")
        outcome = WebhookIngestor(get_store(), provider="calendly").ingest(delivery)
    except ValueError as exc:
        logger.warning(
            "Webhook payload invalid",
            extra={"event": "webhook_invalid", "error_message": str(exc)},
        )
        return _error(400, "Invalid webhook payload", "invalid_payload")
    except SQLAlchemyError as exc:
        logger.exception("Webhook event could not be stored", extra={"event": "webhook_store_failed"})
        return _error(500, f"Cannot store webhook event: {exc}", "store_unavailable")

    return JSONResponse({"success": True, **outcome.as_dict()})
