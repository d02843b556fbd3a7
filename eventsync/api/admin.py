"""Admin endpoints for tenant integrations, credentials and activity."""

from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from eventsync.core.config import load_config
from eventsync.runtime import get_store
from eventsync.storage.credentials import delete_access_token, upsert_access_token
from eventsync.telemetry.events import list_recent_events, record_event

router = APIRouter(prefix="/admin")


class AccessTokenBody(BaseModel):
    access_token: str = Field(min_length=1)
    user_uri: Optional[str] = None


class TrackedEventTypesBody(BaseModel):
    event_types: Dict[str, Optional[str]]


def _require_provider(provider: str) -> None:
    if load_config().get_provider(provider) is None:
        raise HTTPException(status_code=404, detail="Provider not configured")


@router.get("/integrations")
def list_integrations(tenant_id: Optional[str] = None, provider: Optional[str] = None) -> dict:
    data = []
    for integration in get_store().list_integrations(tenant_id, provider):
        data.append(
            {
                "tenant_id": integration.tenant_id,
                "provider": integration.provider,
                "is_connected": integration.is_connected,
                "last_sync": integration.last_sync.isoformat() if integration.last_sync else None,
                "health_score": integration.health_score,
                "data_quality_score": integration.data_quality_score,
                "last_health_check": (
                    integration.last_health_check.isoformat()
                    if integration.last_health_check
                    else None
                ),
            }
        )
    return {"integrations": data}


@router.put("/tenants/{tenant_id}/credentials/{provider}")
def set_access_token(tenant_id: str, provider: str, body: AccessTokenBody) -> dict:
    """Store a token handed over by the OAuth flow and mark the integration connected."""
    _require_provider(provider)
    upsert_access_token(tenant_id, provider, body.access_token, body.user_uri)
    get_store().connect_integration(tenant_id, provider)
    record_event(
        "tenant_credentials_updated",
        "INFO",
        tenant_id=tenant_id,
        provider=provider,
        message="Access token saved via admin",
        meta={"source": "admin_credentials"},
    )
    return {"status": "ok"}


@router.delete("/tenants/{tenant_id}/credentials/{provider}")
def delete_credentials(tenant_id: str, provider: str) -> dict:
    if not delete_access_token(tenant_id, provider):
        raise HTTPException(status_code=404, detail="Tenant credential not found")
    return {"status": "ok"}


@router.get("/tenants/{tenant_id}/event-types")
def get_event_types(tenant_id: str) -> dict:
    return {"event_types": get_store().get_tracked_event_types(tenant_id)}


@router.put("/tenants/{tenant_id}/event-types")
def set_event_types(tenant_id: str, body: TrackedEventTypesBody) -> dict:
    get_store().set_tracked_event_types(tenant_id, body.event_types)
    return {"status": "ok", "tracked": len(body.event_types)}


@router.post("/tenants/{tenant_id}/integrations/{provider}/disconnect")
def disconnect_integration(tenant_id: str, provider: str) -> dict:
    if not get_store().disconnect_integration(tenant_id, provider):
        raise HTTPException(status_code=404, detail="Integration not found")
    record_event(
        "integration_disconnected",
        "INFO",
        tenant_id=tenant_id,
        provider=provider,
        message="Integration disconnected via admin",
    )
    return {"status": "ok"}


@router.get("/events")
def list_events(limit: int = 25, tenant_id: Optional[str] = None) -> dict:
    """Return recent activity for operators."""
    limit_value = max(1, min(limit, 100))
    return {"events": list_recent_events(limit=limit_value, tenant_id=tenant_id)}
