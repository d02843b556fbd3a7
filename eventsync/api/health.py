"""Health check and alert routes."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from eventsync.core.exceptions import StoreUnavailableError
from eventsync.runtime import get_monitor, get_store

router = APIRouter(prefix="/health")


class HealthCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: Optional[str] = Field(default=None, alias="tenantId")
    provider: Optional[str] = None


@router.post("/check")
def run_health_check(payload: HealthCheckRequest) -> JSONResponse:
    try:
        report = get_monitor().run_health_check(payload.tenant_id, payload.provider)
    except StoreUnavailableError as exc:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": {"message": exc.message, "code": "store_unavailable"}},
        )
    return JSONResponse({"success": True, **report})


@router.get("/alerts")
def list_alerts(
    tenant_id: Optional[str] = None, status: Optional[str] = "active", limit: int = 50
) -> dict:
    limit_value = max(1, min(limit, 200))
    alerts = get_store().list_alerts(tenant_id, status or None, limit_value)
    return {
        "alerts": [
            {
                "id": alert.id,
                "tenantId": alert.tenant_id,
                "provider": alert.provider,
                "metricType": alert.metric_type,
                "metricValue": alert.metric_value,
                "threshold": alert.threshold,
                "severity": alert.severity,
                "title": alert.title,
                "status": alert.status,
                "triggeredAt": alert.triggered_at.isoformat(),
                "acknowledgedAt": (
                    alert.acknowledged_at.isoformat() if alert.acknowledged_at else None
                ),
            }
            for alert in alerts
        ]
    }


@router.post("/alerts/{alert_id}/acknowledge")
def acknowledge_alert(alert_id: int) -> dict:
    if not get_store().acknowledge_alert(alert_id):
        raise HTTPException(status_code=404, detail="Active alert not found")
    return {"status": "ok"}
