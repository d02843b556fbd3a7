"""Sync trigger routes."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from eventsync.core.config import load_config
from eventsync.core.exceptions import (
    NoConnectedTenantsError,
    RemoteUnavailableError,
    StoreUnavailableError,
)
from eventsync.runtime import get_orchestrator
from eventsync.sync.planner import SyncMode

logger = logging.getLogger("eventsync.api.sync")

router = APIRouter(prefix="/sync")


class SyncRunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: SyncMode = SyncMode.INCREMENTAL
    tenant_id: Optional[str] = Field(default=None, alias="tenantId")
    days_back: Optional[int] = Field(default=None, alias="daysBack", ge=0)
    provider: Optional[str] = None


class StatusRefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: Optional[str] = Field(default=None, alias="tenantId")
    provider: Optional[str] = None


SYNC_RUN_EXAMPLES = {
    "incremental": {
        "summary": "Incremental sync for every tenant",
        "value": {"mode": "incremental"},
    },
    "deep": {
        "summary": "Deep resync of one tenant",
        "value": {"mode": "deep", "tenantId": "tenant-123"},
    },
    "default": {
        "summary": "Fixed look-back",
        "value": {"mode": "default", "daysBack": 14},
    },
}


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"message": message, "code": code}},
    )


def _resolve_provider(requested: Optional[str]) -> tuple[str, Optional[JSONResponse]]:
    config = load_config()
    provider = requested or config.default_provider
    if config.get_provider(provider) is None:
        return provider, _error(404, f"Provider '{provider}' not configured", "provider_not_found")
    return provider, None


@router.post(
    "/run",
    openapi_extra={
        "requestBody": {"content": {"application/json": {"examples": SYNC_RUN_EXAMPLES}}}
    },
)
async def run_sync(payload: SyncRunRequest) -> JSONResponse:
    provider, not_found = _resolve_provider(payload.provider)
    if not_found is not None:
        return not_found
    try:
        summary = await get_orchestrator().run_sync(
            payload.mode,
            payload.tenant_id,
            provider=provider,
            days_back=payload.days_back,
        )
    except NoConnectedTenantsError:
        return _error(404, "No connected integrations found", "no_connected_tenants")
    except StoreUnavailableError as exc:
        return _error(500, exc.message, "store_unavailable")
    except RemoteUnavailableError as exc:
        return _error(500, exc.message, "provider_unavailable")

    return JSONResponse(
        {
            "success": True,
            "message": f"{payload.mode.value} sync completed",
            "stats": summary.stats(),
            "results": [outcome.as_dict() for outcome in summary.outcomes],
        }
    )


@router.post("/status-refresh")
async def refresh_statuses(payload: StatusRefreshRequest) -> JSONResponse:
    provider, not_found = _resolve_provider(payload.provider)
    if not_found is not None:
        return not_found
    try:
        stats = await get_orchestrator().refresh_statuses(payload.tenant_id, provider=provider)
    except NoConnectedTenantsError:
        return _error(404, "No connected integrations found", "no_connected_tenants")
    except StoreUnavailableError as exc:
        return _error(500, exc.message, "store_unavailable")
    except RemoteUnavailableError as exc:
        return _error(500, exc.message, "provider_unavailable")

    results = stats.pop("results")
    return JSONResponse({"success": True, "stats": stats, "results": results})
