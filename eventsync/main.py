"""FastAPI application entry point."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from eventsync.api import admin, health, sync, webhooks
from eventsync.core.config import load_config
from eventsync.logging import configure_logging, get_request_id
from eventsync.middleware.request_context import RequestContextMiddleware
from eventsync.runtime import get_scheduler
from eventsync.storage.database import init_db
from eventsync.telemetry.events import record_event

configure_logging()

logger = logging.getLogger("eventsync.app")

app = FastAPI(
    title="Event Sync",
    version="0.1.0",
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    redoc_url=None,
)
app.include_router(sync.router)
app.include_router(health.router)
app.include_router(admin.router)
app.include_router(webhooks.router)
app.add_middleware(RequestContextMiddleware)


@app.on_event("startup")
async def on_startup() -> None:
    init_db()
    load_config()
    get_scheduler().start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    get_scheduler().shutdown()


@app.exception_handler(Exception)
async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error",
        extra={
            "event": "request_error",
            "path": request.url.path,
            "request_id": get_request_id(),
        },
    )
    record_event(
        "request_error",
        "ERROR",
        message=str(exc),
        meta={"path": request.url.path},
    )
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "message": "Internal server error",
                "code": "internal_error",
            },
        },
    )
