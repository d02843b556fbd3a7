"""Service logging: console output plus a rotating JSON-lines file.

Every record carries the ``request_id`` of the HTTP trigger that caused it and
the ``tenant_id`` the orchestrator is currently working on, both taken from
context variables so call sites never pass them explicitly.
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import pathlib
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Iterator

_LOG_CONFIGURED = False
_REQUEST_ID_CTX: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
_TENANT_ID_CTX: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "tenant_id", default=None
)

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent

_CONSOLE_FORMAT = (
    "%(asctime)s %(levelname)s [%(name)s] %(message)s "
    "(tenant=%(tenant_id)s request_id=%(request_id)s)"
)
_QUIET_LOGGERS = ("apscheduler", "uvicorn", "httpx")


class SyncContextFilter(logging.Filter):
    """Copy the bound request and tenant onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _REQUEST_ID_CTX.get()
        if getattr(record, "tenant_id", None) is None:
            record.tenant_id = _TENANT_ID_CTX.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields become top-level keys."""

    _STANDARD = frozenset(
        vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in self._STANDARD and not key.startswith("_") and value is not None
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def set_request_id(request_id: str | None) -> contextvars.Token[str | None]:
    return _REQUEST_ID_CTX.set(request_id)


def reset_request_id(token: contextvars.Token[str | None]) -> None:
    _REQUEST_ID_CTX.reset(token)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


@contextmanager
def bind_tenant(tenant_id: str) -> Iterator[None]:
    """Tag every record logged inside the block with ``tenant_id``."""
    token = _TENANT_ID_CTX.set(tenant_id)
    try:
        yield
    finally:
        _TENANT_ID_CTX.reset(token)


def get_tenant_id() -> str | None:
    return _TENANT_ID_CTX.get()


def _log_file_path() -> pathlib.Path:
    path = pathlib.Path(os.getenv("LOG_FILE", "logs/eventsync.jsonl"))
    if not path.is_absolute():
        path = BASE_DIR.parent / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _build_handlers(context_filter: logging.Filter) -> list[logging.Handler]:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    console = logging.StreamHandler()
    console.setLevel(getattr(logging, level_name, logging.INFO))
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))

    jsonl = RotatingFileHandler(_log_file_path(), maxBytes=10_000_000, backupCount=5)
    jsonl.setLevel(logging.INFO)
    jsonl.setFormatter(JsonFormatter())

    for handler in (console, jsonl):
        handler.addFilter(context_filter)
    return [console, jsonl]


def configure_logging() -> None:
    """Install the service handlers on the root logger once per process."""
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    for handler in _build_handlers(SyncContextFilter()):
        root_logger.addHandler(handler)

    # APScheduler logs every job execution at INFO.
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _LOG_CONFIGURED = True


__all__ = [
    "JsonFormatter",
    "SyncContextFilter",
    "bind_tenant",
    "configure_logging",
    "get_request_id",
    "get_tenant_id",
    "reset_request_id",
    "set_request_id",
]
