"""CLI entry point for running the sync service."""

from __future__ import annotations

import os

import uvicorn


def main() -> None:
    """Run the FastAPI application with host/port overrides from the environment."""
    host = os.getenv("UVICORN_HOST", os.getenv("HOST", "127.0.0.1"))
    port = int(os.getenv("UVICORN_PORT", os.getenv("PORT", "3001")))
    # One process only: the scheduler and rate-limit state live in memory.
    reload_enabled = os.getenv("UVICORN_RELOAD", os.getenv("RELOAD", "false")).lower() == "true"

    uvicorn.run("eventsync.main:app", host=host, port=port, reload=reload_enabled)


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    main()
