from __future__ import annotations

from contextlib import contextmanager

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from eventsync.storage import credentials
from eventsync.storage.database import Base
from eventsync.storage.store import LocalStore
from eventsync.telemetry import events


@pytest.fixture(autouse=True)
def session_scope(monkeypatch):
    """Swap every module-level session scope for an in-memory SQLite database."""

    engine = create_engine("sqlite:///:memory:", future=True)
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
    Base.metadata.create_all(engine)

    @contextmanager
    def _session_scope():
        session = TestingSession()
        try:
            yield session
            session.commit()
        except Exception:  # pragma: no cover - defensive
            session.rollback()
            raise
        finally:
            session.close()

    monkeypatch.setattr(credentials, "session_scope", _session_scope)
    monkeypatch.setattr(events, "session_scope", _session_scope)

    yield _session_scope

    engine.dispose()


@pytest.fixture
def store(session_scope) -> LocalStore:
    return LocalStore(session_scope)
