"""
tests/conftest.py -- Shared test fixtures for ICT4Events.

This module provides:
  - db: a fresh in-memory Database for unit tests of the data layer and stores
  - _make_test_database(): a named shared-memory Database for the ASGI app
  - _patch_lifespan(): wires the test database and stores into app.state
  - web_client: TestClient (follow_redirects=False) plus a seeded account

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the app because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

DEBUG, RATE_LIMIT_ENABLED and ALLOWED_HOSTS must be set before any app
module import: get_settings() is read at import time.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from data.database import Database
from timeline.store import TimelineStore

# Mount the web router once; asgi.py does this in production.
try:
    from web.routes import router as web_router

    app.include_router(web_router, tags=["Web UI"])
except Exception:
    pass  # Router already included

TEST_EMAIL = "jan@example.nl"
TEST_PASSWORD = "correct-horse-1"


@dataclass
class WebHarness:
    client: TestClient
    db: Database
    user_store: UserStore
    timeline: TimelineStore
    user_id: int


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db() -> Generator[Database, None, None]:
    """Fresh in-memory Database with an empty catalog."""
    database = Database("sqlite:///:memory:")
    yield database
    database.close()


@pytest.fixture
def user_store(db: Database) -> UserStore:
    return UserStore(db)


@pytest.fixture
def timeline_store(db: Database, user_store: UserStore) -> TimelineStore:
    return TimelineStore(db)


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


def _make_test_database(db_suffix: str) -> Database:
    return Database(f"sqlite:///file:test_ict4events_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(db: Database, user_store: UserStore, timeline: TimelineStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.db = db
        app.state.user_store = user_store
        app.state.timeline = timeline
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def _web_harness(request: pytest.FixtureRequest) -> Generator[WebHarness, None, None]:
    # One database per test module; shared-cache memory DBs outlive a single dispose.
    db = _make_test_database(request.module.__name__.rsplit(".", 1)[-1])
    user_store = UserStore(db)
    timeline = TimelineStore(db)
    uid = user_store.create_user(
        User(
            email=TEST_EMAIL,
            username="jan",
            name="Jan Jansen",
            hashed_password=hash_password(TEST_PASSWORD),
        )
    )

    app.router.lifespan_context = _patch_lifespan(db, user_store, timeline)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield WebHarness(client=client, db=db, user_store=user_store, timeline=timeline, user_id=uid)

    db.close()


@pytest.fixture
def web(_web_harness: WebHarness) -> WebHarness:
    """Module-shared app harness with the cookie jar cleared for each test.

    follow_redirects=False is essential: tests assert on redirect locations,
    which are invisible once the client follows them.
    """
    _web_harness.client.cookies.clear()
    return _web_harness


def login(client: TestClient, email: str = TEST_EMAIL, password: str = TEST_PASSWORD, **extra):
    """POST the login form and return the response."""
    return client.post("/Login", data={"email": email, "password": password, **extra})
