"""
tests/conftest.py -- Shared test fixtures for the parts catalog integration tests.

This module provides:
  - FakeClock: injectable clock for the SessionAuthority (move time, no sleeps)
  - make_stores(): isolated in-memory DBs for users + catalog
  - _patch_lifespan(): wires test stores, config and authority into app.state
  - user_factory / clock: function-scoped fixtures for store-level tests
  - api_env: module-scoped TestClient plus handles on stores and clock

Every account created here has the password "correct-horse-1".

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

Each "device" in a test is its own TestClient (own cookie jar) over the same
app; only the module fixture enters the lifespan.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.session import SessionAuthority
from auth.store import UserStore
from auth.tokens import hash_password
from catalog.store import CatalogStore
from core.config import AppConfig, get_settings

DEFAULT_PASSWORD = "correct-horse-1"

START = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock for SessionAuthority. Starts at START; only moves forward.

    step, when set, is added after every read so consecutive calls inside one
    request see distinct instants.
    """

    def __init__(self, start: datetime = START) -> None:
        self.now = start
        self.step = timedelta(0)

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.step
        return current

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_stores(db_suffix: str) -> tuple[UserStore, CatalogStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    user_url = f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true"
    catalog_url = f"sqlite:///file:test_catalog_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=user_url), CatalogStore(db_url=catalog_url)


def make_user(
    store: UserStore,
    role: str = "user",
    posisi: str | None = None,
    prefix: str | None = None,
    password: str = DEFAULT_PASSWORD,
) -> User:
    """Create an account with a unique username; return it as stored."""
    username = f"{prefix or role}-{uuid.uuid4().hex[:8]}"
    user_id = store.create_user(
        User(username=username, role=role, posisi=posisi, password_hash=hash_password(password))
    )
    return store.get_by_id(user_id)


@pytest.fixture
def user_factory():
    """The make_user helper, for tests that create accounts directly in a store."""
    return make_user


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _patch_lifespan(
    user_store: UserStore,
    catalog_store: CatalogStore,
    clock: FakeClock,
    upload_dir: Path,
):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database, and gives the
    SessionAuthority the fake clock.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.config = AppConfig.from_settings(get_settings())
        app.state.user_store = user_store
        app.state.catalog_store = catalog_store
        app.state.authority = SessionAuthority(user_store, app.state.config, clock=clock)
        app.state.upload_dir = upload_dir
        app.state.max_upload_bytes = 1024
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixture -- one app lifespan per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiEnv:
    client: TestClient
    user_store: UserStore
    catalog_store: CatalogStore
    clock: FakeClock
    upload_dir: Path

    def device(self) -> TestClient:
        """A fresh client with its own cookie jar (a second browser/device)."""
        return TestClient(app, raise_server_exceptions=True)

    def make_user(self, role: str = "user", posisi: str | None = None, prefix: str | None = None) -> User:
        return make_user(self.user_store, role=role, posisi=posisi, prefix=prefix)

    def login(self, user: User, password: str = DEFAULT_PASSWORD) -> TestClient:
        """Return a new device already logged in as user. Fails the test if login fails."""
        device = self.device()
        resp = device.post("/api/login", json={"username": user.username, "password": password})
        assert resp.status_code == 200, resp.text
        return device


@pytest.fixture(scope="module")
def api_env(request, tmp_path_factory) -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv bound to isolated stores for the requesting module."""
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    user_store, catalog_store = make_stores(suffix)
    clock = FakeClock()
    upload_dir = tmp_path_factory.mktemp(f"uploads_{suffix}")

    app.router.lifespan_context = _patch_lifespan(user_store, catalog_store, clock, upload_dir)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(
            client=client,
            user_store=user_store,
            catalog_store=catalog_store,
            clock=clock,
            upload_dir=upload_dir,
        )

    user_store.close()
    catalog_store.close()
