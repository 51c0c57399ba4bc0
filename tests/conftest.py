"""
tests/conftest.py -- Shared test fixtures for SafeEd unit and integration tests.

This module provides:
  - FakeClock / clock: a controllable clock injected into tokens and lockout
  - store: an isolated in-memory CredentialStore per test
  - service: an AuthService wired with a cheap bcrypt cost and the fake clock
  - make_institution / make_student: registration-input factories
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture gets a unique name so tests never see each other's rows.

DEBUG and RATE_LIMIT_ENABLED must be set before any api/auth/core import:
get_settings() then auto-generates SECRET_KEY instead of raising, and the
shared limiter is built disabled.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set env before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import InstitutionRegistration, Location, StudentRegistration
from auth.passwords import PasswordHasher
from auth.service import AuthService, create_auth_service
from auth.store import CredentialStore
from core.config import AuthConfig

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars-long"

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 15, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Core collaborators
# ---------------------------------------------------------------------------


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    """bcrypt at the minimum cost factor. One per session; the dummy hash is reused."""
    return PasswordHasher(rounds=4)


@pytest.fixture
def config() -> AuthConfig:
    return AuthConfig(secret_key=TEST_SECRET)


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore(db_url=_memory_url("test_store"))
    yield s
    s.close()


@pytest.fixture
def service(store: CredentialStore, config: AuthConfig, hasher: PasswordHasher, clock: FakeClock) -> AuthService:
    return create_auth_service(store, config, hasher=hasher, clock=clock)


# ---------------------------------------------------------------------------
# Input factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_institution() -> Callable[..., InstitutionRegistration]:
    def _make(**overrides) -> InstitutionRegistration:
        values = dict(
            name="Springfield High",
            institution_id="SCH-001",
            email="a@sch.edu",
            password="Abc12345!",
            phone="9876543210",
            location=Location(
                state="Maharashtra",
                district="Pune",
                city="Pune",
                pincode="411001",
                address="12 Main Road, Shivaji Nagar",
            ),
        )
        values.update(overrides)
        return InstitutionRegistration(**values)

    return _make


@pytest.fixture
def make_student() -> Callable[..., StudentRegistration]:
    def _make(**overrides) -> StudentRegistration:
        values = dict(
            institution_id="SCH-001",
            name="Asha Patel",
            roll_no=5,
            division="A",
            class_name="10",
            admission_year=2022,
            phone="9123456780",
            parent_phone="9988776655",
            email="s@sch.edu",
            password="secret1",
        )
        values.update(overrides)
        return StudentRegistration(**values)

    return _make


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test store and auth service into app.state so
    TestClient routes see an isolated in-memory DB and the cheap hasher.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture
def api_client(hasher: PasswordHasher, config: AuthConfig) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app backed by a fresh in-memory store.

    Uses the real clock: tokens issued through the API must verify against
    wall time.
    """
    api_store = CredentialStore(db_url=_memory_url("test_api"))
    api_service = create_auth_service(api_store, config, hasher=hasher)
    app.router.lifespan_context = _patch_lifespan(api_store, api_service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    api_store.close()


@pytest.fixture
def institution_payload() -> dict:
    return {
        "name": "Springfield High",
        "institution_id": "sch-001",
        "email": "Admin@Springfield.edu",
        "password": "Abc12345!",
        "confirm_password": "Abc12345!",
        "phone": "9876543210",
        "location": {
            "state": "Maharashtra",
            "district": "Pune",
            "city": "Pune",
            "pincode": "411001",
            "address": "12 Main Road, Shivaji Nagar",
        },
    }


@pytest.fixture
def student_payload() -> dict:
    return {
        "institution_id": "SCH-001",
        "name": "Asha Patel",
        "roll_no": 5,
        "division": "A",
        "class_name": "10",
        "admission_year": 2022,
        "phone": "9123456780",
        "parent_phone": "9988776655",
        "email": "asha@springfield.edu",
        "password": "secret1",
    }
