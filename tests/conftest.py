"""
tests/conftest.py -- Shared test fixtures for authkeep unit and integration tests.

This module provides:
  - FakeClock: a controllable time source injected wherever "now" matters
  - RecordingNotifier / FailingNotifier: in-memory stand-ins for SmtpNotifier
  - store / hasher / issuer / one_time / service: unit-level components wired
    over a private in-memory SQLite database
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
api_client because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit fixtures call the store from one thread, so a private
:memory: database is enough there.

Environment variables must be set before any authkeep import: get_settings()
is cached on first call and api.main reads it at import time.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.notifier import NotificationError
from auth.one_time import OneTimeTokenStore
from auth.passwords import PasswordHasher
from auth.service import AuthService, build_auth_service
from auth.store import CredentialStore
from auth.tokens import SessionTokenIssuer
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars"
STRONG_PASSWORD = "Password123"

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable time source that only moves when a test advances it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    """Captures outbound links instead of sending email."""

    def __init__(self) -> None:
        self.verifications: list[tuple[str, str]] = []
        self.resets: list[tuple[str, str]] = []

    def send_verification_link(self, email: str, token: str) -> None:
        self.verifications.append((email, token))

    def send_password_reset_link(self, email: str, token: str) -> None:
        self.resets.append((email, token))

    def last_verification_token(self, email: str) -> str:
        return [t for e, t in self.verifications if e == email][-1]

    def last_reset_token(self, email: str) -> str:
        return [t for e, t in self.resets if e == email][-1]


class FailingNotifier:
    """Simulates a mail relay outage."""

    def send_verification_link(self, email: str, token: str) -> None:
        raise NotificationError("relay down")

    def send_password_reset_link(self, email: str, token: str) -> None:
        raise NotificationError("relay down")


# ---------------------------------------------------------------------------
# Unit-level component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> Generator[CredentialStore, None, None]:
    s = CredentialStore("sqlite:///:memory:", clock=clock)
    yield s
    s.close()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    # 4 is bcrypt's minimum cost; production uses Settings.bcrypt_rounds.
    return PasswordHasher(rounds=4)


@pytest.fixture
def issuer(clock: FakeClock) -> SessionTokenIssuer:
    return SessionTokenIssuer(
        secret_key=TEST_SECRET,
        access_ttl=3600,
        extended_ttl=30 * 86400,
        refresh_ttl=30 * 86400,
        clock=clock,
    )


@pytest.fixture
def one_time(store: CredentialStore, clock: FakeClock) -> OneTimeTokenStore:
    return OneTimeTokenStore(store, clock=clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(
    store: CredentialStore,
    hasher: PasswordHasher,
    issuer: SessionTokenIssuer,
    one_time: OneTimeTokenStore,
    notifier: RecordingNotifier,
) -> AuthService:
    return AuthService(
        store=store,
        hasher=hasher,
        issuer=issuer,
        one_time=one_time,
        notifier=notifier,
        verification_ttl=timedelta(hours=24),
        reset_ttl=timedelta(hours=1),
    )


@pytest.fixture
def failing_service(
    store: CredentialStore,
    hasher: PasswordHasher,
    issuer: SessionTokenIssuer,
    one_time: OneTimeTokenStore,
) -> AuthService:
    """AuthService whose notifier raises on every send."""
    return AuthService(store=store, hasher=hasher, issuer=issuer, one_time=one_time, notifier=FailingNotifier())


# ---------------------------------------------------------------------------
# API integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and a service with a recording notifier into
    app.state so routes never touch the production database or SMTP relay.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, CredentialStore, RecordingNotifier], None, None]:
    """Yield (client, store, notifier) for API integration tests.

    One TestClient per test module for speed. Tests share the database, so
    each test registers its own email address. TestClient keeps cookies
    between requests; tests that need an anonymous request clear them first.
    """
    store = CredentialStore("sqlite:///file:test_authkeep_api?mode=memory&cache=shared&uri=true")
    recorder = RecordingNotifier()
    service = build_auth_service(get_settings(), store, notifier=recorder)

    app.router.lifespan_context = _patch_lifespan(store, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store, recorder

    store.close()
