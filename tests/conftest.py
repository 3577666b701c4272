"""
tests/conftest.py -- Shared test fixtures for WoLGate tests.

This module provides:
  - make_service(): an AuthService over a fresh MemoryCredentialStore
  - _patch_lifespan(): wires a test AuthService into app.state, bypassing real startup
  - client: TestClient (follow_redirects=False) on an empty instance (setup mode)
  - seeded_client: same, with user alice/password-1 already registered
  - otp_client: same, with user bob/password-2 registered with a TOTP secret

Design: each test gets its own in-memory store, so setup mode and renames in
one test never leak into the next. The app object is shared; only
app.router.lifespan_context is swapped per fixture.

Environment variables must be set before any core/auth import:
  DEBUG=true          -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4     -- minimum work factor keeps the suite fast
  LOGIN_RATE_LIMIT    -- low enough to trip in a test; counters reset per test
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager, contextmanager

# CRITICAL: Set these before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "5/minute")
os.environ.setdefault("DATABASE_URL", "memory://")

import pyotp
import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth import otp
from auth.service import AuthService
from auth.store import MemoryCredentialStore
from auth.tokens import SESSION_COOKIE, SessionIssuer

TEST_SECRET_KEY = "test-secret-key-0123456789abcdef0123456789"

# A fixed, valid base32 secret so tests can compute codes themselves.
OTP_SECRET = pyotp.random_base32(length=32)


def make_service(expire_seconds: int = 3600) -> AuthService:
    return AuthService(MemoryCredentialStore(), SessionIssuer(TEST_SECRET_KEY, expire_seconds))


def current_code(secret: str = OTP_SECRET) -> str:
    return otp.build_totp(secret).now()


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        yield
        service.store.close()

    return test_lifespan


@contextmanager
def _client_for(service: AuthService) -> Generator[TestClient, None, None]:
    # follow_redirects=False: tests assert on Location headers, which are
    # invisible once the client follows the redirect.
    app.router.lifespan_context = _patch_lifespan(service)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """The limiter is module-global; start every test with empty counters."""
    limiter.reset()


@pytest.fixture
def service() -> AuthService:
    return make_service()


@pytest.fixture
def client() -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) for an instance with no users yet."""
    svc = make_service()
    with _client_for(svc) as c:
        yield c, svc


@pytest.fixture
def seeded_client() -> Generator[tuple[TestClient, AuthService, str], None, None]:
    """Yield (client, service, token) with alice/password-1 registered and logged in.

    The cookie is NOT pre-set on the client; tests that need a session call
    login_as() so anonymous behaviour stays easy to test.
    """
    svc = make_service()
    token = svc.setup("alice", "password-1")
    with _client_for(svc) as c:
        yield c, svc, token


@pytest.fixture
def otp_client() -> Generator[tuple[TestClient, AuthService, str], None, None]:
    """Yield (client, service, token) with bob/password-2 registered under OTP_SECRET."""
    svc = make_service()
    token = svc.setup("bob", "password-2", otp_secret=OTP_SECRET, otp_code=current_code())
    with _client_for(svc) as c:
        yield c, svc, token


def login_as(client: TestClient, token: str) -> None:
    client.cookies.set(SESSION_COOKIE, token)
