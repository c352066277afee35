"""
tests/conftest.py -- Shared test fixtures for Gatekeeper.

This module provides:
  - RecordingMailer: in-process Mailer that records every send
  - store / service: an isolated in-memory UserStore and an AuthService on it
  - api: TestClient harness wired to the same collaborators via a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
Each fixture instance gets its own DB name so tests never share records.

Environment must be set before any api/auth/core import: DEBUG lets
get_settings() auto-generate the JWT secrets, ALLOWED_HOSTS admits the
TestClient's "testserver" host, and BCRYPT_ROUNDS keeps hashing fast.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: set before any app import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.codes import CodeGenerator
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings
from mail.mailer import TemplateKind

ACCESS_SECRET = "access-secret-for-tests-0123456789abcdef"
REFRESH_SECRET = "refresh-secret-for-tests-0123456789abcdef"
CLIENT_URL = "http://client.test"


# ---------------------------------------------------------------------------
# Collaborator doubles
# ---------------------------------------------------------------------------


@dataclass
class SentEmail:
    to: str
    kind: TemplateKind
    params: dict


@dataclass
class RecordingMailer:
    """Mailer double. Set fail=True to simulate an unreachable mail server."""

    fail: bool = False
    sent: list[SentEmail] = field(default_factory=list)

    def send(self, to: str, kind: TemplateKind, params: dict) -> bool:
        if self.fail:
            return False
        self.sent.append(SentEmail(to, kind, dict(params)))
        return True

    def last(self, kind: TemplateKind) -> SentEmail:
        matches = [m for m in self.sent if m.kind is kind]
        assert matches, f"no {kind.value} email was sent"
        return matches[-1]

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Store / service fixtures
# ---------------------------------------------------------------------------


def make_store() -> UserStore:
    name = f"test_auth_{uuid.uuid4().hex}"
    return UserStore(db_url=f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


def make_service(store, mailer, codec: TokenCodec | None = None, codes: CodeGenerator | None = None) -> AuthService:
    return AuthService(
        store=store,
        mailer=mailer,
        codec=codec or TokenCodec(ACCESS_SECRET, REFRESH_SECRET),
        hasher=PasswordHasher(rounds=4),
        codes=codes or CodeGenerator(),
        client_url=CLIENT_URL,
    )


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(ACCESS_SECRET, REFRESH_SECRET)


@pytest.fixture
def service(store: UserStore, mailer: RecordingMailer, codec: TokenCodec) -> AuthService:
    return make_service(store, mailer, codec)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_rate_limits() -> None:
    """Every test starts with empty admission-filter counters.

    All TestClient requests share one client address ("testclient"), so
    without this the signup budget would run out a few tests in.
    """
    limiter.reset()


def _patch_lifespan(user_store: UserStore, mailer: RecordingMailer, codec: TokenCodec, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test collaborators into app.state so routes see the same store
    and mailer the test inspects, and no SMTP connection is attempted.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.user_store = user_store
        app.state.mailer = mailer
        app.state.token_codec = codec
        app.state.auth_service = service
        yield

    return test_lifespan


@dataclass
class ApiHarness:
    client: TestClient
    store: UserStore
    mailer: RecordingMailer
    codec: TokenCodec


@pytest.fixture
def api(
    store: UserStore, mailer: RecordingMailer, codec: TokenCodec, service: AuthService
) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around a TestClient running the real app.

    The client keeps cookies between requests like a browser, so tokens set by
    signup/login are sent automatically on later calls.
    """
    app.router.lifespan_context = _patch_lifespan(store, mailer, codec, service)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, store=store, mailer=mailer, codec=codec)


@pytest.fixture
def service_factory(store: UserStore, mailer: RecordingMailer):
    """Build an AuthService on the shared store/mailer with custom codec or code TTLs."""

    def factory(codec: TokenCodec | None = None, codes: CodeGenerator | None = None) -> AuthService:
        return make_service(store, mailer, codec=codec, codes=codes)

    return factory
