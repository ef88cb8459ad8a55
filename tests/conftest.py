"""Pytest shared fixtures: config, fake directory, counting store, Flask client."""
import os
import pathlib
import sys
import threading
import time
from typing import Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any app imports (module-level app in flask_app)
os.environ.setdefault("DEMO_MODE", "true")
os.environ.setdefault("SESSION_BACKEND", "cookie")

import pytest
import requests
from flask import redirect

from sso_gateway.config import AppConfig
from sso_gateway.core.audit import AuditLogger
from sso_gateway.core.directory import DirectoryResult, DirectoryStatus
from sso_gateway.core.models import DirectoryRecord, IdentityProfile
from sso_gateway.core.store import InMemoryUserStore, UserStoreError


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from reaching real directories or providers.

    Tests that exercise the HTTP client patch requests.post themselves.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _unexpected(url, *args, **kwargs):
        raise RuntimeError(f"Unexpected network access in unit test: {url}")

    monkeypatch.setattr(requests, "post", _unexpected)
    monkeypatch.setattr(requests, "get", _unexpected)


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────
class FakeDirectory:
    """In-process directory with switchable outages and call counters."""

    def __init__(self, records: Optional[dict] = None, available: bool = True):
        self.records = dict(records or {})
        self.available = available
        self.create_failures = 0  # number of create calls that fail before succeeding
        self.lookup_calls = 0
        self.create_calls = 0
        self._next_id = 100
        self._lock = threading.Lock()

    def lookup_by_email(self, email):
        with self._lock:
            self.lookup_calls += 1
            if not self.available:
                return DirectoryResult.unavailable("timeout")
            record = self.records.get(email)
        if record is None:
            return DirectoryResult(DirectoryStatus.NOT_FOUND)
        return DirectoryResult(DirectoryStatus.FOUND, record)

    def create_if_absent(self, email, username, sso_type, metadata=None):
        with self._lock:
            self.create_calls += 1
            if not self.available:
                return DirectoryResult.unavailable("timeout")
            if self.create_failures > 0:
                self.create_failures -= 1
                return DirectoryResult.unavailable("connection reset")
            if email in self.records:
                return DirectoryResult(DirectoryStatus.ALREADY_EXISTS, reason="constraint-violation")
            self._next_id += 1
            record = DirectoryRecord(id=f"dir-{self._next_id}", email=email, username=username)
            self.records[email] = record
        return DirectoryResult(DirectoryStatus.CREATED, record)


class CountingStore(InMemoryUserStore):
    """In-memory store that counts calls and can be told to fail reads or creation."""

    def __init__(self, fail_create: bool = False, fail_read: bool = False):
        super().__init__()
        self.fail_create = fail_create
        self.fail_read = fail_read
        self.create_calls = 0
        self.lookup_calls = 0

    def get_user_by_email(self, email):
        self.lookup_calls += 1
        if self.fail_read:
            raise UserStoreError("connection refused")
        return super().get_user_by_email(email)

    def create_user(self, username, email, sso_type, sso_credentials):
        self.create_calls += 1
        if self.fail_create:
            raise UserStoreError("disk full")
        return super().create_user(username, email, sso_type, sso_credentials)


class NonUniqueStore(CountingStore):
    """Store without an email uniqueness constraint and a slow insert.

    Widens the read-then-create window so missing serialization shows up
    as duplicate records.
    """

    def __init__(self, delay: float = 0.02):
        super().__init__()
        self.delay = delay
        self.rows = []

    def get_user_by_email(self, email):
        self.lookup_calls += 1
        for row in self.rows:
            if row.email == email:
                return row
        return None

    def create_user(self, username, email, sso_type, sso_credentials):
        self.create_calls += 1
        time.sleep(self.delay)
        from sso_gateway.core.models import LocalUser
        user = LocalUser(id=len(self.rows) + 1, username=username, email=email,
                         sso_type=sso_type, sso_credentials=dict(sso_credentials))
        self.rows.append(user)
        return user


class FakeOAuthClient:
    """Stands in for the authlib Flask client."""

    def __init__(self, userinfo: Optional[dict] = None, error: Optional[Exception] = None):
        self.userinfo_claims = userinfo or {}
        self.error = error
        self.redirect_uris = []

    def authorize_redirect(self, redirect_uri, **kwargs):
        self.redirect_uris.append(redirect_uri)
        return redirect("https://accounts.google.com/o/oauth2/v2/auth?client_id=test-client")

    def authorize_access_token(self, **kwargs):
        if self.error is not None:
            raise self.error
        return {
            "access_token": "access-123",
            "refresh_token": "refresh-456",
            "userinfo": dict(self.userinfo_claims),
        }

    def userinfo(self, **kwargs):
        return dict(self.userinfo_claims)


def make_profile(email="a@x.com", provider="google", **overrides) -> IdentityProfile:
    values = dict(
        email=email,
        display_name="Alice Example",
        provider_subject_id="sub-1",
        photo_url="https://example.com/a.png",
        access_token="access-123",
        refresh_token="refresh-456",
        provider=provider,
    )
    values.update(overrides)
    return IdentityProfile(**values)


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def directory():
    return FakeDirectory()


@pytest.fixture()
def store():
    return CountingStore()


@pytest.fixture()
def audit(tmp_path):
    return AuditLogger(tmp_path / "audit", "test-signing-key")


@pytest.fixture()
def app_config(tmp_path):
    return AppConfig(
        demo_mode=True,
        app_env="development",
        secret_key="test-secret",
        session_cookie_secure=False,
        session_backend="filesystem",
        session_dir=str(tmp_path / "sessions"),
        google_client_id="test-client",
        google_client_secret="test-client-secret",
        callback_url="http://localhost/login/callback",
        audit_log_dir=str(tmp_path / "audit"),
        audit_log_signing_key="test-signing-key",
    )


@pytest.fixture()
def oauth_client():
    return FakeOAuthClient(userinfo={
        "email": "a@x.com",
        "name": "Alice Example",
        "sub": "sub-1",
        "picture": "https://example.com/a.png",
    })


@pytest.fixture()
def flask_app(monkeypatch, app_config, store, directory, audit, oauth_client):
    """App wired to fakes; the OAuth client is replaced by FakeOAuthClient."""
    from sso_gateway.api import auth
    from sso_gateway.flask_app import create_app

    app = create_app(app_config, store=store, directory=directory, audit=audit)
    app.config.update(TESTING=True)
    monkeypatch.setattr(auth, "get_oauth_client", lambda: oauth_client)
    return app


@pytest.fixture()
def client(flask_app):
    with flask_app.test_client() as client:
        yield client


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires running stack)"
    )
