"""Unit tests for session binding and rehydration."""
from flask import Flask, session

from sso_gateway.core.session import SESSION_USER_KEY, SessionManager
from sso_gateway.core.store import InMemoryUserStore


def _user(store, email="a@x.com"):
    return store.create_user(email, email, "google", {"access_token": "t"})


def test_bind_then_resolve_returns_same_user():
    store = InMemoryUserStore()
    manager = SessionManager(store)
    user = _user(store)
    sess = {}

    manager.bind(sess, user)

    assert sess == {SESSION_USER_KEY: user.id}
    resolved = manager.resolve(sess)
    assert resolved.id == user.id
    assert resolved.email == "a@x.com"


def test_bind_discards_previous_session_data():
    store = InMemoryUserStore()
    manager = SessionManager(store)
    sess = {"user_id": 999, "next": "/admin", "csrf": "old"}

    manager.bind(sess, _user(store))

    assert set(sess) == {SESSION_USER_KEY}


def test_resolve_empty_session_is_unauthenticated():
    manager = SessionManager(InMemoryUserStore())
    assert manager.resolve({}) is None


def test_resolve_deleted_user_drops_id():
    store = InMemoryUserStore()
    manager = SessionManager(store)
    user = _user(store)
    sess = {}
    manager.bind(sess, user)

    store.delete_user(user.id)

    assert manager.resolve(sess) is None
    assert SESSION_USER_KEY not in sess


def test_clear_removes_everything():
    store = InMemoryUserStore()
    manager = SessionManager(store)
    sess = {}
    manager.bind(sess, _user(store))

    manager.clear(sess)

    assert sess == {}


def test_bind_marks_flask_session_permanent():
    app = Flask(__name__)
    app.secret_key = "test-secret"
    store = InMemoryUserStore()
    manager = SessionManager(store)
    user = _user(store)

    with app.test_request_context("/"):
        manager.bind(session, user)
        assert session.permanent is True
        assert session[SESSION_USER_KEY] == user.id


def test_custom_session_key():
    store = InMemoryUserStore()
    manager = SessionManager(store, key="uid")
    sess = {}

    manager.bind(sess, _user(store))

    assert "uid" in sess
    assert manager.resolve(sess) is not None
