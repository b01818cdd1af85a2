"""In-memory session store: opaque ids resolve to the acting user until expiry or revocation."""
from __future__ import annotations

import pytest

from backend.identity_access import stores
from backend.identity_access.guard import CurrentUser
from backend.identity_access.stores import SessionStore


def test_issued_session_resolves_to_current_user():
    store = SessionStore()
    sid = store.issue("user-1")
    assert sid and "user-1" not in sid
    assert store.resolve(sid) == CurrentUser(sub="user-1")
    assert store.resolve("unknown") is None


def test_blank_subject_is_rejected():
    with pytest.raises(ValueError):
        SessionStore().issue("   ")


def test_expired_session_is_dropped(monkeypatch):
    store = SessionStore()
    sid = store.issue("user-1", ttl_seconds=10)
    now = stores._now()
    monkeypatch.setattr(stores, "_now", lambda: now + 11)
    assert store.resolve(sid) is None


def test_revoke_removes_session():
    store = SessionStore()
    sid = store.issue("user-1")
    store.revoke(sid)
    assert store.resolve(sid) is None
    store.revoke(sid)


def test_purge_expired_keeps_live_sessions(monkeypatch):
    store = SessionStore(default_ttl_seconds=100)
    short = store.issue("user-1", ttl_seconds=5)
    live = store.issue("user-2")
    now = stores._now()
    monkeypatch.setattr(stores, "_now", lambda: now + 10)
    assert store.purge_expired() == 1
    assert store.resolve(short) is None
    assert store.resolve(live) == CurrentUser(sub="user-2")
