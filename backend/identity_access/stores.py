"""
In-memory session store for development and tests.

Why: The tracker only consumes an identity; sessions are established by the
external identity layer. Locally (and under pytest) this store stands in for
it so the web adapter can resolve an opaque cookie to the acting user.

Security: Cookies carry only an opaque session id. The subject stays server-side.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import secrets
import threading
import time

from backend.identity_access.guard import CurrentUser


def _now() -> int:
    return int(time.time())


@dataclass(frozen=True)
class _Session:
    sub: str
    expires_at: int


class SessionStore:
    """Maps opaque session ids to subjects until they expire or are revoked."""

    def __init__(self, *, default_ttl_seconds: int = 3600):
        self._default_ttl = default_ttl_seconds
        self._sessions: Dict[str, _Session] = {}
        self._lock = threading.Lock()

    def issue(self, sub: str, *, ttl_seconds: Optional[int] = None) -> str:
        """Start a session for `sub` and return its opaque id."""
        sub = (sub or "").strip()
        if not sub:
            raise ValueError("sub required")
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        sid = secrets.token_urlsafe(24)
        with self._lock:
            self._sessions[sid] = _Session(sub=sub, expires_at=_now() + ttl)
        return sid

    def resolve(self, session_id: str) -> Optional[CurrentUser]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.expires_at < _now():
                del self._sessions[session_id]
                return None
        return CurrentUser(sub=session.sub)

    def revoke(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        """Drop expired sessions; returns how many were removed."""
        now = _now()
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if s.expires_at < now]
            for sid in stale:
                del self._sessions[sid]
        return len(stale)
