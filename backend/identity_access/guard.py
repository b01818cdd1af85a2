"""
Authorization guard for tracker actions.

Why:
    Every action needs the acting user and must fail closed without one. The
    identity collaborator places a user mapping into request context; callers
    pass that object in explicitly instead of the action reaching into
    ambient state.

Behavior:
    - Accepts a mapping with at least `sub` (e.g. `request.state.user`) or an
      existing `CurrentUser`.
    - Returns a frozen `CurrentUser`.
    - Raises `UnauthorizedError` when the user is missing or has no `sub`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from backend.tracking.errors import UnauthorizedError

UNAUTHORIZED_MESSAGE = "You must be signed in to perform this action."


@dataclass(frozen=True)
class CurrentUser:
    sub: str


def require_user(user: Any) -> CurrentUser:
    if isinstance(user, CurrentUser):
        if not user.sub:
            raise UnauthorizedError(UNAUTHORIZED_MESSAGE, detail="unauthenticated")
        return user
    if not isinstance(user, Mapping):
        raise UnauthorizedError(UNAUTHORIZED_MESSAGE, detail="unauthenticated")
    sub = str(user.get("sub") or "").strip()
    if not sub:
        raise UnauthorizedError(UNAUTHORIZED_MESSAGE, detail="unauthenticated")
    return CurrentUser(sub=sub)


__all__ = ["CurrentUser", "require_user", "UNAUTHORIZED_MESSAGE"]
