"""
Application-level errors raised by the tracker actions.

The classes subclass the builtins the rest of the codebase already catches
(`LookupError` for missing rows, `PermissionError` for missing identity), so
adapters can keep using `except LookupError` while still reading `.code`.
"""
from __future__ import annotations


class ActionError(Exception):
    code = "INTERNAL"

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or self.code.lower()


class UnauthorizedError(ActionError, PermissionError):
    code = "UNAUTHORIZED"


class NotFoundError(ActionError, LookupError):
    code = "NOT_FOUND"


def course_not_found() -> NotFoundError:
    return NotFoundError("Course not found.", detail="course_not_found")


def course_item_not_found() -> NotFoundError:
    return NotFoundError("Course item not found.", detail="course_item_not_found")


__all__ = [
    "ActionError",
    "UnauthorizedError",
    "NotFoundError",
    "course_not_found",
    "course_item_not_found",
]
