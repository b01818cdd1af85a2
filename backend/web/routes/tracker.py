"""
Course tracker API routes.

Why:
    Expose the tracker actions (courses, items, progress) over HTTP. The
    adapter resolves the acting user from request state, runs the CSRF guard
    on writes, validates payloads and delegates to the service layer. It holds
    no business rules of its own.

Notes:
    - Errors use the shared payload shape: `{"error": ..., "detail": ...}` and
      every response carries `Cache-Control: private, no-store`.
    - A course owned by someone else answers 404, never 403, so callers cannot
      probe for foreign ids.
    - Persistence: Prefers the Postgres-backed repo when psycopg imports and a
      DSN is configured; falls back to the in-memory repo otherwise. Tests call
      `set_repo` to swap implementations.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from typing import Any, Callable, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from backend.identity_access.guard import CurrentUser, require_user
from backend.tracking.errors import NotFoundError, UnauthorizedError
from backend.tracking.inputs import (
    CreateCourseInput,
    DeleteCourseItemInput,
    GetCourseInput,
    ListCoursesInput,
    SaveCourseItemInput,
    UpdateCourseInput,
    UpdateCourseItemProgressInput,
    UpsertCourseProgressInput,
)
from backend.tracking.repo_memory import InMemoryTrackerRepo
from backend.tracking.services import CourseItemsService, CoursesService, ProgressService
from backend.web.config import configured_dsn

from .security import _is_same_origin

tracker_router = APIRouter(tags=["Tracker"])  # explicit paths below
logger = logging.getLogger("tracker.web.courses")


# Try to use DB-backed repo when available; fallback to in-memory for dev/tests
try:  # late import to avoid hard dependency during unit tests
    from backend.tracking.repo_db import HAVE_PSYCOPG, DBTrackerRepo
except Exception as exc:  # pragma: no cover - import failures in dev/test envs
    DBTrackerRepo = None  # type: ignore
    HAVE_PSYCOPG = False
    _DB_REPO_IMPORT_ERROR: Optional[Exception] = exc
else:
    _DB_REPO_IMPORT_ERROR = None


def _build_default_repo():
    """Prefer DB-backed repo; fall back to in-memory if unavailable."""
    if (os.getenv("TRACKER_REPO", "") or "").strip().lower() == "memory":
        return InMemoryTrackerRepo()
    if DBTrackerRepo is None or not HAVE_PSYCOPG:
        if _DB_REPO_IMPORT_ERROR:
            logger.warning("Tracker repo import failed: %s", type(_DB_REPO_IMPORT_ERROR).__name__)
        logger.warning("psycopg unavailable; using in-memory tracker repo")
        return InMemoryTrackerRepo()
    dsn = configured_dsn()
    if not dsn:
        logger.warning("No database DSN configured; using in-memory tracker repo")
        return InMemoryTrackerRepo()
    try:
        return DBTrackerRepo(dsn)
    except Exception as exc:  # pragma: no cover - exercised when psycopg misbehaves
        logger.warning("Tracker repo unavailable (%s); using in-memory fallback", type(exc).__name__)
        return InMemoryTrackerRepo()


"""Lazy repo accessor to avoid import-time DB checks in tests."""
_REPO = None


def _get_repo():  # pragma: no cover - simple accessor
    global _REPO
    if _REPO is None:
        _REPO = _build_default_repo()
    return _REPO


def set_repo(repo) -> None:
    """Allow tests to swap the tracker repository implementation."""
    global _REPO
    _REPO = repo


def _courses_service() -> CoursesService:
    return CoursesService(_get_repo())


def _items_service() -> CourseItemsService:
    return CourseItemsService(_get_repo())


def _progress_service() -> ProgressService:
    return ProgressService(_get_repo())


# --- Response helpers ------------------------------------------------------------

def _json_private(payload, *, status_code: int = 200) -> JSONResponse:
    """Return a JSONResponse with cache disabled for shared caches and browsers.

    Rationale: Tracker endpoints expose owner-scoped data. To avoid accidental
    caching in proxies or browsers, respond with "private, no-store".
    """
    return JSONResponse(content=payload, status_code=status_code, headers={"Cache-Control": "private, no-store"})


def _private_error(payload: dict, *, status_code: int, vary_origin: bool = False) -> JSONResponse:
    """Return error JSON with private, no-store cache headers."""
    headers = {"Cache-Control": "private, no-store"}
    if vary_origin:
        headers["Vary"] = "Origin"
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


def _bad_request(fields: list[str]) -> JSONResponse:
    return _private_error(
        {"error": "bad_request", "detail": "invalid_input", "fields": fields},
        status_code=400,
    )


def _validation_fields(exc: ValidationError) -> list[str]:
    fields = {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
    return sorted(fields)


def _csrf_guard(request: Request) -> JSONResponse | None:
    """Enforce same-origin for browser write requests.

    Behavior:
        - In production or when STRICT_CSRF_TRACKER=true, require that either
          Origin or Referer is present AND same-origin. Missing or foreign
          headers result in 403 with detail=csrf_violation.
        - In non-strict modes, fall back to best-effort `_is_same_origin`,
          which permits requests without these headers (server-to-server calls).
    """
    prod_env = (os.getenv("TRACKER_ENV", "dev") or "").lower() == "prod"
    strict_toggle = (os.getenv("STRICT_CSRF_TRACKER", "false") or "").lower() == "true"
    strict = prod_env or strict_toggle

    if strict:
        origin_present = (request.headers.get("origin") or request.headers.get("referer"))
        if not origin_present or (not _is_same_origin(request)):
            return _private_error({"error": "forbidden", "detail": "csrf_violation"}, status_code=403, vary_origin=True)
        return None

    if not _is_same_origin(request):
        return _private_error({"error": "forbidden", "detail": "csrf_violation"}, status_code=403, vary_origin=True)
    return None


def _authenticate(request: Request):
    """Return (user, error_response) for the acting user in request state."""
    try:
        return require_user(getattr(request.state, "user", None)), None
    except UnauthorizedError:
        return None, _private_error({"error": "unauthenticated"}, status_code=401)


def _parse_id(value: str) -> Optional[int]:
    """Parse a positive integer path id without letting FastAPI answer 422."""
    try:
        parsed = int(str(value))
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def _run(action: Callable[[], Any]):
    """Invoke a service action, mapping domain errors to (result, error_response)."""
    try:
        return action(), None
    except ValidationError as exc:
        return None, _bad_request(_validation_fields(exc))
    except UnauthorizedError:
        return None, _private_error({"error": "unauthenticated"}, status_code=401)
    except NotFoundError as exc:
        return None, _private_error({"error": "not_found", "detail": exc.detail}, status_code=404)


def _body(payload: dict[str, Any], **path_values: Any) -> dict[str, Any]:
    # Path parameters win over anything the body claims.
    merged = dict(payload or {})
    merged.update(path_values)
    return merged


def _tail(user: CurrentUser) -> str:
    return user.sub[-6:]


# --- Courses ---------------------------------------------------------------------

@tracker_router.post("/api/tracker/courses")
async def create_course(request: Request, payload: dict[str, Any]):
    """Create a course owned by the caller.

    Behavior:
        - 201 with `{course}` on success (level/status defaulted when omitted)
        - 400 on invalid input (empty title, unknown enum, malformed url)
        - 401 without a session, 403 on CSRF violation
    """
    user, error = _authenticate(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    course, error = _run(lambda: _courses_service().create_course(user, CreateCourseInput.model_validate(payload)))
    if error:
        return error
    logger.info("course created id=%s owner=...%s", course.id, _tail(user))
    return _json_private({"course": asdict(course)}, status_code=201)


@tracker_router.get("/api/tracker/courses")
async def list_courses(request: Request, status: str | None = None):
    """List the caller's courses, optionally filtered by exact `status`."""
    user, error = _authenticate(request)
    if error:
        return error
    courses, error = _run(
        lambda: _courses_service().list_my_courses(user, ListCoursesInput.model_validate({"status": status}))
    )
    if error:
        return error
    return _json_private({"courses": [asdict(c) for c in courses]})


@tracker_router.get("/api/tracker/courses/{course_id}")
async def get_course(request: Request, course_id: str):
    """Return `{course, items}` for an owned course; 404 for missing or foreign ids."""
    user, error = _authenticate(request)
    if error:
        return error
    cid = _parse_id(course_id)
    if cid is None:
        return _bad_request(["id"])
    result, error = _run(lambda: _courses_service().get_course_with_items(user, GetCourseInput(id=cid)))
    if error:
        return error
    course, items = result
    return _json_private({"course": asdict(course), "items": [asdict(i) for i in items]})


@tracker_router.patch("/api/tracker/courses/{course_id}")
async def update_course(request: Request, course_id: str, payload: dict[str, Any]):
    """Partially update an owned course.

    Behavior:
        - Fields absent from the body (or sent as null) stay untouched.
        - An empty body returns the stored course unchanged.
        - 404 for missing or foreign courses.
    """
    user, error = _authenticate(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    cid = _parse_id(course_id)
    if cid is None:
        return _bad_request(["id"])
    course, error = _run(
        lambda: _courses_service().update_course(user, UpdateCourseInput.model_validate(_body(payload, id=cid)))
    )
    if error:
        return error
    return _json_private({"course": asdict(course)})


# --- Items -----------------------------------------------------------------------

@tracker_router.post("/api/tracker/courses/{course_id}/items")
async def create_course_item(request: Request, course_id: str, payload: dict[str, Any]):
    """Create an item in an owned course (201 `{item}`)."""
    user, error = _authenticate(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    cid = _parse_id(course_id)
    if cid is None:
        return _bad_request(["course_id"])
    item, error = _run(
        lambda: _items_service().save_course_item(
            user, SaveCourseItemInput.model_validate(_body(payload, id=None, course_id=cid))
        )
    )
    if error:
        return error
    return _json_private({"item": asdict(item)}, status_code=201)


@tracker_router.put("/api/tracker/courses/{course_id}/items/{item_id}")
async def replace_course_item(request: Request, course_id: str, item_id: str, payload: dict[str, Any]):
    """Fully replace an item; omitted optional fields reset to their defaults.

    An item that belongs to a different course answers 404; items are never
    moved between courses.
    """
    user, error = _authenticate(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    cid = _parse_id(course_id)
    iid = _parse_id(item_id)
    if cid is None or iid is None:
        return _bad_request([name for name, v in (("course_id", cid), ("id", iid)) if v is None])
    item, error = _run(
        lambda: _items_service().save_course_item(
            user, SaveCourseItemInput.model_validate(_body(payload, id=iid, course_id=cid))
        )
    )
    if error:
        return error
    return _json_private({"item": asdict(item)})


@tracker_router.delete("/api/tracker/courses/{course_id}/items/{item_id}")
async def delete_course_item(request: Request, course_id: str, item_id: str):
    """Delete an item from an owned course and return the deleted row."""
    user, error = _authenticate(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    cid = _parse_id(course_id)
    iid = _parse_id(item_id)
    if cid is None or iid is None:
        return _bad_request([name for name, v in (("course_id", cid), ("id", iid)) if v is None])
    item, error = _run(
        lambda: _items_service().delete_course_item(user, DeleteCourseItemInput(id=iid, course_id=cid))
    )
    if error:
        return error
    logger.info("course item deleted id=%s course=%s owner=...%s", iid, cid, _tail(user))
    return _json_private({"item": asdict(item)})


# --- Progress --------------------------------------------------------------------

@tracker_router.put("/api/tracker/courses/{course_id}/progress")
async def upsert_course_progress(request: Request, course_id: str, payload: dict[str, Any]):
    """Record the caller's progress on an owned course (single atomic upsert)."""
    user, error = _authenticate(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    cid = _parse_id(course_id)
    if cid is None:
        return _bad_request(["course_id"])
    progress, error = _run(
        lambda: _progress_service().upsert_course_progress(
            user, UpsertCourseProgressInput.model_validate(_body(payload, course_id=cid))
        )
    )
    if error:
        return error
    return _json_private({"progress": asdict(progress)})


@tracker_router.put("/api/tracker/items/{item_id}/progress")
async def update_item_progress(request: Request, item_id: str, payload: dict[str, Any]):
    """Record the caller's progress on one item of an owned course."""
    user, error = _authenticate(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    iid = _parse_id(item_id)
    if iid is None:
        return _bad_request(["item_id"])
    progress, error = _run(
        lambda: _progress_service().update_course_item_progress(
            user, UpdateCourseItemProgressInput.model_validate(_body(payload, item_id=iid))
        )
    )
    if error:
        return error
    return _json_private({"progress": asdict(progress)})
