"Course tracker web application"
from __future__ import annotations

import logging
import os
import sys

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.identity_access.stores import SessionStore
from backend.web import config as _cfg
from backend.web.routes.operations import operations_router
from backend.web.routes.tracker import tracker_router


def _under_pytest() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via TRACKER_ENABLE_DOTENV (default true outside pytest).
    """
    if _under_pytest():
        return False
    flag = (os.getenv("TRACKER_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    from dotenv import load_dotenv

    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

# --- App & Settings Setup -------------------------------------------------------

class AppSettings:
    def __init__(self) -> None:
        self._env_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return os.getenv("TRACKER_ENV", "dev").lower()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env


logger = logging.getLogger("tracker.identity_access")
SETTINGS = AppSettings()
SESSION_COOKIE_NAME = "tracker_session"
# Sessions are established by the external identity layer; this store resolves them.
SESSION_STORE = SessionStore()

app = FastAPI(title="Course Tracker", description="Track courses, items and learner progress", version="0.1.0")

# --- Session Middleware ---------------------------------------------------------

@app.middleware("http")
async def resolve_session(request: Request, call_next):
    """Expose the acting user (or None) on `request.state.user`.

    Never rejects a request: authorization is the guard's job inside each route.
    """
    request.state.user = None
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    if sid:
        try:
            request.state.user = SESSION_STORE.resolve(sid)
        except Exception as exc:
            logger.warning("Session store resolve failed: %s", exc.__class__.__name__)
    return await call_next(request)

# --- Security Headers Middleware ----------------------------------------------

@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    # JSON-only API: nothing may be framed, scripted or embedded.
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    if SETTINGS.environment == "prod":
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response

# --- Error Mapping ------------------------------------------------------------

@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    # Malformed JSON or a non-object body: same contract as model validation (400, not 422).
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    return JSONResponse(
        {"error": "bad_request", "detail": "invalid_input", "fields": fields},
        status_code=400,
        headers={"Cache-Control": "private, no-store"},
    )

# --- Routers ------------------------------------------------------------------

app.include_router(tracker_router)
app.include_router(operations_router)
