"""
Configuration and startup security checks for the course tracker.

Why: Prevent accidental insecure deployments. This module provides a single
guard that enforces minimal production safety constraints without burdening
local development.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def configured_dsn() -> str:
    """Return the DSN the repository would use from env, or an empty string."""
    for key in ("TRACKER_DATABASE_URL", "DATABASE_URL"):
        val = (os.getenv(key, "") or "").strip()
        if val:
            return val
    return ""


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - A database DSN must be configured (no silent in-memory fallback).
    - The DSN must not explicitly disable TLS.
    - TRACKER_REPO=memory is forbidden.
    """
    env = os.getenv("TRACKER_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    dsn = configured_dsn()
    if not dsn:
        raise SystemExit(
            "Refusing to start: TRACKER_DATABASE_URL (or DATABASE_URL) must be set in production."
        )

    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: database DSN contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    if (os.getenv("TRACKER_REPO", "") or "").strip().lower() == "memory":
        raise SystemExit(
            "Refusing to start: TRACKER_REPO=memory is not allowed in production/staging."
        )
