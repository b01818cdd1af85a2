"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
reset module-level singletons (tracker repo, session store) between tests.
"""
import pytest


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_tracker_env(monkeypatch: pytest.MonkeyPatch):
    """Clear env-driven toggles that may leak across tests.

    Individual tests opt into prod semantics, strict CSRF or proxy trust by
    setting the variable themselves.
    """
    for var in (
        "TRACKER_ENV",
        "TRACKER_REPO",
        "TRACKER_TRUST_PROXY",
        "STRICT_CSRF_TRACKER",
        "TRACKER_DATABASE_URL",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_tracker_repo_between_tests():
    """Give every test a fresh in-memory tracker repo.

    Tests that need the Postgres repo construct `DBTrackerRepo` themselves and
    skip when the database is unreachable.
    """
    from backend.tracking.repo_memory import InMemoryTrackerRepo
    from backend.web.routes import tracker

    tracker.set_repo(InMemoryTrackerRepo())
    yield
    tracker.set_repo(None)


@pytest.fixture(autouse=True)
def _reset_session_store(monkeypatch: pytest.MonkeyPatch):
    """Reset SESSION_STORE per test so sessions never leak between cases."""
    from backend.identity_access.stores import SessionStore
    from backend.web import main

    monkeypatch.setattr(main, "SESSION_STORE", SessionStore(), raising=False)
    yield
