"""
Migration CLI: ordering, idempotency and dry-run behaviour.

Uses a small stateful psycopg fake that understands the ledger statements the
CLI issues; a live-DB variant is skipped unless Postgres is reachable.
"""
from __future__ import annotations

import types
from pathlib import Path

import pytest
from click.testing import CliRunner

from backend.tools import migrate
from backend.tests.utils import db as db_utils


class _LedgerDB:
    def __init__(self, *, ledger_exists: bool = False, applied=(), fail_on: str | None = None) -> None:
        self.ledger_exists = ledger_exists
        self.applied = list(applied)
        self.fail_on = fail_on
        self.executed: list[str] = []
        self.commits = 0


class _Cursor:
    def __init__(self, db: _LedgerDB) -> None:
        self._db = db
        self._result = None

    def execute(self, sql, params=None):
        text = " ".join(str(sql).split()).lower()
        self._db.executed.append(text)
        if self._db.fail_on and self._db.fail_on in text:
            raise RuntimeError("syntax error")
        if text.startswith("select to_regclass"):
            self._result = [("tracker_schema_migrations",) if self._db.ledger_exists else (None,)]
        elif text.startswith("create table if not exists public.tracker_schema_migrations"):
            self._db.ledger_exists = True
        elif text.startswith("select name from"):
            self._result = [(n,) for n in self._db.applied]
        elif text.startswith("insert into public.tracker_schema_migrations"):
            self._db.applied.append(params[0])

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return list(self._result or [])

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _Conn:
    def __init__(self, db: _LedgerDB) -> None:
        self._db = db
        self.autocommit = True

    def cursor(self):
        return _Cursor(self._db)

    def commit(self):
        self._db.commits += 1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def _install(monkeypatch, db: _LedgerDB) -> None:
    monkeypatch.setattr(migrate, "psycopg", types.SimpleNamespace(connect=lambda dsn, **kw: _Conn(db)))


def _migrations_dir(tmp_path: Path) -> Path:
    (tmp_path / "0002_second.sql").write_text("create table two (id int);", encoding="utf-8")
    (tmp_path / "0001_first.sql").write_text("create table one (id int);", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
    return tmp_path


def test_bundled_migrations_are_listed_in_order():
    names = migrate.list_migrations()
    assert names == sorted(names)
    assert names[:2] == ["0001_course_tracker_tables.sql", "0002_progress_unique_keys.sql"]


def test_bundled_unique_keys_cover_both_progress_tables():
    sql = (migrate.MIGRATIONS_DIR / "0002_progress_unique_keys.sql").read_text(encoding="utf-8")
    assert "unique (course_id, user_id)" in sql
    assert "unique (item_id, user_id)" in sql


def test_applies_pending_files_in_order_and_records_them(monkeypatch, tmp_path):
    db = _LedgerDB()
    _install(monkeypatch, db)
    result = CliRunner().invoke(
        migrate.cli, ["--db-dsn", "postgresql://x@h/db", "--migrations-dir", str(_migrations_dir(tmp_path))]
    )
    assert result.exit_code == 0, result.output
    assert db.applied == ["0001_first.sql", "0002_second.sql"]
    ran = [s for s in db.executed if s.startswith("create table one") or s.startswith("create table two")]
    assert ran == ["create table one (id int);", "create table two (id int);"]
    assert "Applied 2 migration(s)." in result.output


def test_already_applied_files_are_skipped(monkeypatch, tmp_path):
    db = _LedgerDB(ledger_exists=True, applied=["0001_first.sql"])
    _install(monkeypatch, db)
    result = CliRunner().invoke(
        migrate.cli, ["--db-dsn", "postgresql://x@h/db", "--migrations-dir", str(_migrations_dir(tmp_path))]
    )
    assert result.exit_code == 0, result.output
    assert not any(s.startswith("create table one") for s in db.executed)
    assert db.applied == ["0001_first.sql", "0002_second.sql"]

    again = CliRunner().invoke(
        migrate.cli, ["--db-dsn", "postgresql://x@h/db", "--migrations-dir", str(tmp_path)]
    )
    assert again.exit_code == 0
    assert "Schema is up to date." in again.output


def test_dry_run_writes_nothing(monkeypatch, tmp_path):
    db = _LedgerDB()
    _install(monkeypatch, db)
    result = CliRunner().invoke(
        migrate.cli,
        ["--db-dsn", "postgresql://x@h/db", "--dry-run", "--migrations-dir", str(_migrations_dir(tmp_path))],
    )
    assert result.exit_code == 0, result.output
    assert "Would apply 0001_first.sql" in result.output
    assert db.applied == []
    assert db.ledger_exists is False
    assert db.commits == 0


def test_target_stops_after_named_file(monkeypatch, tmp_path):
    db = _LedgerDB()
    _install(monkeypatch, db)
    result = CliRunner().invoke(
        migrate.cli,
        [
            "--db-dsn",
            "postgresql://x@h/db",
            "--target",
            "0001_first.sql",
            "--migrations-dir",
            str(_migrations_dir(tmp_path)),
        ],
    )
    assert result.exit_code == 0, result.output
    assert db.applied == ["0001_first.sql"]


def test_unknown_target_is_a_usage_error(monkeypatch, tmp_path):
    _install(monkeypatch, _LedgerDB())
    result = CliRunner().invoke(
        migrate.cli,
        ["--db-dsn", "postgresql://x@h/db", "--target", "9999_nope.sql", "--migrations-dir", str(_migrations_dir(tmp_path))],
    )
    assert result.exit_code != 0
    assert "unknown migration" in result.output


def test_failure_aborts_with_non_zero_exit(monkeypatch, tmp_path):
    db = _LedgerDB(fail_on="create table two")
    _install(monkeypatch, db)
    result = CliRunner().invoke(
        migrate.cli, ["--db-dsn", "postgresql://x@h/db", "--migrations-dir", str(_migrations_dir(tmp_path))]
    )
    assert result.exit_code != 0
    assert db.applied == ["0001_first.sql"]
    assert "Migration failed (0002_second.sql)" in result.output


def test_live_db_migrations_are_idempotent():
    dsn = db_utils.require_db_or_skip()
    runner = CliRunner()
    first = runner.invoke(migrate.cli, ["--db-dsn", dsn])
    if first.exit_code != 0:
        pytest.skip(f"DSN lacks DDL privileges: {first.output.strip()[-200:]}")
    second = runner.invoke(migrate.cli, ["--db-dsn", dsn])
    assert second.exit_code == 0
    assert "Schema is up to date." in second.output
