"""Command line entry point for applying the course tracker SQL migrations.

Why:
    Schema changes ship as plain `.sql` files under
    `backend/tracking/migrations/`. The CLI applies pending files in name order
    and records every applied file in `public.tracker_schema_migrations` so
    repeated runs are no-ops.

Usage:
    python -m backend.tools.migrate --db-dsn postgresql://... [--dry-run] [--target NAME]
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Set

import click

try:  # pragma: no cover - import guard for optional dependency
    import psycopg  # type: ignore
except Exception:  # pragma: no cover
    psycopg = None  # type: ignore

logger = logging.getLogger("tracker.migrate")

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "tracking" / "migrations"
LEDGER_TABLE = "public.tracker_schema_migrations"


def list_migrations(directory: Optional[Path] = None) -> List[str]:
    """Return migration file names in the order they are applied."""
    base = Path(directory) if directory is not None else MIGRATIONS_DIR
    return sorted(p.name for p in base.glob("*.sql") if p.is_file())


def _ensure_psycopg() -> None:
    if psycopg is None:  # pragma: no cover - defensive branch
        click.echo("psycopg is required for the migration CLI.", err=True)
        raise click.Abort()


def _ledger_exists(conn: "psycopg.Connection") -> bool:
    with conn.cursor() as cur:  # type: ignore[attr-defined]
        cur.execute("select to_regclass(%s)", (LEDGER_TABLE,))
        row = cur.fetchone()
    return bool(row and row[0])


def _ensure_ledger(conn: "psycopg.Connection") -> None:
    """Create the bookkeeping table when missing (idempotent)."""
    with conn.cursor() as cur:  # type: ignore[attr-defined]
        cur.execute(
            f"""
            create table if not exists {LEDGER_TABLE} (
              name text primary key,
              applied_at timestamptz not null default now()
            )
            """
        )
    conn.commit()


def _applied(conn: "psycopg.Connection") -> Set[str]:
    with conn.cursor() as cur:  # type: ignore[attr-defined]
        cur.execute(f"select name from {LEDGER_TABLE}")
        return {str(r[0]) for r in cur.fetchall()}


def _pending(all_names: List[str], applied: Set[str], target: Optional[str]) -> List[str]:
    if target is not None:
        if target not in all_names:
            raise click.BadParameter(f"unknown migration: {target}", param_hint="--target")
        all_names = all_names[: all_names.index(target) + 1]
    return [n for n in all_names if n not in applied]


def _apply_one(conn: "psycopg.Connection", directory: Path, name: str) -> None:
    sql_text = (directory / name).read_text(encoding="utf-8")
    with conn.cursor() as cur:  # type: ignore[attr-defined]
        cur.execute(sql_text)
        cur.execute(f"insert into {LEDGER_TABLE} (name) values (%s)", (name,))
    conn.commit()


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--db-dsn", required=True, envvar="TRACKER_DATABASE_URL", help="DSN with DDL privileges.")
@click.option("--dry-run", is_flag=True, default=False, help="List pending migrations without applying them.")
@click.option("--target", type=str, required=False, help="Stop after applying this migration file.")
@click.option(
    "--migrations-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the .sql files (defaults to the bundled set).",
)
def cli(db_dsn: str, dry_run: bool, target: Optional[str], migrations_dir: Optional[Path]) -> None:
    """Apply pending course tracker migrations.

    Behaviour:
        - Creates the ledger table when missing (skipped in dry-run).
        - Applies each pending file in its own transaction and records it.
        - Stops at the first failure with a non-zero exit; earlier files stay applied.
    """
    _ensure_psycopg()
    directory = migrations_dir or MIGRATIONS_DIR
    names = list_migrations(directory)
    mode_text = "DRY-RUN" if dry_run else "LIVE"
    click.echo(f"Starting tracker migrations ({mode_text})")

    current: Optional[str] = None
    try:
        with psycopg.connect(db_dsn) as conn:  # type: ignore[arg-type]
            conn.autocommit = False
            if dry_run:
                applied = _applied(conn) if _ledger_exists(conn) else set()
            else:
                _ensure_ledger(conn)
                applied = _applied(conn)
            pending = _pending(names, applied, target)
            if not pending:
                click.echo("Schema is up to date.")
                return
            for name in pending:
                current = name
                if dry_run:
                    click.echo(f"Would apply {name}")
                    continue
                click.echo(f"Applying {name}")
                _apply_one(conn, directory, name)
                logger.info("migration applied name=%s", name)
            if dry_run:
                click.echo(f"Dry-run complete; {len(pending)} migration(s) pending.")
            else:
                click.echo(f"Applied {len(pending)} migration(s).")
    except click.ClickException:
        raise
    except Exception as exc:
        logger.warning("migration failed name=%s error=%s", current, type(exc).__name__)
        click.echo(f"Migration failed ({current or 'setup'}): {exc}", err=True)
        raise click.Abort() from exc


if __name__ == "__main__":  # pragma: no cover
    cli()
