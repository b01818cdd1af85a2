"""
Postgres-backed repository for the course tracker.

Security:
- Every call that knows the acting user sets `app.current_sub` for the
  transaction so Row Level Security policies can key on it.
- Owner filters are part of the WHERE clause; a non-owner gets `None`.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Timestamps are formatted in SQL so records carry stable ISO strings.
- Progress upserts are single `insert ... on conflict ... do update`
  statements backed by unique constraints (see migrations/0002).
"""
from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, List, Optional, Tuple

try:
    import psycopg
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    Json = None  # type: ignore
    HAVE_PSYCOPG = False

from .records import (
    DEFAULT_PROGRESS_STATUS,
    Course,
    CourseItem,
    CourseItemProgress,
    CourseProgress,
)

logger = logging.getLogger("tracker.tracking.repo_db")

_TS_FMT = 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"'

_COURSE_MUTABLE_FIELDS = ("title", "description", "provider", "platform", "url", "level", "tags", "status")


def _default_dsn() -> str:
    host = os.getenv("TEST_DB_HOST", "127.0.0.1")
    port = os.getenv("TEST_DB_PORT", "54322")
    return f"postgresql://tracker_app:tracker-app@{host}:{port}/postgres"


def _dsn() -> str:
    """Resolve the DSN for DB access, falling back to the local dev database."""
    candidates = [
        os.getenv("TRACKER_DATABASE_URL"),
        os.getenv("DATABASE_URL"),
        _default_dsn(),
    ]
    for dsn in candidates:
        if dsn:
            return dsn
    raise RuntimeError("Database DSN unavailable for DBTrackerRepo")


def _ts(column: str) -> str:
    return (
        f"case when {column} is null then null "
        f"else to_char({column} at time zone 'utc', '{_TS_FMT}') end"
    )


def _tail(value: Any) -> str:
    text = str(value or "")
    return text[-6:]


_COURSE_COLUMNS_SQL = f"""
    id,
    owner_id,
    title,
    description,
    provider,
    platform,
    url,
    level,
    tags,
    status,
    {_ts("created_at")},
    {_ts("updated_at")}
"""


def _course_from_row(row: Tuple) -> Course:
    return Course(
        id=int(row[0]),
        owner_id=row[1],
        title=row[2],
        description=row[3],
        provider=row[4],
        platform=row[5],
        url=row[6],
        level=row[7],
        tags=row[8],
        status=row[9],
        created_at=row[10],
        updated_at=row[11],
    )


_ITEM_COLUMNS_SQL = f"""
    id,
    course_id,
    type,
    title,
    description,
    position,
    {_ts("due_date")},
    estimated_minutes,
    is_required,
    {_ts("created_at")}
"""


def _item_from_row(row: Tuple) -> CourseItem:
    return CourseItem(
        id=int(row[0]),
        course_id=int(row[1]),
        type=row[2],
        title=row[3],
        description=row[4],
        position=int(row[5]) if row[5] is not None else 0,
        due_date=row[6],
        estimated_minutes=int(row[7]) if row[7] is not None else None,
        is_required=bool(row[8]),
        created_at=row[9],
    )


_COURSE_PROGRESS_COLUMNS_SQL = f"""
    id,
    course_id,
    user_id,
    status,
    {_ts("started_at")},
    {_ts("completed_at")},
    completion_percent,
    total_items,
    completed_items,
    last_visited_item_id,
    meta,
    {_ts("created_at")},
    {_ts("updated_at")}
"""


def _course_progress_from_row(row: Tuple) -> CourseProgress:
    return CourseProgress(
        id=int(row[0]),
        course_id=int(row[1]),
        user_id=row[2],
        status=row[3],
        started_at=row[4],
        completed_at=row[5],
        completion_percent=int(row[6]),
        total_items=int(row[7]),
        completed_items=int(row[8]),
        last_visited_item_id=int(row[9]) if row[9] is not None else None,
        meta=row[10],
        created_at=row[11],
        updated_at=row[12],
    )


_ITEM_PROGRESS_COLUMNS_SQL = f"""
    id,
    item_id,
    user_id,
    status,
    {_ts("started_at")},
    {_ts("completed_at")},
    notes,
    {_ts("created_at")}
"""


def _item_progress_from_row(row: Tuple) -> CourseItemProgress:
    return CourseItemProgress(
        id=int(row[0]),
        item_id=int(row[1]),
        user_id=row[2],
        status=row[3],
        started_at=row[4],
        completed_at=row[5],
        notes=row[6],
        created_at=row[7],
    )


class DBTrackerRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        """Initialize a Postgres-backed repository.

        Parameters:
            dsn: Optional explicit DSN. When omitted, resolves from env
                 (`TRACKER_DATABASE_URL`, `DATABASE_URL`) with a local fallback.

        Behavior:
            Does not open a connection eagerly; connections are per-call.
        """
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBTrackerRepo")
        self._dsn = dsn or _dsn()

    # --- Courses ----------------------------------------------------------------
    def create_course(
        self,
        *,
        owner_id: str,
        title: str,
        description: Optional[str],
        provider: Optional[str],
        platform: Optional[str],
        url: Optional[str],
        level: str,
        tags: Optional[str],
        status: str,
    ) -> Course:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (owner_id,))
                cur.execute(
                    f"""
                    insert into public.courses
                      (owner_id, title, description, provider, platform, url, level, tags, status)
                    values (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    returning {_COURSE_COLUMNS_SQL}
                    """,
                    (owner_id, title, description, provider, platform, url, level, tags, status),
                )
                row = cur.fetchone()
                conn.commit()
        return _course_from_row(row)

    def get_course_owned(self, course_id: int, owner_id: str) -> Optional[Course]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (owner_id,))
                cur.execute(
                    f"""
                    select {_COURSE_COLUMNS_SQL}
                      from public.courses
                     where id = %s and owner_id = %s
                    """,
                    (course_id, owner_id),
                )
                row = cur.fetchone()
        return _course_from_row(row) if row else None

    def update_course_owned(self, course_id: int, owner_id: str, **changes: Any) -> Optional[Course]:
        """
        Apply a partial update to a course when the caller owns it.

        Only keys present in `changes` are written. An empty change set is a
        read: the existing course is returned and `updated_at` stays put.
        """
        unknown = set(changes) - set(_COURSE_MUTABLE_FIELDS)
        if unknown:
            raise ValueError(f"invalid_field:{sorted(unknown)[0]}")
        if not changes:
            return self.get_course_owned(course_id, owner_id)
        # Column names come from the fixed whitelist above.
        cols = [c for c in _COURSE_MUTABLE_FIELDS if c in changes]
        assign = ", ".join([f"{c} = %s" for c in cols] + ["updated_at = now()"])
        params = [changes[c] for c in cols] + [course_id, owner_id]
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (owner_id,))
                cur.execute(
                    f"""
                    update public.courses
                       set {assign}
                     where id = %s and owner_id = %s
                    returning {_COURSE_COLUMNS_SQL}
                    """,
                    params,
                )
                row = cur.fetchone()
                if not row:
                    return None
                conn.commit()
        return _course_from_row(row)

    def list_courses_for_owner(self, owner_id: str, *, status: Optional[str] = None) -> List[Course]:
        where = "owner_id = %s"
        params: list = [owner_id]
        if status:
            where += " and status = %s"
            params.append(status)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (owner_id,))
                cur.execute(
                    f"""
                    select {_COURSE_COLUMNS_SQL}
                      from public.courses
                     where {where}
                     order by id
                    """,
                    params,
                )
                rows = cur.fetchall()
        return [_course_from_row(r) for r in rows]

    # --- Items ------------------------------------------------------------------
    def list_items_for_course(self, course_id: int) -> List[CourseItem]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_ITEM_COLUMNS_SQL}
                      from public.course_items
                     where course_id = %s
                     order by position, id
                    """,
                    (course_id,),
                )
                rows = cur.fetchall()
        return [_item_from_row(r) for r in rows]

    def get_item(self, item_id: int) -> Optional[CourseItem]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select {_ITEM_COLUMNS_SQL} from public.course_items where id = %s",
                    (item_id,),
                )
                row = cur.fetchone()
        return _item_from_row(row) if row else None

    def create_item(
        self,
        course_id: int,
        *,
        type: str,
        title: str,
        description: Optional[str],
        position: int,
        due_date: Optional[datetime],
        estimated_minutes: Optional[int],
        is_required: bool,
    ) -> CourseItem:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    insert into public.course_items
                      (course_id, type, title, description, position, due_date, estimated_minutes, is_required)
                    values (%s, %s, %s, %s, %s, %s, %s, %s)
                    returning {_ITEM_COLUMNS_SQL}
                    """,
                    (course_id, type, title, description, position, due_date, estimated_minutes, is_required),
                )
                row = cur.fetchone()
                conn.commit()
        return _item_from_row(row)

    def replace_item(
        self,
        item_id: int,
        course_id: int,
        *,
        type: str,
        title: str,
        description: Optional[str],
        position: int,
        due_date: Optional[datetime],
        estimated_minutes: Optional[int],
        is_required: bool,
    ) -> Optional[CourseItem]:
        """Overwrite every item field; `course_id` is a filter, never a target."""
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    update public.course_items
                       set type = %s,
                           title = %s,
                           description = %s,
                           position = %s,
                           due_date = %s,
                           estimated_minutes = %s,
                           is_required = %s
                     where id = %s and course_id = %s
                    returning {_ITEM_COLUMNS_SQL}
                    """,
                    (type, title, description, position, due_date, estimated_minutes, is_required, item_id, course_id),
                )
                row = cur.fetchone()
                if not row:
                    return None
                conn.commit()
        return _item_from_row(row)

    def delete_item(self, item_id: int, course_id: int) -> Optional[CourseItem]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    delete from public.course_items
                     where id = %s and course_id = %s
                    returning {_ITEM_COLUMNS_SQL}
                    """,
                    (item_id, course_id),
                )
                row = cur.fetchone()
                if not row:
                    return None
                conn.commit()
        return _item_from_row(row)

    # --- Progress ---------------------------------------------------------------
    def upsert_course_progress(
        self,
        course_id: int,
        user_id: str,
        *,
        status: Optional[str],
        completion_percent: Optional[int],
        total_items: Optional[int],
        completed_items: Optional[int],
        last_visited_item_id: Optional[int],
        meta: Any,
    ) -> CourseProgress:
        """
        Insert or merge the progress row for (course_id, user_id) atomically.

        Each optional value resolves as: supplied, else stored, else default.
        `started_at` is set on insert and kept on update.
        """
        params = {
            "course_id": course_id,
            "user_id": user_id,
            "status": status,
            "default_status": DEFAULT_PROGRESS_STATUS,
            "completion_percent": completion_percent,
            "total_items": total_items,
            "completed_items": completed_items,
            "last_visited_item_id": last_visited_item_id,
            "meta": Json(meta) if meta is not None else None,
        }
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute("select set_config('app.current_sub', %s, true)", (user_id,))
                    cur.execute(
                        f"""
                        insert into public.course_progress as cp
                          (course_id, user_id, status, completion_percent, total_items, completed_items,
                           last_visited_item_id, meta, started_at, updated_at)
                        values (%(course_id)s, %(user_id)s,
                                coalesce(%(status)s, %(default_status)s),
                                coalesce(%(completion_percent)s, 0),
                                coalesce(%(total_items)s, 0),
                                coalesce(%(completed_items)s, 0),
                                %(last_visited_item_id)s,
                                %(meta)s::jsonb,
                                now(), now())
                        on conflict (course_id, user_id) do update
                           set status = coalesce(%(status)s, cp.status, %(default_status)s),
                               completion_percent = coalesce(%(completion_percent)s, cp.completion_percent, 0),
                               total_items = coalesce(%(total_items)s, cp.total_items, 0),
                               completed_items = coalesce(%(completed_items)s, cp.completed_items, 0),
                               last_visited_item_id = coalesce(%(last_visited_item_id)s, cp.last_visited_item_id),
                               meta = coalesce(%(meta)s::jsonb, cp.meta),
                               started_at = coalesce(cp.started_at, now()),
                               updated_at = now()
                        returning {_COURSE_PROGRESS_COLUMNS_SQL}
                        """,
                        params,
                    )
                    row = cur.fetchone()
                    conn.commit()
        except Exception as exc:
            logger.warning(
                "course_progress upsert failed course=%s sub=...%s error=%s",
                course_id,
                _tail(user_id),
                type(exc).__name__,
            )
            raise
        return _course_progress_from_row(row)

    def upsert_item_progress(
        self,
        item_id: int,
        user_id: str,
        *,
        status: Optional[str],
        started_at: Optional[datetime],
        completed_at: Optional[datetime],
        notes: Optional[str],
    ) -> CourseItemProgress:
        params = {
            "item_id": item_id,
            "user_id": user_id,
            "status": status,
            "default_status": DEFAULT_PROGRESS_STATUS,
            "started_at": started_at,
            "completed_at": completed_at,
            "notes": notes,
        }
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute("select set_config('app.current_sub', %s, true)", (user_id,))
                    cur.execute(
                        f"""
                        insert into public.course_item_progress as ip
                          (item_id, user_id, status, started_at, completed_at, notes)
                        values (%(item_id)s, %(user_id)s,
                                coalesce(%(status)s, %(default_status)s),
                                %(started_at)s, %(completed_at)s, %(notes)s)
                        on conflict (item_id, user_id) do update
                           set status = coalesce(%(status)s, ip.status, %(default_status)s),
                               started_at = coalesce(%(started_at)s, ip.started_at),
                               completed_at = coalesce(%(completed_at)s, ip.completed_at),
                               notes = coalesce(%(notes)s, ip.notes)
                        returning {_ITEM_PROGRESS_COLUMNS_SQL}
                        """,
                        params,
                    )
                    row = cur.fetchone()
                    conn.commit()
        except Exception as exc:
            logger.warning(
                "item_progress upsert failed item=%s sub=...%s error=%s",
                item_id,
                _tail(user_id),
                type(exc).__name__,
            )
            raise
        return _item_progress_from_row(row)


__all__ = ["DBTrackerRepo", "HAVE_PSYCOPG"]
