"""
In-memory repository for the course tracker (dev/tests).

Why:
    Lets the web adapter and the service layer run without Postgres. Mirrors
    the semantics of `DBTrackerRepo`: owner filters live in the lookups,
    progress rows are unique per (parent id, user id) and upserts are atomic
    (guarded by a lock instead of a unique index). References the schema
    declares as foreign keys are checked too; a dangling one raises
    `ValueError("foreign_key_violation:...")` where Postgres would raise
    `ForeignKeyViolation`.

Notes:
    Returned records are copies; mutating them does not touch stored state.
"""
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .records import (
    DEFAULT_PROGRESS_STATUS,
    Course,
    CourseItem,
    CourseItemProgress,
    CourseProgress,
)

_COURSE_MUTABLE_FIELDS = frozenset(
    {"title", "description", "provider", "platform", "url", "level", "tags", "status"}
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso_or_none(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _first_set(*values):
    for v in values:
        if v is not None:
            return v
    return None


def _require_ref(present: bool, ref: str) -> None:
    if not present:
        raise ValueError(f"foreign_key_violation:{ref}")


class InMemoryTrackerRepo:
    def __init__(self) -> None:
        self.courses: Dict[int, Course] = {}
        self.items: Dict[int, CourseItem] = {}
        # progress keyed by (course_id, user_id) / (item_id, user_id)
        self.course_progress: Dict[Tuple[int, str], CourseProgress] = {}
        self.item_progress: Dict[Tuple[int, str], CourseItemProgress] = {}
        self._seq: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _next_id(self, table: str) -> int:
        value = self._seq.get(table, 0) + 1
        self._seq[table] = value
        return value

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
        now = _now_iso()
        with self._lock:
            cid = self._next_id("courses")
            course = Course(
                id=cid,
                owner_id=owner_id,
                title=title,
                description=description,
                provider=provider,
                platform=platform,
                url=url,
                level=level,
                tags=tags,
                status=status,
                created_at=now,
                updated_at=now,
            )
            self.courses[cid] = course
        return replace(course)

    def get_course_owned(self, course_id: int, owner_id: str) -> Optional[Course]:
        course = self.courses.get(course_id)
        if course is None or course.owner_id != owner_id:
            return None
        return replace(course)

    def update_course_owned(self, course_id: int, owner_id: str, **changes: Any) -> Optional[Course]:
        unknown = set(changes) - _COURSE_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"invalid_field:{sorted(unknown)[0]}")
        with self._lock:
            course = self.courses.get(course_id)
            if course is None or course.owner_id != owner_id:
                return None
            if not changes:
                return replace(course)
            updated = replace(course, **changes, updated_at=_now_iso())
            self.courses[course_id] = updated
        return replace(updated)

    def list_courses_for_owner(self, owner_id: str, *, status: Optional[str] = None) -> List[Course]:
        items = [c for c in self.courses.values() if c.owner_id == owner_id]
        if status:
            items = [c for c in items if c.status == status]
        return [replace(c) for c in items]

    # --- Items ------------------------------------------------------------------
    def list_items_for_course(self, course_id: int) -> List[CourseItem]:
        return [replace(i) for i in self.items.values() if i.course_id == course_id]

    def get_item(self, item_id: int) -> Optional[CourseItem]:
        item = self.items.get(item_id)
        return replace(item) if item else None

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
        with self._lock:
            _require_ref(course_id in self.courses, "course_items.course_id")
            iid = self._next_id("course_items")
            item = CourseItem(
                id=iid,
                course_id=course_id,
                type=type,
                title=title,
                description=description,
                position=position,
                due_date=_iso_or_none(due_date),
                estimated_minutes=estimated_minutes,
                is_required=is_required,
                created_at=_now_iso(),
            )
            self.items[iid] = item
        return replace(item)

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
        with self._lock:
            item = self.items.get(item_id)
            if item is None or item.course_id != course_id:
                return None
            updated = replace(
                item,
                type=type,
                title=title,
                description=description,
                position=position,
                due_date=_iso_or_none(due_date),
                estimated_minutes=estimated_minutes,
                is_required=is_required,
            )
            self.items[item_id] = updated
        return replace(updated)

    def delete_item(self, item_id: int, course_id: int) -> Optional[CourseItem]:
        with self._lock:
            item = self.items.get(item_id)
            if item is None or item.course_id != course_id:
                return None
            # No cascade: progress rows keep pointing at the item.
            _require_ref(
                not any(key[0] == item_id for key in self.item_progress),
                "course_item_progress.item_id",
            )
            _require_ref(
                not any(p.last_visited_item_id == item_id for p in self.course_progress.values()),
                "course_progress.last_visited_item_id",
            )
            self.items.pop(item_id, None)
        return item

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
        key = (course_id, user_id)
        with self._lock:
            _require_ref(course_id in self.courses, "course_progress.course_id")
            if last_visited_item_id is not None:
                _require_ref(last_visited_item_id in self.items, "course_progress.last_visited_item_id")
            now = _now_iso()
            existing = self.course_progress.get(key)
            if existing is None:
                row = CourseProgress(
                    id=self._next_id("course_progress"),
                    course_id=course_id,
                    user_id=user_id,
                    status=_first_set(status, DEFAULT_PROGRESS_STATUS),
                    started_at=now,
                    completed_at=None,
                    completion_percent=_first_set(completion_percent, 0),
                    total_items=_first_set(total_items, 0),
                    completed_items=_first_set(completed_items, 0),
                    last_visited_item_id=last_visited_item_id,
                    meta=meta,
                    created_at=now,
                    updated_at=now,
                )
            else:
                row = replace(
                    existing,
                    status=_first_set(status, existing.status, DEFAULT_PROGRESS_STATUS),
                    completion_percent=_first_set(completion_percent, existing.completion_percent, 0),
                    total_items=_first_set(total_items, existing.total_items, 0),
                    completed_items=_first_set(completed_items, existing.completed_items, 0),
                    last_visited_item_id=_first_set(last_visited_item_id, existing.last_visited_item_id),
                    meta=_first_set(meta, existing.meta),
                    started_at=_first_set(existing.started_at, now),
                    updated_at=now,
                )
            self.course_progress[key] = row
        return replace(row)

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
        key = (item_id, user_id)
        with self._lock:
            _require_ref(item_id in self.items, "course_item_progress.item_id")
            existing = self.item_progress.get(key)
            if existing is None:
                row = CourseItemProgress(
                    id=self._next_id("course_item_progress"),
                    item_id=item_id,
                    user_id=user_id,
                    status=_first_set(status, DEFAULT_PROGRESS_STATUS),
                    started_at=_iso_or_none(started_at),
                    completed_at=_iso_or_none(completed_at),
                    notes=notes,
                    created_at=_now_iso(),
                )
            else:
                row = replace(
                    existing,
                    status=_first_set(status, existing.status, DEFAULT_PROGRESS_STATUS),
                    started_at=_first_set(_iso_or_none(started_at), existing.started_at),
                    completed_at=_first_set(_iso_or_none(completed_at), existing.completed_at),
                    notes=_first_set(notes, existing.notes),
                )
            self.item_progress[key] = row
        return replace(row)


__all__ = ["InMemoryTrackerRepo"]
