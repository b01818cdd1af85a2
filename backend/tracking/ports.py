"""
Repository port for the course tracker.

Keep this small and framework-agnostic so tests can supply simple fakes.
Both `InMemoryTrackerRepo` and `DBTrackerRepo` implement it.

Conventions:
    - `*_owned` methods filter by owner in the query itself; a non-owner sees
      `None`, exactly like a missing row.
    - Progress upserts take `None` for "not supplied". The repository applies
      supplied > existing > default precedence in one atomic step.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Protocol

from .records import Course, CourseItem, CourseItemProgress, CourseProgress


class TrackerRepoProtocol(Protocol):
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
        ...

    def get_course_owned(self, course_id: int, owner_id: str) -> Optional[Course]:
        ...

    def update_course_owned(self, course_id: int, owner_id: str, **changes: Any) -> Optional[Course]:
        ...

    def list_courses_for_owner(self, owner_id: str, *, status: Optional[str] = None) -> List[Course]:
        ...

    # --- Items ------------------------------------------------------------------
    def list_items_for_course(self, course_id: int) -> List[CourseItem]:
        ...

    def get_item(self, item_id: int) -> Optional[CourseItem]:
        ...

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
        ...

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
        ...

    def delete_item(self, item_id: int, course_id: int) -> Optional[CourseItem]:
        ...

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
        ...

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
        ...


__all__ = ["TrackerRepoProtocol"]
