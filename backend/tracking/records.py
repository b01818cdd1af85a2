"""
Typed records for the course tracker.

Why:
    The web adapter and both repositories exchange plain dataclasses so the
    service layer stays independent of psycopg rows and FastAPI models.
    Timestamps travel as ISO-8601 strings (UTC), the same shape the Postgres
    repo produces via `to_char`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

# Allowed enum values. Immutable to prevent accidental mutation.
COURSE_LEVELS = frozenset({"beginner", "intermediate", "advanced"})
COURSE_STATUSES = frozenset({"planned", "in_progress", "completed", "dropped"})
ITEM_TYPES = frozenset({"lesson", "module", "assignment", "quiz", "exam", "other"})
COURSE_PROGRESS_STATUSES = frozenset({"not_started", "in_progress", "completed", "dropped"})
ITEM_PROGRESS_STATUSES = frozenset({"not_started", "in_progress", "completed", "skipped"})

DEFAULT_LEVEL = "beginner"
DEFAULT_COURSE_STATUS = "planned"
DEFAULT_ITEM_TYPE = "lesson"
DEFAULT_PROGRESS_STATUS = "not_started"


@dataclass
class Course:
    id: int
    owner_id: str
    title: str
    description: str | None
    provider: str | None
    platform: str | None
    url: str | None
    level: str
    tags: str | None
    status: str
    created_at: str
    updated_at: str


@dataclass
class CourseItem:
    id: int
    course_id: int
    type: str
    title: str
    description: str | None
    position: int
    due_date: str | None
    estimated_minutes: int | None
    is_required: bool
    created_at: str


@dataclass
class CourseProgress:
    id: int
    course_id: int
    user_id: str
    status: str
    started_at: str | None
    completed_at: str | None
    completion_percent: int
    total_items: int
    completed_items: int
    last_visited_item_id: int | None
    created_at: str
    updated_at: str
    meta: Optional[Any] = field(default=None)


@dataclass
class CourseItemProgress:
    id: int
    item_id: int
    user_id: str
    status: str
    started_at: str | None
    completed_at: str | None
    notes: str | None
    created_at: str


__all__ = [
    "COURSE_LEVELS",
    "COURSE_STATUSES",
    "ITEM_TYPES",
    "COURSE_PROGRESS_STATUSES",
    "ITEM_PROGRESS_STATUSES",
    "DEFAULT_LEVEL",
    "DEFAULT_COURSE_STATUS",
    "DEFAULT_ITEM_TYPE",
    "DEFAULT_PROGRESS_STATUS",
    "Course",
    "CourseItem",
    "CourseProgress",
    "CourseItemProgress",
]
