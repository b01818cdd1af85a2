"""Progress use cases for courses and course items.

Why:
    Progress is recorded for the acting user, and only on courses that user
    owns. Storage performs the merge (supplied > stored > default) in a single
    atomic upsert, so two concurrent calls never produce two rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from backend.identity_access.guard import require_user

from ..errors import course_item_not_found, course_not_found
from ..inputs import UpdateCourseItemProgressInput, UpsertCourseProgressInput
from ..ports import TrackerRepoProtocol
from ..records import CourseItemProgress, CourseProgress


@dataclass
class ProgressService:
    """Use cases for learner progress (framework-independent)."""

    repo: TrackerRepoProtocol

    def upsert_course_progress(self, user: Any, data: UpsertCourseProgressInput) -> CourseProgress:
        me = require_user(user)
        if self.repo.get_course_owned(data.course_id, me.sub) is None:
            raise course_not_found()
        return self.repo.upsert_course_progress(
            data.course_id,
            me.sub,
            status=data.status,
            completion_percent=data.completion_percent,
            total_items=data.total_items,
            completed_items=data.completed_items,
            last_visited_item_id=data.last_visited_item_id,
            meta=data.meta,
        )

    def update_course_item_progress(self, user: Any, data: UpdateCourseItemProgressInput) -> CourseItemProgress:
        me = require_user(user)
        item = self.repo.get_item(data.item_id)
        if item is None:
            raise course_item_not_found()
        if self.repo.get_course_owned(item.course_id, me.sub) is None:
            raise course_not_found()
        return self.repo.upsert_item_progress(
            data.item_id,
            me.sub,
            status=data.status,
            started_at=data.started_at,
            completed_at=data.completed_at,
            notes=data.notes,
        )
