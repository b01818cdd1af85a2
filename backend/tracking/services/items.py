"""Course item use cases (save, delete).

Why:
    Items inherit their access rules from the parent course. Saving with an
    `id` is a full replace and never moves an item to a different course;
    saving without one always creates.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from backend.identity_access.guard import require_user

from ..errors import course_item_not_found, course_not_found
from ..inputs import DeleteCourseItemInput, SaveCourseItemInput
from ..ports import TrackerRepoProtocol
from ..records import DEFAULT_ITEM_TYPE, CourseItem


@dataclass
class CourseItemsService:
    """Use cases for course items (framework-independent)."""

    repo: TrackerRepoProtocol

    def save_course_item(self, user: Any, data: SaveCourseItemInput) -> CourseItem:
        me = require_user(user)
        if self.repo.get_course_owned(data.course_id, me.sub) is None:
            raise course_not_found()
        # Full replace: omitted optionals fall back to their defaults.
        fields = dict(
            type=data.type or DEFAULT_ITEM_TYPE,
            title=data.title,
            description=data.description,
            position=data.position if data.position is not None else 0,
            due_date=data.due_date,
            estimated_minutes=data.estimated_minutes,
            is_required=data.is_required if data.is_required is not None else True,
        )
        if data.id is None:
            return self.repo.create_item(data.course_id, **fields)
        existing = self.repo.get_item(data.id)
        if existing is None or existing.course_id != data.course_id:
            raise course_item_not_found()
        replaced = self.repo.replace_item(data.id, data.course_id, **fields)
        if replaced is None:
            raise course_item_not_found()
        return replaced

    def delete_course_item(self, user: Any, data: DeleteCourseItemInput) -> CourseItem:
        me = require_user(user)
        if self.repo.get_course_owned(data.course_id, me.sub) is None:
            raise course_not_found()
        deleted = self.repo.delete_item(data.id, data.course_id)
        if deleted is None:
            raise course_item_not_found()
        return deleted
