"""Course use cases (create, update, list, detail).

Why:
    Keeps ownership rules out of the web adapter: every method resolves the
    acting user through the guard and only ever touches courses that user
    owns. A course owned by someone else is indistinguishable from a missing
    one (`NotFoundError`).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from backend.identity_access.guard import require_user

from ..errors import course_not_found
from ..inputs import CreateCourseInput, GetCourseInput, ListCoursesInput, UpdateCourseInput
from ..ports import TrackerRepoProtocol
from ..records import DEFAULT_COURSE_STATUS, DEFAULT_LEVEL, Course, CourseItem


@dataclass
class CoursesService:
    """Use cases for courses (framework-independent)."""

    repo: TrackerRepoProtocol

    def create_course(self, user: Any, data: CreateCourseInput) -> Course:
        me = require_user(user)
        return self.repo.create_course(
            owner_id=me.sub,
            title=data.title,
            description=data.description,
            provider=data.provider,
            platform=data.platform,
            url=data.url,
            level=data.level or DEFAULT_LEVEL,
            tags=data.tags,
            status=data.status or DEFAULT_COURSE_STATUS,
        )

    def update_course(self, user: Any, data: UpdateCourseInput) -> Course:
        """
        Partially update an owned course.

        Behavior:
            - Only fields present in the payload are written.
            - No fields: returns the stored course unchanged (no write).
            - Missing or foreign course: `NotFoundError`.
        """
        me = require_user(user)
        existing = self.repo.get_course_owned(data.id, me.sub)
        if existing is None:
            raise course_not_found()
        changes = data.changes()
        if not changes:
            return existing
        updated = self.repo.update_course_owned(data.id, me.sub, **changes)
        if updated is None:
            raise course_not_found()
        return updated

    def list_my_courses(self, user: Any, data: Optional[ListCoursesInput] = None) -> List[Course]:
        me = require_user(user)
        status = data.status if data is not None else None
        return self.repo.list_courses_for_owner(me.sub, status=status)

    def get_course_with_items(self, user: Any, data: GetCourseInput) -> Tuple[Course, List[CourseItem]]:
        me = require_user(user)
        course = self.repo.get_course_owned(data.id, me.sub)
        if course is None:
            raise course_not_found()
        return course, self.repo.list_items_for_course(course.id)
