"""
Validated input payloads for the tracker actions.

Why:
    Shape and type violations (missing title, unknown enum value, malformed
    URL, negative counters) must be rejected before any handler touches
    storage. Every action takes one of these models; constructing it raises
    `pydantic.ValidationError` on bad input, which the web adapter maps to 400.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import AnyUrl, BaseModel, Field, TypeAdapter, ValidationError
from pydantic.functional_validators import field_validator

Level = Literal["beginner", "intermediate", "advanced"]
CourseStatus = Literal["planned", "in_progress", "completed", "dropped"]
ItemType = Literal["lesson", "module", "assignment", "quiz", "exam", "other"]
CourseProgressStatus = Literal["not_started", "in_progress", "completed", "dropped"]
ItemProgressStatus = Literal["not_started", "in_progress", "completed", "skipped"]

_URL = TypeAdapter(AnyUrl)


def _check_title(value):
    # Stored as sent; only blank titles are refused.
    if isinstance(value, str) and not value.strip():
        raise ValueError("invalid_title")
    return value


def _check_url(value):
    if value is not None:
        try:
            _URL.validate_python(value)
        except ValidationError as exc:
            raise ValueError("invalid_url") from exc
    return value


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CreateCourseInput(BaseModel):
    title: str
    description: str | None = None
    provider: str | None = None
    platform: str | None = None
    url: str | None = None
    level: Level | None = None
    tags: str | None = None
    status: CourseStatus | None = None

    @field_validator("title")
    @classmethod
    def _title(cls, v):
        return _check_title(v)

    @field_validator("url")
    @classmethod
    def _url(cls, v):
        return _check_url(v)


class UpdateCourseInput(BaseModel):
    id: int
    title: str | None = None
    description: str | None = None
    provider: str | None = None
    platform: str | None = None
    url: str | None = None
    level: Level | None = None
    tags: str | None = None
    status: CourseStatus | None = None

    @field_validator("title")
    @classmethod
    def _title(cls, v):
        return _check_title(v)

    @field_validator("url")
    @classmethod
    def _url(cls, v):
        return _check_url(v)

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller supplied (explicit nulls count as absent)."""
        return self.model_dump(mode="python", exclude_unset=True, exclude_none=True, exclude={"id"})


class ListCoursesInput(BaseModel):
    status: CourseStatus | None = None


class GetCourseInput(BaseModel):
    id: int


class SaveCourseItemInput(BaseModel):
    id: int | None = None
    course_id: int
    type: ItemType | None = None
    title: str
    description: str | None = None
    position: int | None = Field(default=None, ge=0)
    due_date: datetime | None = None
    estimated_minutes: int | None = Field(default=None, gt=0)
    is_required: bool | None = None

    @field_validator("title")
    @classmethod
    def _title(cls, v):
        return _check_title(v)

    @field_validator("due_date")
    @classmethod
    def _due_utc(cls, v):
        return _as_utc(v)


class DeleteCourseItemInput(BaseModel):
    id: int
    course_id: int


class UpsertCourseProgressInput(BaseModel):
    course_id: int
    status: CourseProgressStatus | None = None
    completion_percent: int | None = Field(default=None, ge=0, le=100)
    total_items: int | None = Field(default=None, ge=0)
    completed_items: int | None = Field(default=None, ge=0)
    last_visited_item_id: int | None = None
    meta: Any = None


class UpdateCourseItemProgressInput(BaseModel):
    item_id: int
    status: ItemProgressStatus | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    notes: str | None = None

    @field_validator("started_at", "completed_at")
    @classmethod
    def _ts_utc(cls, v):
        return _as_utc(v)


__all__ = [
    "CreateCourseInput",
    "UpdateCourseInput",
    "ListCoursesInput",
    "GetCourseInput",
    "SaveCourseItemInput",
    "DeleteCourseItemInput",
    "UpsertCourseProgressInput",
    "UpdateCourseItemProgressInput",
]
