"""Use case layer for the course tracker.

Re-export the services for convenient imports in the web adapter and tests.
"""

from .courses import CoursesService
from .items import CourseItemsService
from .progress import ProgressService

__all__ = [
    "CoursesService",
    "CourseItemsService",
    "ProgressService",
]
