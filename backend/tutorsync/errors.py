"""Exception hierarchy shared by the schedule and routine services."""

from __future__ import annotations

from typing import Optional


class ScheduleError(Exception):
    """Base class for scheduling failures."""


class TemplateConflictError(ScheduleError):
    """Two recurrence slots collide on the same weekday and time (or instant)."""


class InvalidWindowError(ScheduleError, ValueError):
    """A reconciliation window is inverted or wider than the configured bound."""


class SubjectNotFoundError(ScheduleError, LookupError):
    def __init__(self, subject_id: str) -> None:
        super().__init__(f"Unknown subject: {subject_id}")
        self.subject_id = subject_id


class LessonNotFoundError(ScheduleError, LookupError):
    def __init__(self, lesson_id: str) -> None:
        super().__init__(f"Unknown lesson instance: {lesson_id}")
        self.lesson_id = lesson_id


class LessonConflictError(ScheduleError):
    """A lesson already occupies the requested start time for the subject."""


class StoreError(ScheduleError):
    """A backing store read or write failed."""


class StoreTimeoutError(StoreError):
    """A store round-trip exceeded the configured timeout."""


class PartialResyncError(StoreError):
    """A resync failed after it had already written to the store.

    The subject may hold leftover lessons from the old template until the
    resync is retried.
    """

    def __init__(
        self,
        subject_id: str,
        *,
        inserted: int,
        deleted: int,
        updated: int = 0,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            f"Resync for {subject_id} failed after inserting {inserted}, resizing {updated} "
            f"and deleting {deleted} instances: {cause}"
        )
        self.subject_id = subject_id
        self.inserted = inserted
        self.deleted = deleted
        self.updated = updated


__all__ = [
    "InvalidWindowError",
    "LessonConflictError",
    "LessonNotFoundError",
    "PartialResyncError",
    "ScheduleError",
    "StoreError",
    "StoreTimeoutError",
    "SubjectNotFoundError",
    "TemplateConflictError",
]
