"""User-driven lesson actions: makeup lessons and lifecycle changes.

Reconciliation never touches the rows these actions produce: makeups are
never deleted, and completed or cancelled lessons are frozen.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from .errors import LessonConflictError
from .lessons import LessonInstance, LessonLifecycle, LessonOrigin
from .recurrence import DEFAULT_LESSON_MINUTES, ensure_aware, instant_key
from .stores import InstanceStore, SubjectRepository
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class LessonService:
    def __init__(
        self,
        instances: InstanceStore,
        subjects: SubjectRepository,
        *,
        default_duration_minutes: int = DEFAULT_LESSON_MINUTES,
    ) -> None:
        self._instances = instances
        self._subjects = subjects
        self._default_duration = default_duration_minutes

    async def list_lessons(
        self,
        subject_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[LessonInstance]:
        await self._subjects.get(subject_id)
        return await self._instances.query(
            subject_id,
            ensure_aware(start) if start else None,
            ensure_aware(end) if end else None,
        )

    async def add_makeup(
        self,
        subject_id: str,
        start_time: datetime,
        *,
        duration_minutes: Optional[int] = None,
        note: Optional[str] = None,
    ) -> LessonInstance:
        subject = await self._subjects.get(subject_id)
        start = ensure_aware(start_time)
        occupied = await self._instances.query(subject_id, start, start)
        if any(instant_key(row.start_time) == instant_key(start) for row in occupied):
            raise LessonConflictError(f"{subject.name} already has a lesson at {start.isoformat()}")

        makeup = LessonInstance(
            subject_id=subject_id,
            start_time=start,
            duration_minutes=duration_minutes or self._default_duration,
            origin=LessonOrigin.MANUAL_MAKEUP,
            lifecycle=LessonLifecycle.SCHEDULED,
            title=subject.name,
            note=note,
        )
        await self._instances.bulk_insert([makeup])
        logger.info("Added makeup lesson for %s at %s", subject_id, makeup.start_time.isoformat())
        emit_event("lesson_makeup_added", subject_id=subject_id, start_time=makeup.start_time)
        return makeup

    async def complete(self, lesson_id: str) -> LessonInstance:
        return await self._transition(lesson_id, LessonLifecycle.COMPLETED)

    async def cancel(self, lesson_id: str) -> LessonInstance:
        return await self._transition(lesson_id, LessonLifecycle.CANCELLED)

    async def _transition(self, lesson_id: str, lifecycle: LessonLifecycle) -> LessonInstance:
        updated = await self._instances.set_lifecycle(lesson_id, lifecycle)
        emit_event(
            "lesson_lifecycle_changed",
            subject_id=updated.subject_id,
            lesson_id=lesson_id,
            lifecycle=lifecycle.value,
        )
        return updated


__all__ = ["LessonService"]
