"""SQL-backed lesson instance store."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from ..db.models import LessonInstanceModel
from ..errors import LessonNotFoundError, StoreError
from ..lessons import LessonInstance, LessonLifecycle, LessonOrigin
from ..recurrence import instant_key
from .base import optional_utc, run_in_session, to_utc


class LessonInstanceRepository:
    """Session-scoped queries; every method expects the caller to own the transaction."""

    def query(
        self,
        session: Session,
        subject_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[LessonInstance]:
        stmt = select(LessonInstanceModel).where(LessonInstanceModel.subject_id == subject_id)
        if start is not None:
            stmt = stmt.where(LessonInstanceModel.start_time >= start)
        if end is not None:
            stmt = stmt.where(LessonInstanceModel.start_time <= end)
        stmt = stmt.order_by(LessonInstanceModel.start_time)
        return [self._to_domain(model) for model in session.execute(stmt).scalars()]

    def bulk_insert(self, session: Session, instances: Sequence[LessonInstance]) -> int:
        if not instances:
            return 0
        subject_ids = {instance.subject_id for instance in instances}
        starts = [to_utc(instance.start_time) for instance in instances]
        existing = session.execute(
            select(LessonInstanceModel.subject_id, LessonInstanceModel.start_time).where(
                LessonInstanceModel.subject_id.in_(subject_ids),
                LessonInstanceModel.start_time >= min(starts),
                LessonInstanceModel.start_time <= max(starts),
            )
        ).all()
        occupied = {(subject_id, instant_key(start_time)) for subject_id, start_time in existing}
        for instance in instances:
            key = (instance.subject_id, instant_key(instance.start_time))
            if key in occupied:
                raise StoreError(
                    f"Lesson already exists for {instance.subject_id} at {instance.start_time.isoformat()}"
                )
            occupied.add(key)
            session.add(self._to_model(instance))
        session.flush()
        return len(instances)

    def bulk_delete(self, session: Session, instance_ids: Sequence[str]) -> int:
        if not instance_ids:
            return 0
        result = session.execute(
            delete(LessonInstanceModel).where(LessonInstanceModel.id.in_(list(instance_ids)))
        )
        return int(result.rowcount or 0)

    def update_duration(self, session: Session, instance_ids: Sequence[str], duration_minutes: int) -> int:
        if not instance_ids:
            return 0
        result = session.execute(
            update(LessonInstanceModel)
            .where(LessonInstanceModel.id.in_(list(instance_ids)))
            .values(duration_minutes=duration_minutes)
        )
        return int(result.rowcount or 0)

    def set_lifecycle(self, session: Session, instance_id: str, lifecycle: LessonLifecycle) -> LessonInstance:
        model = session.get(LessonInstanceModel, instance_id)
        if model is None:
            raise LessonNotFoundError(instance_id)
        model.lifecycle = lifecycle.value
        session.flush()
        return self._to_domain(model)

    @staticmethod
    def _to_model(instance: LessonInstance) -> LessonInstanceModel:
        return LessonInstanceModel(
            id=instance.id,
            subject_id=instance.subject_id,
            start_time=to_utc(instance.start_time),
            duration_minutes=instance.duration_minutes,
            origin=instance.origin.value,
            lifecycle=instance.lifecycle.value,
            title=instance.title,
            note=instance.note,
        )

    @staticmethod
    def _to_domain(model: LessonInstanceModel) -> LessonInstance:
        return LessonInstance(
            id=model.id,
            subject_id=model.subject_id,
            start_time=to_utc(model.start_time),
            duration_minutes=model.duration_minutes,
            origin=LessonOrigin(model.origin),
            lifecycle=LessonLifecycle(model.lifecycle),
            title=model.title or "",
            note=model.note,
        )


class SqlInstanceStore:
    """Async store facade over :class:`LessonInstanceRepository`."""

    def __init__(self, repository: Optional[LessonInstanceRepository] = None) -> None:
        self._repo = repository or LessonInstanceRepository()

    async def query(
        self,
        subject_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[LessonInstance]:
        lower, upper = optional_utc(start), optional_utc(end)
        return await run_in_session(
            lambda session: self._repo.query(session, subject_id, lower, upper),
            commit=False,
        )

    async def bulk_insert(self, instances: Sequence[LessonInstance]) -> int:
        batch = list(instances)
        return await run_in_session(lambda session: self._repo.bulk_insert(session, batch))

    async def bulk_delete(self, instance_ids: Sequence[str]) -> int:
        ids = list(instance_ids)
        return await run_in_session(lambda session: self._repo.bulk_delete(session, ids))

    async def update_duration(self, instance_ids: Sequence[str], duration_minutes: int) -> int:
        ids = list(instance_ids)
        return await run_in_session(lambda session: self._repo.update_duration(session, ids, duration_minutes))

    async def set_lifecycle(self, instance_id: str, lifecycle: LessonLifecycle) -> LessonInstance:
        return await run_in_session(lambda session: self._repo.set_lifecycle(session, instance_id, lifecycle))


__all__ = ["LessonInstanceRepository", "SqlInstanceStore"]
