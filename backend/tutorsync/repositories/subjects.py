"""SQL-backed subject repository.

Templates are validated when written, so a stored subject always carries a
collision-free schedule.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import SubjectModel
from ..errors import SubjectNotFoundError
from ..lessons import Subject
from ..recurrence import RecurrenceTemplate, ScheduleSlot, validate_slots
from .base import run_in_session


class SubjectTableRepository:
    def get(self, session: Session, subject_id: str) -> Subject:
        model = session.get(SubjectModel, subject_id)
        if model is None:
            raise SubjectNotFoundError(subject_id)
        return self._to_domain(model)

    def list_subjects(self, session: Session, *, active_only: bool = True) -> List[Subject]:
        stmt = select(SubjectModel).order_by(SubjectModel.name, SubjectModel.id)
        if active_only:
            stmt = stmt.where(SubjectModel.status == "active")
        return [self._to_domain(model) for model in session.execute(stmt).scalars()]

    def upsert(self, session: Session, subject: Subject) -> Subject:
        model = session.get(SubjectModel, subject.id)
        if model is None:
            model = SubjectModel(id=subject.id)
            session.add(model)
        model.name = subject.name
        model.kind = subject.kind
        model.status = subject.status
        model.timezone = subject.timezone
        model.repeat_days = list(subject.repeat_days)
        model.target_time = subject.target_time
        template = subject.template
        if template is not None:
            validate_slots(template.slots)
        model.schedule_template = (
            [slot.model_dump() for slot in template.slots] if template is not None else []
        )
        model.active_from = template.active_from if template is not None else None
        model.active_until = template.active_until if template is not None else None
        session.flush()
        return self._to_domain(model)

    @staticmethod
    def _to_domain(model: SubjectModel) -> Subject:
        template: Optional[RecurrenceTemplate] = None
        if model.schedule_template or model.active_from or model.active_until:
            template = RecurrenceTemplate(
                slots=[ScheduleSlot.model_validate(raw) for raw in model.schedule_template or []],
                active_from=model.active_from,
                active_until=model.active_until,
            )
        return Subject(
            id=model.id,
            name=model.name,
            kind=model.kind,  # type: ignore[arg-type]
            status=model.status,  # type: ignore[arg-type]
            timezone=model.timezone,
            template=template,
            repeat_days=list(model.repeat_days or []),
            target_time=model.target_time,
        )


class SqlSubjectRepository:
    def __init__(self, repository: Optional[SubjectTableRepository] = None) -> None:
        self._repo = repository or SubjectTableRepository()

    async def get(self, subject_id: str) -> Subject:
        return await run_in_session(lambda session: self._repo.get(session, subject_id), commit=False)

    async def list_subjects(self, *, active_only: bool = True) -> List[Subject]:
        return await run_in_session(
            lambda session: self._repo.list_subjects(session, active_only=active_only),
            commit=False,
        )

    async def save(self, subject: Subject) -> Subject:
        return await run_in_session(lambda session: self._repo.upsert(session, subject))


__all__ = ["SqlSubjectRepository", "SubjectTableRepository"]
