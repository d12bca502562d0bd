"""SQL-backed routine completion log store."""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import CompletionLogModel
from ..lessons import CompletionLogEntry
from .base import optional_utc, run_in_session


class CompletionLogRepository:
    def query(
        self,
        session: Session,
        subject_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[CompletionLogEntry]:
        stmt = select(CompletionLogModel).where(CompletionLogModel.subject_id == subject_id)
        if start is not None:
            stmt = stmt.where(CompletionLogModel.log_date >= start)
        if end is not None:
            stmt = stmt.where(CompletionLogModel.log_date <= end)
        stmt = stmt.order_by(CompletionLogModel.log_date)
        return [self._to_domain(model) for model in session.execute(stmt).scalars()]

    def upsert(self, session: Session, entry: CompletionLogEntry) -> CompletionLogEntry:
        stmt = select(CompletionLogModel).where(
            CompletionLogModel.subject_id == entry.subject_id,
            CompletionLogModel.log_date == entry.date,
        )
        model = session.execute(stmt).scalar_one_or_none()
        if model is None:
            model = CompletionLogModel(subject_id=entry.subject_id, log_date=entry.date)
            session.add(model)
        model.is_completed = entry.is_completed
        model.completed_at = optional_utc(entry.completed_at)
        model.note = entry.note
        session.flush()
        return self._to_domain(model)

    @staticmethod
    def _to_domain(model: CompletionLogModel) -> CompletionLogEntry:
        return CompletionLogEntry(
            subject_id=model.subject_id,
            date=model.log_date,
            is_completed=model.is_completed,
            completed_at=optional_utc(model.completed_at),
            note=model.note,
        )


class SqlCompletionLogStore:
    def __init__(self, repository: Optional[CompletionLogRepository] = None) -> None:
        self._repo = repository or CompletionLogRepository()

    async def query(
        self,
        subject_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[CompletionLogEntry]:
        return await run_in_session(
            lambda session: self._repo.query(session, subject_id, start, end),
            commit=False,
        )

    async def upsert(self, entry: CompletionLogEntry) -> CompletionLogEntry:
        return await run_in_session(lambda session: self._repo.upsert(session, entry))


__all__ = ["CompletionLogRepository", "SqlCompletionLogStore"]
