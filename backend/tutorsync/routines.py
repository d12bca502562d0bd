"""Routine completion logging and statistics on top of the completion log store."""

from __future__ import annotations

import logging
from calendar import monthrange
from datetime import date, datetime, timezone
from typing import List, Optional

from pydantic import BaseModel

from .lessons import CompletionLogEntry, Subject
from .recurrence import ensure_aware, local_today
from .stores import CompletionLogStore, SubjectRepository
from .streaks import RoutineStats, compute_stats
from .telemetry import emit_event

logger = logging.getLogger(__name__)

DEFAULT_RECENT_NOTES = 5

_Date = date


class RecentNote(BaseModel):
    date: _Date
    note: str


class RoutineTracker:
    """Upserts daily routine logs and derives statistics from them."""

    def __init__(
        self,
        logs: CompletionLogStore,
        subjects: SubjectRepository,
        *,
        default_timezone: str = "Asia/Seoul",
    ) -> None:
        self._logs = logs
        self._subjects = subjects
        self._default_timezone = default_timezone

    def subject_timezone(self, subject: Subject) -> str:
        return subject.timezone or self._default_timezone

    async def today(self, subject_id: str, *, now: Optional[datetime] = None) -> date:
        subject = await self._subjects.get(subject_id)
        return local_today(_now(now), self.subject_timezone(subject))

    async def _entry(self, subject_id: str, day: date) -> Optional[CompletionLogEntry]:
        rows = await self._logs.query(subject_id, day, day)
        return rows[0] if rows else None

    async def toggle(self, subject_id: str, day: date, *, now: Optional[datetime] = None) -> CompletionLogEntry:
        """Flip completion for ``day``; completing stamps ``completed_at``, undoing clears it."""
        await self._subjects.get(subject_id)
        current = _now(now)
        existing = await self._entry(subject_id, day)
        completed = not existing.is_completed if existing else True
        entry = CompletionLogEntry(
            subject_id=subject_id,
            date=day,
            is_completed=completed,
            completed_at=current if completed else None,
            note=existing.note if existing else None,
        )
        stored = await self._logs.upsert(entry)
        emit_event("routine_log_upsert", subject_id=subject_id, date=day, is_completed=completed)
        return stored

    async def save_note(self, subject_id: str, day: date, note: str) -> CompletionLogEntry:
        await self._subjects.get(subject_id)
        existing = await self._entry(subject_id, day)
        if existing is None:
            entry = CompletionLogEntry(subject_id=subject_id, date=day, is_completed=False, note=note)
        else:
            entry = existing.model_copy(update={"note": note})
        stored = await self._logs.upsert(entry)
        logger.debug("Saved note for %s on %s", subject_id, day)
        return stored

    async def stats(self, subject_id: str, *, now: Optional[datetime] = None) -> RoutineStats:
        subject = await self._subjects.get(subject_id)
        zone = self.subject_timezone(subject)
        today = local_today(_now(now), zone)
        log = await self._logs.query(subject_id, None, today)
        return compute_stats(subject_id, log, subject.active_days(), today, tz=zone)

    async def calendar(self, subject_id: str, year: int, month: int) -> List[CompletionLogEntry]:
        if not 1 <= month <= 12:
            raise ValueError(f"Month must be within 1..12, got {month}")
        await self._subjects.get(subject_id)
        last_day = monthrange(year, month)[1]
        return await self._logs.query(subject_id, date(year, month, 1), date(year, month, last_day))

    async def recent_notes(self, subject_id: str, limit: int = DEFAULT_RECENT_NOTES) -> List[RecentNote]:
        await self._subjects.get(subject_id)
        rows = await self._logs.query(subject_id)
        notes = [
            RecentNote(date=row.date, note=row.note)
            for row in sorted(rows, key=lambda row: row.date, reverse=True)
            if row.note and row.note.strip()
        ]
        return notes[: max(limit, 0)]


def _now(now: Optional[datetime]) -> datetime:
    return ensure_aware(now) if now is not None else datetime.now(timezone.utc)


__all__ = ["DEFAULT_RECENT_NOTES", "RecentNote", "RoutineTracker"]
