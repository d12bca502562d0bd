"""Routine (habit) endpoints: daily toggles, notes, calendar view, and stats."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from .errors import ScheduleError
from .lessons import CompletionLogEntry
from .routines import DEFAULT_RECENT_NOTES, RecentNote, RoutineTracker
from .schedule_routes import schedule_http_error
from .services import get_routine_tracker
from .streaks import RoutineStats

router = APIRouter(prefix="/api/routines", tags=["routines"])

_Date = date


class CompletionLogPayload(BaseModel):
    subject_id: str
    date: _Date
    is_completed: bool
    completed_at: Optional[datetime] = None
    note: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: CompletionLogEntry) -> "CompletionLogPayload":
        return cls(
            subject_id=entry.subject_id,
            date=entry.date,
            is_completed=entry.is_completed,
            completed_at=entry.completed_at,
            note=entry.note,
        )


class NoteRequest(BaseModel):
    note: str = Field(..., max_length=2000)


@router.get("/{subject_id}/stats", response_model=RoutineStats)
async def routine_stats(
    subject_id: str,
    tracker: RoutineTracker = Depends(get_routine_tracker),
) -> RoutineStats:
    try:
        return await tracker.stats(subject_id)
    except ScheduleError as exc:
        raise schedule_http_error(exc) from exc


@router.post("/{subject_id}/logs/{day}/toggle", response_model=CompletionLogPayload)
async def toggle_routine_log(
    subject_id: str,
    day: date,
    tracker: RoutineTracker = Depends(get_routine_tracker),
) -> CompletionLogPayload:
    try:
        entry = await tracker.toggle(subject_id, day)
    except ScheduleError as exc:
        raise schedule_http_error(exc) from exc
    return CompletionLogPayload.from_entry(entry)


@router.put("/{subject_id}/logs/{day}/note", response_model=CompletionLogPayload)
async def save_routine_note(
    subject_id: str,
    day: date,
    request: NoteRequest,
    tracker: RoutineTracker = Depends(get_routine_tracker),
) -> CompletionLogPayload:
    try:
        entry = await tracker.save_note(subject_id, day, request.note)
    except ScheduleError as exc:
        raise schedule_http_error(exc) from exc
    return CompletionLogPayload.from_entry(entry)


@router.get("/{subject_id}/calendar", response_model=List[CompletionLogPayload])
async def routine_calendar(
    subject_id: str,
    year: int = Query(..., ge=1970, le=9999),
    month: int = Query(..., ge=1, le=12),
    tracker: RoutineTracker = Depends(get_routine_tracker),
) -> List[CompletionLogPayload]:
    try:
        rows = await tracker.calendar(subject_id, year, month)
    except ScheduleError as exc:
        raise schedule_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return [CompletionLogPayload.from_entry(row) for row in rows]


@router.get("/{subject_id}/notes", response_model=List[RecentNote])
async def recent_routine_notes(
    subject_id: str,
    limit: int = Query(DEFAULT_RECENT_NOTES, ge=1, le=50),
    tracker: RoutineTracker = Depends(get_routine_tracker),
) -> List[RecentNote]:
    try:
        return await tracker.recent_notes(subject_id, limit)
    except ScheduleError as exc:
        raise schedule_http_error(exc) from exc


__all__ = ["router"]
