"""Lesson schedule endpoints: resync, ensure, listing, makeups, and lifecycle changes."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, model_validator

from .errors import (
    InvalidWindowError,
    LessonConflictError,
    LessonNotFoundError,
    ScheduleError,
    StoreError,
    SubjectNotFoundError,
    TemplateConflictError,
)
from .lesson_service import LessonService
from .lessons import LessonInstance, Subject
from .reconciliation import EnsureReport, ResyncResult, ScheduleReconciler
from .services import get_lesson_service, get_reconciler, get_subject_repository
from .stores import SubjectRepository

router = APIRouter(prefix="/api", tags=["schedule"])
logger = logging.getLogger(__name__)


def schedule_http_error(exc: ScheduleError) -> HTTPException:
    """Translate a scheduling failure into the matching HTTP status."""
    if isinstance(exc, (SubjectNotFoundError, LessonNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidWindowError, TemplateConflictError)):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, LessonConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, StoreError):
        logger.warning("Store failure surfaced to client: %s", exc)
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


class LessonPayload(BaseModel):
    id: str
    subject_id: str
    start_time: datetime
    duration_minutes: int
    origin: str
    lifecycle: str
    title: str
    note: Optional[str] = None

    @classmethod
    def from_instance(cls, instance: LessonInstance) -> "LessonPayload":
        return cls(
            id=instance.id,
            subject_id=instance.subject_id,
            start_time=instance.start_time,
            duration_minutes=instance.duration_minutes,
            origin=instance.origin.value,
            lifecycle=instance.lifecycle.value,
            title=instance.title,
            note=instance.note,
        )


class ResyncResponse(BaseModel):
    subject_id: str
    inserted: int
    deleted: int
    updated: int
    kept: int
    skipped: bool

    @classmethod
    def from_result(cls, result: ResyncResult) -> "ResyncResponse":
        return cls(
            subject_id=result.subject_id,
            inserted=result.inserted,
            deleted=result.deleted,
            updated=result.updated,
            kept=result.kept,
            skipped=result.skipped,
        )


class EnsureRequest(BaseModel):
    start: date
    end: date
    subject_ids: Optional[List[str]] = None

    @model_validator(mode="after")
    def _ordered(self) -> "EnsureRequest":
        if self.end < self.start:
            raise ValueError("end must not precede start")
        return self


class EnsureOutcomePayload(BaseModel):
    subject_id: str
    inserted: int
    error: Optional[str] = None


class EnsureResponse(BaseModel):
    window_start: date
    window_end: date
    inserted: int
    outcomes: List[EnsureOutcomePayload] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: EnsureReport, start: date, end: date) -> "EnsureResponse":
        return cls(
            window_start=start,
            window_end=end,
            inserted=report.inserted,
            outcomes=[
                EnsureOutcomePayload(subject_id=outcome.subject_id, inserted=outcome.inserted, error=outcome.error)
                for outcome in report.outcomes
            ],
        )


class MakeupRequest(BaseModel):
    start_time: datetime
    duration_minutes: Optional[int] = Field(default=None, ge=1, le=24 * 60)
    note: Optional[str] = Field(default=None, max_length=500)


@router.post(
    "/subjects/{subject_id}/schedule/resync",
    response_model=ResyncResponse,
    status_code=status.HTTP_200_OK,
)
async def resync_subject_schedule(
    subject_id: str,
    subjects: SubjectRepository = Depends(get_subject_repository),
    reconciler: ScheduleReconciler = Depends(get_reconciler),
) -> ResyncResponse:
    try:
        subject = await subjects.get(subject_id)
        result = await reconciler.resync(subject)
    except ScheduleError as exc:
        raise schedule_http_error(exc) from exc
    return ResyncResponse.from_result(result)


@router.post("/schedule/ensure", response_model=EnsureResponse, status_code=status.HTTP_200_OK)
async def ensure_schedule_window(
    request: EnsureRequest,
    subjects: SubjectRepository = Depends(get_subject_repository),
    reconciler: ScheduleReconciler = Depends(get_reconciler),
) -> EnsureResponse:
    try:
        reconciler.validate_window(request.start, request.end)
        if request.subject_ids:
            targets: List[Subject] = [await subjects.get(subject_id) for subject_id in request.subject_ids]
        else:
            targets = await subjects.list_subjects(active_only=True)
        report = await reconciler.ensure(targets, request.start, request.end)
    except ScheduleError as exc:
        raise schedule_http_error(exc) from exc
    return EnsureResponse.from_report(report, request.start, request.end)


@router.get("/subjects/{subject_id}/lessons", response_model=List[LessonPayload])
async def list_subject_lessons(
    subject_id: str,
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    lessons: LessonService = Depends(get_lesson_service),
) -> List[LessonPayload]:
    try:
        rows = await lessons.list_lessons(subject_id, start, end)
    except ScheduleError as exc:
        raise schedule_http_error(exc) from exc
    return [LessonPayload.from_instance(row) for row in rows]


@router.post(
    "/subjects/{subject_id}/lessons/makeup",
    response_model=LessonPayload,
    status_code=status.HTTP_201_CREATED,
)
async def add_makeup_lesson(
    subject_id: str,
    request: MakeupRequest,
    lessons: LessonService = Depends(get_lesson_service),
) -> LessonPayload:
    try:
        makeup = await lessons.add_makeup(
            subject_id,
            request.start_time,
            duration_minutes=request.duration_minutes,
            note=request.note,
        )
    except ScheduleError as exc:
        raise schedule_http_error(exc) from exc
    return LessonPayload.from_instance(makeup)


@router.post("/lessons/{lesson_id}/complete", response_model=LessonPayload)
async def complete_lesson(
    lesson_id: str,
    lessons: LessonService = Depends(get_lesson_service),
) -> LessonPayload:
    try:
        updated = await lessons.complete(lesson_id)
    except ScheduleError as exc:
        raise schedule_http_error(exc) from exc
    return LessonPayload.from_instance(updated)


@router.post("/lessons/{lesson_id}/cancel", response_model=LessonPayload)
async def cancel_lesson(
    lesson_id: str,
    lessons: LessonService = Depends(get_lesson_service),
) -> LessonPayload:
    try:
        updated = await lessons.cancel(lesson_id)
    except ScheduleError as exc:
        raise schedule_http_error(exc) from exc
    return LessonPayload.from_instance(updated)


__all__ = ["router", "schedule_http_error"]
