"""Domain records for subjects, lesson instances, and routine completion logs."""

from __future__ import annotations

import uuid
from datetime import date as _date, datetime, timezone
from enum import Enum
from typing import FrozenSet, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .recurrence import ALL_DAYS, RecurrenceTemplate, parse_time_of_day, ensure_aware


class LessonOrigin(str, Enum):
    TEMPLATE_GENERATED = "template-generated"
    MANUAL_MAKEUP = "manual-makeup"


class LessonLifecycle(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_LIFECYCLES = frozenset({LessonLifecycle.COMPLETED, LessonLifecycle.CANCELLED})


def _new_id() -> str:
    return str(uuid.uuid4())


class Subject(BaseModel):
    """A student (weekly lessons) or a habit (routine with completion logs)."""

    id: str = Field(default_factory=_new_id)
    name: str
    kind: Literal["student", "habit"] = "student"
    status: Literal["active", "paused", "completed"] = "active"
    timezone: Optional[str] = None
    template: Optional[RecurrenceTemplate] = None
    repeat_days: List[int] = Field(default_factory=list)
    target_time: Optional[str] = None

    @field_validator("repeat_days")
    @classmethod
    def _valid_days(cls, value: List[int]) -> List[int]:
        invalid = [day for day in value if day not in ALL_DAYS]
        if invalid:
            raise ValueError(f"repeat_days must be within 0..6, got {invalid}")
        return sorted(set(value))

    @field_validator("target_time")
    @classmethod
    def _valid_target_time(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return parse_time_of_day(value).strftime("%H:%M")

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def has_schedule(self) -> bool:
        return self.template is not None and not self.template.is_empty()

    def active_days(self) -> FrozenSet[int]:
        """Days counted by streaks and completion ratios."""
        if self.repeat_days:
            return frozenset(self.repeat_days)
        if self.template is not None and self.template.slots:
            return self.template.active_days
        return ALL_DAYS


class LessonInstance(BaseModel):
    id: str = Field(default_factory=_new_id)
    subject_id: str
    start_time: datetime
    duration_minutes: int = Field(..., ge=1)
    origin: LessonOrigin = LessonOrigin.TEMPLATE_GENERATED
    lifecycle: LessonLifecycle = LessonLifecycle.SCHEDULED
    title: str = ""
    note: Optional[str] = None

    @field_validator("start_time")
    @classmethod
    def _utc_start(cls, value: datetime) -> datetime:
        return ensure_aware(value).astimezone(timezone.utc)

    def is_reconcilable(self, now: datetime) -> bool:
        """Whether reconciliation may delete this instance.

        Judged on content (future, not terminal, not a makeup) rather than on
        how the row was tagged when it was written.
        """
        return (
            self.start_time > now
            and self.lifecycle not in TERMINAL_LIFECYCLES
            and self.origin != LessonOrigin.MANUAL_MAKEUP
        )


class CompletionLogEntry(BaseModel):
    """One routine log row; unique per (subject_id, date)."""

    subject_id: str
    date: _date
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    note: Optional[str] = None

    @field_validator("completed_at")
    @classmethod
    def _aware_completed_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(value) if value is not None else None


__all__ = [
    "CompletionLogEntry",
    "LessonInstance",
    "LessonLifecycle",
    "LessonOrigin",
    "Subject",
    "TERMINAL_LIFECYCLES",
]
