"""Weekly recurrence templates and the calendar math that projects them.

Days of week use the stored encoding ``0 = Sunday ... 6 = Saturday``. Week
iteration is anchored on Monday so that a Sunday slot always belongs to the
week that started six days earlier, whatever week start the calendar view
uses.

Everything here is pure: callers inject ``now`` and the timezone.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from zoneinfo import ZoneInfo

from .errors import TemplateConflictError

DEFAULT_LESSON_MINUTES = 40
ALL_DAYS: FrozenSet[int] = frozenset(range(7))
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)

WindowBound = Union[date, datetime]
ZoneLike = Union[str, tzinfo]


def parse_time_of_day(raw: str) -> time:
    parts = raw.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Expected HH:MM, got {raw!r}")
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError as exc:
        raise ValueError(f"Expected HH:MM, got {raw!r}") from exc
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Time of day out of range: {raw!r}")
    return time(hour, minute)


class ScheduleSlot(BaseModel):
    """One weekly lesson slot, e.g. Wednesday 09:00 for 40 minutes."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    day_of_week: int = Field(..., ge=0, le=6, validation_alias=AliasChoices("day_of_week", "day"))
    time_of_day: str = Field(..., validation_alias=AliasChoices("time_of_day", "time"))
    duration_minutes: int = Field(
        default=DEFAULT_LESSON_MINUTES,
        ge=1,
        le=24 * 60,
        validation_alias=AliasChoices("duration_minutes", "duration"),
    )

    @field_validator("time_of_day")
    @classmethod
    def _normalize_time(cls, value: str) -> str:
        return parse_time_of_day(value).strftime("%H:%M")

    @field_validator("duration_minutes", mode="before")
    @classmethod
    def _default_duration(cls, value: object) -> object:
        # Older templates stored 0/null when the default length was meant.
        if value in (None, 0):
            return DEFAULT_LESSON_MINUTES
        return value

    @property
    def local_time(self) -> time:
        return parse_time_of_day(self.time_of_day)


def validate_slots(slots: Sequence[ScheduleSlot]) -> None:
    """Reject slot lists where two slots share a weekday and time of day."""
    seen: Dict[Tuple[int, str], ScheduleSlot] = {}
    for slot in slots:
        key = (slot.day_of_week, slot.time_of_day)
        if key in seen:
            raise TemplateConflictError(
                f"Slots collide on day {slot.day_of_week} at {slot.time_of_day}"
            )
        seen[key] = slot


class RecurrenceTemplate(BaseModel):
    """Weekly template owned by a subject."""

    slots: List[ScheduleSlot] = Field(default_factory=list)
    active_from: Optional[date] = None
    active_until: Optional[date] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "RecurrenceTemplate":
        validate_slots(self.slots)
        if self.active_from and self.active_until and self.active_until < self.active_from:
            raise ValueError("active_until must not precede active_from")
        return self

    @property
    def active_days(self) -> FrozenSet[int]:
        return frozenset(slot.day_of_week for slot in self.slots)

    def is_empty(self) -> bool:
        return not self.slots


@dataclass(frozen=True)
class ProjectedInstance:
    start_time: datetime
    duration_minutes: int

    @property
    def key(self) -> int:
        return instant_key(self.start_time)


def resolve_zone(tz: ZoneLike) -> tzinfo:
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite drops the offset on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def instant_key(value: datetime) -> int:
    """Millisecond UTC instant used as the reconciliation dedup key."""
    return (ensure_aware(value) - EPOCH) // _MILLISECOND


def day_of_week(day: date) -> int:
    return (day.weekday() + 1) % 7


def python_weekday(dow: int) -> int:
    """Monday-first offset (Mon=0 .. Sun=6) for a Sunday-first day number."""
    return (dow - 1) % 7


def week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def local_today(now: datetime, tz: ZoneLike) -> date:
    return ensure_aware(now).astimezone(resolve_zone(tz)).date()


def local_midnight(day: date, tz: ZoneLike) -> datetime:
    return datetime.combine(day, time.min, tzinfo=resolve_zone(tz))


def is_nonexistent(local: datetime) -> bool:
    """True when ``local`` names a wall time skipped by a forward clock change."""
    if local.tzinfo is None:
        return False
    round_trip = local.astimezone(timezone.utc).astimezone(local.tzinfo)
    return round_trip.replace(tzinfo=None) != local.replace(tzinfo=None)


def is_active_day(day: date, active_days: Iterable[int]) -> bool:
    return day_of_week(day) in set(active_days)


def next_active_day(day: date, active_days: Iterable[int]) -> Optional[date]:
    days = set(active_days)
    for offset in range(1, 8):
        candidate = day + timedelta(days=offset)
        if day_of_week(candidate) in days:
            return candidate
    return None


def previous_active_day(day: date, active_days: Iterable[int]) -> Optional[date]:
    days = set(active_days)
    for offset in range(1, 8):
        candidate = day - timedelta(days=offset)
        if day_of_week(candidate) in days:
            return candidate
    return None


def count_active_days(start: date, end: date, active_days: Iterable[int]) -> int:
    """Number of active days in the inclusive range ``[start, end]``."""
    if end < start:
        return 0
    days = set(active_days) & ALL_DAYS
    weeks, remainder = divmod((end - start).days + 1, 7)
    total = weeks * len(days)
    tail_start = start + timedelta(weeks=weeks)
    for offset in range(remainder):
        if day_of_week(tail_start + timedelta(days=offset)) in days:
            total += 1
    return total


def window_bounds(window_start: WindowBound, window_end: WindowBound, tz: ZoneLike) -> Tuple[datetime, datetime]:
    """Resolve a window to inclusive aware bounds.

    A ``date`` start is local midnight; a ``date`` end covers that whole local day.
    """
    zone = resolve_zone(tz)
    return _bound(window_start, zone, end=False), _bound(window_end, zone, end=True)


def _bound(value: WindowBound, zone: tzinfo, *, end: bool) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            raise ValueError("Window bounds must be timezone-aware datetimes or dates.")
        return value
    return datetime.combine(value, time.max if end else time.min, tzinfo=zone)


def project_instances(
    template: RecurrenceTemplate,
    window_start: WindowBound,
    window_end: WindowBound,
    now: datetime,
    *,
    tz: ZoneLike,
) -> List[ProjectedInstance]:
    """Project ``template`` into concrete instants inside the window.

    Candidates are dropped when outside ``[window_start, window_end]``, strictly
    before ``now``, after ``active_until`` or before ``active_from``. Results are
    UTC and sorted; two slots landing on one instant raise TemplateConflictError.
    A wall time skipped by a forward clock change starts at the shifted instant
    unless another slot already starts there, in which case it is dropped.
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    zone = resolve_zone(tz)
    start, end = window_bounds(window_start, window_end, zone)
    if end < start or template.is_empty():
        return []

    first_week = week_start(start.astimezone(zone).date())
    last_week = week_start(end.astimezone(zone).date())
    projected: Dict[int, ProjectedInstance] = {}
    shifted = set()

    anchor = first_week
    while anchor <= last_week:
        for slot in template.slots:
            lesson_day = anchor + timedelta(days=python_weekday(slot.day_of_week))
            local_start = datetime.combine(lesson_day, slot.local_time, tzinfo=zone)
            if local_start < start or local_start > end:
                continue
            if local_start < now:
                continue
            if template.active_until is not None and lesson_day > template.active_until:
                continue
            if template.active_from is not None and lesson_day < template.active_from:
                continue

            instant = local_start.astimezone(timezone.utc)
            key = instant_key(instant)
            candidate = ProjectedInstance(start_time=instant, duration_minutes=slot.duration_minutes)
            in_gap = is_nonexistent(local_start)
            if key in projected:
                # Skipped wall times yield to the slot that really starts there.
                if in_gap:
                    continue
                if key not in shifted:
                    raise TemplateConflictError(
                        f"Two slots produce the same lesson start {instant.isoformat()}"
                    )
                shifted.discard(key)
            elif in_gap:
                shifted.add(key)
            projected[key] = candidate
        anchor += timedelta(weeks=1)

    return sorted(projected.values(), key=lambda item: item.start_time)


__all__ = [
    "ALL_DAYS",
    "DEFAULT_LESSON_MINUTES",
    "ProjectedInstance",
    "RecurrenceTemplate",
    "ScheduleSlot",
    "WindowBound",
    "ZoneLike",
    "count_active_days",
    "day_of_week",
    "ensure_aware",
    "instant_key",
    "is_active_day",
    "is_nonexistent",
    "local_midnight",
    "local_today",
    "next_active_day",
    "parse_time_of_day",
    "previous_active_day",
    "project_instances",
    "python_weekday",
    "resolve_zone",
    "validate_slots",
    "window_bounds",
    "week_start",
]
