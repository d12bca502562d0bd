"""Streak and completion statistics for routines with weekly active days."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from pydantic import BaseModel

from .lessons import CompletionLogEntry
from .recurrence import (
    ZoneLike,
    count_active_days,
    day_of_week,
    next_active_day,
    previous_active_day,
    resolve_zone,
)


class RoutineStats(BaseModel):
    subject_id: str
    total_count: int = 0
    week_count: int = 0
    week_total: int = 0
    month_count: int = 0
    month_total: int = 0
    streak: int = 0
    best_streak: int = 0
    total_rate: int = 0
    avg_completion_time: Optional[str] = None
    last_completed: Optional[date] = None
    first_completed: Optional[date] = None


def _round_half_up(numerator: int, denominator: int) -> int:
    return (2 * numerator + denominator) // (2 * denominator)


def stats_week_start(today: date) -> date:
    """Sunday opening the week that contains ``today`` (the calendar view's week)."""
    return today - timedelta(days=day_of_week(today))


def current_streak(completed: Iterable[date], active_days: Iterable[int], today: date) -> int:
    """Consecutive completed active days counted back from ``today``.

    When ``today`` is not an active day the walk starts at the previous active
    day. The first active day without a completion ends the streak.
    """
    days = frozenset(active_days)
    done = set(completed)
    if not days:
        return 0
    cursor: Optional[date] = today if day_of_week(today) in days else previous_active_day(today, days)
    streak = 0
    while cursor is not None and cursor in done:
        streak += 1
        cursor = previous_active_day(cursor, days)
    return streak


def best_streak(completed: Sequence[date], active_days: Iterable[int]) -> int:
    """Longest run where each completion lands on the active day after the previous one."""
    days = frozenset(active_days)
    best = running = 0
    previous: Optional[date] = None
    for current in sorted(set(completed)):
        if previous is not None and next_active_day(previous, days) == current:
            running += 1
        else:
            running = 1
        best = max(best, running)
        previous = current
    return best


def average_completion_time(timestamps: Iterable[datetime], tz: ZoneLike) -> Optional[str]:
    zone = resolve_zone(tz)
    minutes: List[int] = []
    for stamp in timestamps:
        local = stamp.astimezone(zone)
        minutes.append(local.hour * 60 + local.minute)
    if not minutes:
        return None
    average = _round_half_up(sum(minutes), len(minutes))
    return f"{average // 60:02d}:{average % 60:02d}"


def compute_stats(
    subject_id: str,
    log: Iterable[CompletionLogEntry],
    active_days: FrozenSet[int],
    today: date,
    *,
    tz: ZoneLike,
) -> RoutineStats:
    """Summarise a routine's completion log as of ``today``.

    ``today`` is the caller's local date, fixed for the whole computation.
    Entries dated after it and entries not marked completed are ignored.
    """
    completed: Dict[date, CompletionLogEntry] = {}
    for entry in log:
        if entry.subject_id != subject_id or not entry.is_completed or entry.date > today:
            continue
        completed[entry.date] = entry
    dates = sorted(completed)

    week_start = stats_week_start(today)
    month_start = today.replace(day=1)
    streak = current_streak(dates, active_days, today)
    # An inactive-day completion can split a run in the ascending scan.
    best = max(best_streak(dates, active_days), streak)

    first = dates[0] if dates else None
    span = count_active_days(first, today, active_days) if first else 0
    rate = min(_round_half_up(100 * len(dates), span), 100) if span else 0

    return RoutineStats(
        subject_id=subject_id,
        total_count=len(dates),
        week_count=sum(1 for day in dates if day >= week_start),
        week_total=count_active_days(week_start, today, active_days),
        month_count=sum(1 for day in dates if day >= month_start),
        month_total=count_active_days(month_start, today, active_days),
        streak=streak,
        best_streak=best,
        total_rate=rate,
        avg_completion_time=average_completion_time(
            (entry.completed_at for entry in completed.values() if entry.completed_at is not None),
            tz,
        ),
        last_completed=dates[-1] if dates else None,
        first_completed=first,
    )


__all__ = [
    "RoutineStats",
    "average_completion_time",
    "best_streak",
    "compute_stats",
    "current_streak",
    "stats_week_start",
]
