from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from zoneinfo import ZoneInfo

from tutorsync.lessons import CompletionLogEntry
from tutorsync.recurrence import ALL_DAYS
from tutorsync.streaks import (
    average_completion_time,
    best_streak,
    compute_stats,
    current_streak,
    stats_week_start,
)

MON_WED_FRI = frozenset({1, 3, 5})
SEOUL = ZoneInfo("Asia/Seoul")


def _done(day: date, hour: int = 7, minute: int = 0, *, tz=SEOUL) -> CompletionLogEntry:
    return CompletionLogEntry(
        subject_id="habit",
        date=day,
        is_completed=True,
        completed_at=datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz),
    )


def test_gap_on_friday_breaks_the_current_streak() -> None:
    completed = [date(2024, 1, 8), date(2024, 1, 10), date(2024, 1, 15)]

    assert current_streak(completed, MON_WED_FRI, date(2024, 1, 15)) == 1
    assert best_streak(completed, MON_WED_FRI) == 2


def test_streak_spans_weekends_between_active_days() -> None:
    completed = [date(2024, 1, 10), date(2024, 1, 12), date(2024, 1, 15)]

    assert current_streak(completed, MON_WED_FRI, date(2024, 1, 15)) == 3


def test_streak_starts_at_previous_active_day_when_today_is_inactive() -> None:
    completed = [date(2024, 1, 10), date(2024, 1, 12)]

    assert current_streak(completed, MON_WED_FRI, date(2024, 1, 14)) == 2


def test_streak_is_zero_when_today_is_active_but_not_done() -> None:
    completed = [date(2024, 1, 10), date(2024, 1, 12)]

    assert current_streak(completed, MON_WED_FRI, date(2024, 1, 15)) == 0
    assert current_streak(completed, frozenset(), date(2024, 1, 15)) == 0


def test_best_streak_resets_on_gaps() -> None:
    completed = [date(2024, 1, day) for day in (1, 2, 3, 5, 6, 7, 8, 9)]

    assert best_streak(completed, ALL_DAYS) == 5
    assert best_streak([], ALL_DAYS) == 0


def test_stats_week_starts_on_sunday() -> None:
    assert stats_week_start(date(2024, 1, 17)) == date(2024, 1, 14)
    assert stats_week_start(date(2024, 1, 14)) == date(2024, 1, 14)


def test_average_completion_time_rounds_half_up() -> None:
    stamps = [
        datetime(2024, 1, 1, 7, 0, tzinfo=SEOUL),
        datetime(2024, 1, 2, 7, 1, tzinfo=SEOUL),
    ]

    assert average_completion_time(stamps, SEOUL) == "07:01"
    assert average_completion_time([], SEOUL) is None


def test_average_completion_time_uses_subject_zone() -> None:
    stamps = [datetime(2024, 1, 1, 22, 30, tzinfo=timezone.utc)]

    assert average_completion_time(stamps, SEOUL) == "07:30"


def test_compute_stats_summarises_daily_routine() -> None:
    today = date(2024, 1, 17)
    log = [
        _done(date(2024, 1, 14), 7, 0),
        _done(date(2024, 1, 15), 7, 30),
        _done(date(2024, 1, 16), 8, 0),
        _done(date(2024, 1, 17), 8, 1),
        CompletionLogEntry(subject_id="habit", date=date(2024, 1, 13), is_completed=False, note="skipped"),
        _done(date(2024, 1, 18)),
    ]

    stats = compute_stats("habit", log, ALL_DAYS, today, tz=SEOUL)

    assert stats.total_count == 4
    assert stats.week_count == 4
    assert stats.week_total == 4
    assert stats.month_count == 4
    assert stats.month_total == 17
    assert stats.streak == 4
    assert stats.best_streak == 4
    assert stats.total_rate == 100
    assert stats.avg_completion_time == "07:38"
    assert stats.first_completed == date(2024, 1, 14)
    assert stats.last_completed == date(2024, 1, 17)


def test_total_rate_counts_active_days_since_first_completion() -> None:
    today = date(2024, 1, 19)
    log = [_done(date(2024, 1, 8)), _done(date(2024, 1, 12)), _done(date(2024, 1, 19))]

    stats = compute_stats("habit", log, MON_WED_FRI, today, tz=SEOUL)

    # Active days from Jan 8 to Jan 19: 8, 10, 12, 15, 17, 19.
    assert stats.total_rate == 50
    assert stats.streak == 1


def test_total_rate_is_capped_when_inactive_days_are_logged() -> None:
    monday_only = frozenset({1})
    log = [_done(date(2024, 1, 15)), _done(date(2024, 1, 16))]

    stats = compute_stats("habit", log, monday_only, date(2024, 1, 16), tz=SEOUL)

    assert stats.total_rate == 100


def test_empty_log_produces_zeroed_stats() -> None:
    stats = compute_stats("habit", [], MON_WED_FRI, date(2024, 1, 17), tz=SEOUL)

    assert stats.total_count == 0
    assert stats.streak == 0
    assert stats.best_streak == 0
    assert stats.total_rate == 0
    assert stats.avg_completion_time is None
    assert stats.first_completed is None
    assert stats.week_total == 2


def test_best_streak_never_trails_current_streak() -> None:
    today = date(2024, 1, 15)
    log = [_done(today - timedelta(days=offset)) for offset in range(0, 10)]

    stats = compute_stats("habit", log, ALL_DAYS, today, tz=SEOUL)

    assert stats.streak == 10
    assert stats.best_streak == 10
