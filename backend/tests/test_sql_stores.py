from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest
from zoneinfo import ZoneInfo

from tutorsync.errors import LessonNotFoundError, StoreError, SubjectNotFoundError, TemplateConflictError
from tutorsync.lessons import CompletionLogEntry, LessonInstance, LessonLifecycle, LessonOrigin, Subject
from tutorsync.reconciliation import ScheduleReconciler
from tutorsync.recurrence import RecurrenceTemplate, ScheduleSlot
from tutorsync.repositories import SqlCompletionLogStore, SqlInstanceStore, SqlSubjectRepository

UTC = timezone.utc
SEOUL = ZoneInfo("Asia/Seoul")
NOW = datetime(2024, 1, 10, tzinfo=UTC)


def _subject(subject_id: str = "s1", **kwargs) -> Subject:
    template = RecurrenceTemplate(
        slots=[
            ScheduleSlot(day_of_week=1, time_of_day="09:00"),
            ScheduleSlot(day_of_week=3, time_of_day="09:00", duration_minutes=60),
        ],
        active_from=date(2024, 1, 1),
    )
    return Subject(id=subject_id, name=f"Student {subject_id}", timezone="Asia/Seoul", template=template, **kwargs)


def test_subject_round_trip_and_active_filter(sqlite_database) -> None:
    repo = SqlSubjectRepository()

    async def scenario() -> None:
        await repo.save(_subject("s1"))
        await repo.save(_subject("s2", status="paused"))
        await repo.save(Subject(id="h1", name="Stretching", kind="habit", repeat_days=[0, 6], target_time="7:30"))

        loaded = await repo.get("s1")
        assert loaded.template == _subject("s1").template
        assert loaded.timezone == "Asia/Seoul"
        habit = await repo.get("h1")
        assert habit.template is None
        assert habit.repeat_days == [0, 6]
        assert habit.target_time == "07:30"
        assert {subject.id for subject in await repo.list_subjects()} == {"s1", "h1"}
        assert len(await repo.list_subjects(active_only=False)) == 3

        await repo.save(loaded.model_copy(update={"name": "Renamed"}))
        assert (await repo.get("s1")).name == "Renamed"

        with pytest.raises(SubjectNotFoundError):
            await repo.get("missing")

    asyncio.run(scenario())


def test_instance_store_queries_in_utc_and_rejects_duplicates(sqlite_database) -> None:
    asyncio.run(SqlSubjectRepository().save(_subject()))
    store = SqlInstanceStore()
    local_start = datetime(2024, 1, 15, 9, 0, tzinfo=SEOUL)
    lesson = LessonInstance(subject_id="s1", start_time=local_start, duration_minutes=40, title="Student s1")

    async def scenario() -> None:
        assert await store.bulk_insert([lesson]) == 1
        rows = await store.query("s1", local_start - timedelta(hours=1), local_start + timedelta(hours=1))
        assert [row.id for row in rows] == [lesson.id]
        assert rows[0].start_time == local_start
        assert rows[0].start_time.tzinfo is not None
        assert await store.query("s1", local_start + timedelta(minutes=1)) == []

        duplicate = LessonInstance(subject_id="s1", start_time=local_start.astimezone(UTC), duration_minutes=40)
        with pytest.raises(StoreError):
            await store.bulk_insert([duplicate])

        updated = await store.set_lifecycle(lesson.id, LessonLifecycle.COMPLETED)
        assert updated.lifecycle == LessonLifecycle.COMPLETED
        with pytest.raises(LessonNotFoundError):
            await store.set_lifecycle("missing", LessonLifecycle.CANCELLED)

        assert await store.bulk_delete([lesson.id, "missing"]) == 1
        assert await store.query("s1") == []

    asyncio.run(scenario())


def test_completion_log_upsert_replaces_existing_row(sqlite_database) -> None:
    asyncio.run(SqlSubjectRepository().save(Subject(id="h1", name="Journal", kind="habit")))
    store = SqlCompletionLogStore()
    day = date(2024, 1, 15)

    async def scenario() -> None:
        await store.upsert(CompletionLogEntry(subject_id="h1", date=day, note="draft"))
        await store.upsert(
            CompletionLogEntry(
                subject_id="h1",
                date=day,
                is_completed=True,
                completed_at=datetime(2024, 1, 15, 7, 0, tzinfo=SEOUL),
                note="done",
            )
        )
        await store.upsert(CompletionLogEntry(subject_id="h1", date=date(2024, 2, 1), is_completed=True))

        january = await store.query("h1", date(2024, 1, 1), date(2024, 1, 31))
        assert len(january) == 1
        assert january[0].is_completed is True
        assert january[0].note == "done"
        assert january[0].completed_at == datetime(2024, 1, 14, 22, 0, tzinfo=UTC)
        assert [entry.date for entry in await store.query("h1")] == [day, date(2024, 2, 1)]

    asyncio.run(scenario())


def test_resync_through_sql_store_is_idempotent(sqlite_database) -> None:
    subject = _subject()
    asyncio.run(SqlSubjectRepository().save(subject))
    store = SqlInstanceStore()
    reconciler = ScheduleReconciler(store, default_timezone="Asia/Seoul")

    first = asyncio.run(reconciler.resync(subject, now=NOW))
    second = asyncio.run(reconciler.resync(subject, now=NOW))
    rows = asyncio.run(store.query("s1"))

    # Wednesday Jan 10 09:00 KST equals now, and Mar 6 09:00 KST closes the horizon inclusively.
    assert first.inserted == 17
    assert (second.inserted, second.deleted, second.kept) == (0, 0, 17)
    assert len(rows) == 17
    assert {row.origin for row in rows} == {LessonOrigin.TEMPLATE_GENERATED}
    assert {row.start_time.astimezone(SEOUL).hour for row in rows} == {9}
    assert {row.duration_minutes for row in rows} == {40, 60}


def test_duration_change_through_sql_store_updates_rows_in_place(sqlite_database) -> None:
    subject = _subject()
    asyncio.run(SqlSubjectRepository().save(subject))
    store = SqlInstanceStore()
    reconciler = ScheduleReconciler(store, default_timezone="Asia/Seoul")
    asyncio.run(reconciler.resync(subject, now=NOW))
    before = {row.id for row in asyncio.run(store.query("s1"))}

    assert subject.template is not None
    slots = [slot.model_copy(update={"duration_minutes": 50}) for slot in subject.template.slots]
    resized = subject.model_copy(update={"template": subject.template.model_copy(update={"slots": slots})})
    result = asyncio.run(reconciler.resync(resized, now=NOW))
    rows = asyncio.run(store.query("s1"))

    assert (result.inserted, result.updated, result.deleted) == (0, 17, 0)
    assert {row.id for row in rows} == before
    assert {row.duration_minutes for row in rows} == {50}


def test_colliding_template_is_rejected_on_write(sqlite_database) -> None:
    slot = ScheduleSlot(day_of_week=2, time_of_day="18:00")
    colliding = RecurrenceTemplate.model_construct(slots=[slot, slot], active_from=None, active_until=None)
    subject = Subject(id="s9", name="Clash").model_copy(update={"template": colliding})
    repo = SqlSubjectRepository()

    with pytest.raises(TemplateConflictError):
        asyncio.run(repo.save(subject))
    with pytest.raises(SubjectNotFoundError):
        asyncio.run(repo.get("s9"))
