"""Store contracts consumed by the schedule core, plus in-memory implementations.

The core only needs range reads and bulk writes from the lesson store, range
reads and upserts from the completion log, and subject lookups plus saves.
Each call is assumed atomic on its own; nothing is transactional across calls.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from .errors import LessonNotFoundError, StoreError, SubjectNotFoundError
from .lessons import CompletionLogEntry, LessonInstance, LessonLifecycle, LessonOrigin, Subject
from .recurrence import instant_key


class InstanceStore(Protocol):
    async def query(
        self,
        subject_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[LessonInstance]:  # pragma: no cover - protocol definition
        ...

    async def bulk_insert(self, instances: Sequence[LessonInstance]) -> int:  # pragma: no cover
        ...

    async def bulk_delete(self, instance_ids: Sequence[str]) -> int:  # pragma: no cover
        ...

    async def update_duration(self, instance_ids: Sequence[str], duration_minutes: int) -> int:  # pragma: no cover
        ...

    async def set_lifecycle(self, instance_id: str, lifecycle: LessonLifecycle) -> LessonInstance:  # pragma: no cover
        ...


class CompletionLogStore(Protocol):
    async def query(
        self,
        subject_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[CompletionLogEntry]:  # pragma: no cover - protocol definition
        ...

    async def upsert(self, entry: CompletionLogEntry) -> CompletionLogEntry:  # pragma: no cover
        ...


class SubjectRepository(Protocol):
    async def get(self, subject_id: str) -> Subject:  # pragma: no cover - protocol definition
        ...

    async def list_subjects(self, *, active_only: bool = True) -> List[Subject]:  # pragma: no cover
        ...

    async def save(self, subject: Subject) -> Subject:  # pragma: no cover
        ...


def _within(value, start, end) -> bool:  # type: ignore[no-untyped-def]
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


class InMemoryInstanceStore:
    """Process-local lesson store enforcing the (subject, instant) uniqueness rule."""

    def __init__(self, instances: Iterable[LessonInstance] = ()) -> None:
        self._rows: Dict[str, LessonInstance] = {}
        for instance in instances:
            self._rows[instance.id] = instance.model_copy(deep=True)

    def _occupied(self) -> Dict[Tuple[str, int], str]:
        return {(row.subject_id, instant_key(row.start_time)): row.id for row in self._rows.values()}

    async def query(
        self,
        subject_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[LessonInstance]:
        rows = [
            row.model_copy(deep=True)
            for row in self._rows.values()
            if row.subject_id == subject_id and _within(row.start_time, start, end)
        ]
        return sorted(rows, key=lambda row: row.start_time)

    async def bulk_insert(self, instances: Sequence[LessonInstance]) -> int:
        occupied = self._occupied()
        staged: Dict[str, LessonInstance] = {}
        for instance in instances:
            key = (instance.subject_id, instant_key(instance.start_time))
            if key in occupied:
                raise StoreError(
                    f"Lesson already exists for {instance.subject_id} at {instance.start_time.isoformat()}"
                )
            occupied[key] = instance.id
            staged[instance.id] = instance.model_copy(deep=True)
        self._rows.update(staged)
        return len(staged)

    async def bulk_delete(self, instance_ids: Sequence[str]) -> int:
        removed = 0
        for instance_id in instance_ids:
            if self._rows.pop(instance_id, None) is not None:
                removed += 1
        return removed

    async def update_duration(self, instance_ids: Sequence[str], duration_minutes: int) -> int:
        changed = 0
        for instance_id in instance_ids:
            row = self._rows.get(instance_id)
            if row is not None:
                self._rows[instance_id] = row.model_copy(update={"duration_minutes": duration_minutes})
                changed += 1
        return changed

    async def set_lifecycle(self, instance_id: str, lifecycle: LessonLifecycle) -> LessonInstance:
        row = self._rows.get(instance_id)
        if row is None:
            raise LessonNotFoundError(instance_id)
        updated = row.model_copy(update={"lifecycle": lifecycle})
        self._rows[instance_id] = updated
        return updated.model_copy(deep=True)

    def all(self) -> List[LessonInstance]:
        return sorted((row.model_copy(deep=True) for row in self._rows.values()), key=lambda row: row.start_time)

    def count(self, *, origin: Optional[LessonOrigin] = None) -> int:
        return sum(1 for row in self._rows.values() if origin is None or row.origin == origin)


class InMemoryCompletionLogStore:
    def __init__(self, entries: Iterable[CompletionLogEntry] = ()) -> None:
        self._rows: Dict[Tuple[str, date], CompletionLogEntry] = {}
        for entry in entries:
            self._rows[(entry.subject_id, entry.date)] = entry.model_copy(deep=True)

    async def query(
        self,
        subject_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[CompletionLogEntry]:
        rows = [
            row.model_copy(deep=True)
            for (owner, _), row in self._rows.items()
            if owner == subject_id and _within(row.date, start, end)
        ]
        return sorted(rows, key=lambda row: row.date)

    async def upsert(self, entry: CompletionLogEntry) -> CompletionLogEntry:
        self._rows[(entry.subject_id, entry.date)] = entry.model_copy(deep=True)
        return entry.model_copy(deep=True)


class InMemorySubjectRepository:
    def __init__(self, subjects: Iterable[Subject] = ()) -> None:
        self._subjects: Dict[str, Subject] = {}
        for subject in subjects:
            self.put(subject)

    def put(self, subject: Subject) -> Subject:
        self._subjects[subject.id] = subject.model_copy(deep=True)
        return subject

    async def save(self, subject: Subject) -> Subject:
        return self.put(subject).model_copy(deep=True)

    async def get(self, subject_id: str) -> Subject:
        subject = self._subjects.get(subject_id)
        if subject is None:
            raise SubjectNotFoundError(subject_id)
        return subject.model_copy(deep=True)

    async def list_subjects(self, *, active_only: bool = True) -> List[Subject]:
        return [
            subject.model_copy(deep=True)
            for subject in self._subjects.values()
            if subject.is_active or not active_only
        ]


__all__ = [
    "CompletionLogStore",
    "InMemoryCompletionLogStore",
    "InMemoryInstanceStore",
    "InMemorySubjectRepository",
    "InstanceStore",
    "SubjectRepository",
]
