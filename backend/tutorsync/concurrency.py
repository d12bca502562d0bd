"""In-process guard that keeps reconciliation runs from overlapping."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import AsyncIterator, Awaitable, Callable, Dict, Literal, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")
GuardScope = Literal["subject", "window"]


@dataclass(frozen=True)
class GuardKey:
    """Identifies one reconciliation request; ``None`` bounds mean "whole schedule".

    ``revision`` distinguishes requests that cover the same range but carry
    different inputs (e.g. two successive template edits).
    """

    subject_id: str
    window_start: Optional[Union[date, datetime]] = None
    window_end: Optional[Union[date, datetime]] = None
    revision: Optional[str] = None


class ReconciliationGuard:
    """Share in-flight work per key and serialize work per subject.

    A caller whose key matches a running request awaits that request's result
    instead of generating again. With ``scope="subject"`` every request for a
    subject also takes that subject's lock, so a resync cannot interleave with
    an ensure on the same subject. ``scope="window"`` only deduplicates
    identical keys.
    """

    def __init__(self, scope: GuardScope = "subject") -> None:
        self._scope = scope
        self._inflight: Dict[GuardKey, "asyncio.Task[object]"] = {}
        self._subject_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @property
    def scope(self) -> GuardScope:
        return self._scope

    def in_flight(self, key: GuardKey) -> bool:
        return key in self._inflight

    def pending_count(self) -> int:
        return len(self._inflight)

    def held_subject_locks(self) -> int:
        return len(self._subject_locks)

    async def run_exclusive(self, key: GuardKey, operation: Callable[[], Awaitable[T]]) -> T:
        existing = self._inflight.get(key)
        if existing is not None:
            logger.debug("Joining in-flight reconciliation for %s", key)
            return await asyncio.shield(existing)  # type: ignore[return-value]

        task: "asyncio.Task[object]" = asyncio.ensure_future(self._execute(key, operation))
        task.add_done_callback(_retrieve_exception)
        self._inflight[key] = task
        return await asyncio.shield(task)  # type: ignore[return-value]

    async def _execute(self, key: GuardKey, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            if self._scope == "subject":
                async with self._subject_lock(key.subject_id):
                    return await operation()
            return await operation()
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    @asynccontextmanager
    async def _subject_lock(self, subject_id: str) -> AsyncIterator[None]:
        lock = self._subject_locks.get(subject_id)
        if lock is None:
            lock = asyncio.Lock()
            self._subject_locks[subject_id] = lock
        self._lock_users[subject_id] = self._lock_users.get(subject_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[subject_id] - 1
            if remaining:
                self._lock_users[subject_id] = remaining
            else:
                del self._lock_users[subject_id]
                del self._subject_locks[subject_id]


def _retrieve_exception(task: "asyncio.Task[object]") -> None:
    # Joiners may all have been cancelled; mark the outcome as observed.
    if not task.cancelled():
        task.exception()


__all__ = ["GuardKey", "GuardScope", "ReconciliationGuard"]
