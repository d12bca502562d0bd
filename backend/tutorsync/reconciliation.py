"""Reconcile projected lesson schedules with the lesson store.

``resync`` realigns a subject's future schedule after its template changes.
``ensure`` fills gaps when a calendar range comes into view and never deletes.
Both run through the same projection and the same store contract.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Dict, List, Optional, Sequence, TypeVar

from .concurrency import GuardKey, ReconciliationGuard
from .errors import (
    InvalidWindowError,
    PartialResyncError,
    ScheduleError,
    StoreError,
    StoreTimeoutError,
)
from .lessons import LessonInstance, LessonLifecycle, LessonOrigin, Subject
from .recurrence import (
    ProjectedInstance,
    WindowBound,
    ensure_aware,
    instant_key,
    local_midnight,
    project_instances,
    window_bounds,
)
from .stores import InstanceStore
from .telemetry import emit_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_HORIZON_WEEKS = 8
DEFAULT_MAX_WINDOW_DAYS = 93
DEFAULT_STORE_TIMEOUT_SECONDS = 10.0


@dataclass
class ResyncPlan:
    fresh: List[LessonInstance] = field(default_factory=list)
    stale_ids: List[str] = field(default_factory=list)
    resized: Dict[int, List[str]] = field(default_factory=dict)
    kept_ids: List[str] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not (self.fresh or self.stale_ids or self.resized)


@dataclass
class ResyncResult:
    subject_id: str
    inserted: int = 0
    deleted: int = 0
    updated: int = 0
    kept: int = 0
    skipped: bool = False


@dataclass
class SubjectEnsureOutcome:
    subject_id: str
    inserted: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class EnsureReport:
    window_start: WindowBound
    window_end: WindowBound
    outcomes: List[SubjectEnsureOutcome] = field(default_factory=list)

    @property
    def inserted(self) -> int:
        return sum(outcome.inserted for outcome in self.outcomes)

    @property
    def failed(self) -> List[SubjectEnsureOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


def build_generated_instance(subject: Subject, projected: ProjectedInstance) -> LessonInstance:
    return LessonInstance(
        subject_id=subject.id,
        start_time=projected.start_time,
        duration_minutes=projected.duration_minutes,
        origin=LessonOrigin.TEMPLATE_GENERATED,
        lifecycle=LessonLifecycle.SCHEDULED,
        title=subject.name,
    )


def plan_resync(
    subject: Subject,
    existing: Sequence[LessonInstance],
    desired: Sequence[ProjectedInstance],
    now: datetime,
) -> ResyncPlan:
    """Diff the stored schedule against the projection.

    Only reconcilable instances (future, scheduled, not makeups) are ever
    removed. A desired instant already held by a protected instance is left
    alone so no instant is double-booked. A reconcilable instance on a desired
    instant is kept, and resized in place when the slot length changed.
    """
    plan = ResyncPlan()
    reconcilable: Dict[int, LessonInstance] = {}
    protected_keys = set()
    for instance in existing:
        key = instant_key(instance.start_time)
        if instance.is_reconcilable(now):
            reconcilable.setdefault(key, instance)
        else:
            protected_keys.add(key)

    kept = set()
    resized = set()
    for projected in desired:
        key = projected.key
        if key in protected_keys:
            continue
        occupant = reconcilable.get(key)
        if occupant is None:
            plan.fresh.append(build_generated_instance(subject, projected))
        elif occupant.duration_minutes == projected.duration_minutes:
            kept.add(occupant.id)
        else:
            plan.resized.setdefault(projected.duration_minutes, []).append(occupant.id)
            resized.add(occupant.id)

    for instance in existing:
        if instance.is_reconcilable(now) and instance.id not in kept and instance.id not in resized:
            plan.stale_ids.append(instance.id)
    plan.kept_ids = sorted(kept)
    return plan


def template_revision(subject: Subject) -> str:
    payload = subject.template.model_dump_json() if subject.template else ""
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:12]


class ScheduleReconciler:
    """Projects subject templates into the lesson store."""

    def __init__(
        self,
        instances: InstanceStore,
        *,
        guard: Optional[ReconciliationGuard] = None,
        default_timezone: str = "Asia/Seoul",
        horizon_weeks: int = DEFAULT_HORIZON_WEEKS,
        max_window_days: int = DEFAULT_MAX_WINDOW_DAYS,
        store_timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS,
    ) -> None:
        self._instances = instances
        self._guard = guard or ReconciliationGuard()
        self._default_timezone = default_timezone
        self._horizon = timedelta(weeks=max(horizon_weeks, 1))
        self._max_window_days = max(max_window_days, 1)
        self._store_timeout = store_timeout_seconds

    @property
    def guard(self) -> ReconciliationGuard:
        return self._guard

    def subject_timezone(self, subject: Subject) -> str:
        return subject.timezone or self._default_timezone

    async def _store_call(self, description: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._store_timeout)
        except asyncio.TimeoutError as exc:
            raise StoreTimeoutError(f"{description} timed out after {self._store_timeout}s") from exc

    # resync -----------------------------------------------------------------

    async def resync(self, subject: Subject, *, now: Optional[datetime] = None) -> ResyncResult:
        current = ensure_aware(now) if now is not None else datetime.now(timezone.utc)
        key = GuardKey(subject.id, revision=template_revision(subject))
        return await self._guard.run_exclusive(key, lambda: self._resync(subject, current))

    async def _resync(self, subject: Subject, now: datetime) -> ResyncResult:
        if not subject.has_schedule():
            logger.info("Subject %s has no schedule template; resync skipped", subject.id)
            emit_event("schedule_resync", subject_id=subject.id, status="skipped")
            return ResyncResult(subject_id=subject.id, skipped=True)

        assert subject.template is not None
        zone = self.subject_timezone(subject)
        started = time.perf_counter()
        effective_start = now
        if subject.template.active_from is not None:
            effective_start = max(local_midnight(subject.template.active_from, zone), now)
        desired = project_instances(
            subject.template,
            effective_start,
            effective_start + self._horizon,
            now,
            tz=zone,
        )

        existing = await self._store_call("lesson query", self._instances.query(subject.id))
        plan = plan_resync(subject, existing, desired, now)
        if plan.is_noop:
            logger.debug("Schedule for %s already matches its template", subject.id)
            return ResyncResult(subject_id=subject.id, kept=len(plan.kept_ids))

        inserted = deleted = updated = 0
        try:
            # Deletes run last so a failure never leaves fewer lessons than before.
            if plan.fresh:
                inserted += await self._store_call("lesson insert", self._instances.bulk_insert(plan.fresh))
            for minutes, instance_ids in sorted(plan.resized.items()):
                updated += await self._store_call(
                    "lesson update", self._instances.update_duration(instance_ids, minutes)
                )
            if plan.stale_ids:
                deleted += await self._store_call("lesson delete", self._instances.bulk_delete(plan.stale_ids))
        except StoreError as exc:
            duration_ms = (time.perf_counter() - started) * 1000.0
            emit_event(
                "schedule_resync",
                subject_id=subject.id,
                status="error",
                inserted=inserted,
                deleted=deleted,
                updated=updated,
                duration_ms=round(duration_ms, 2),
                error=str(exc),
                exception_type=exc.__class__.__name__,
            )
            if inserted or deleted or updated:
                logger.error(
                    "Resync for %s stopped after %s inserts, %s updates and %s deletes; retry to converge",
                    subject.id,
                    inserted,
                    updated,
                    deleted,
                )
                raise PartialResyncError(
                    subject.id, inserted=inserted, deleted=deleted, updated=updated, cause=exc
                ) from exc
            raise

        duration_ms = (time.perf_counter() - started) * 1000.0
        logger.info(
            "Resynced %s: %s inserted, %s updated, %s deleted, %s kept",
            subject.id,
            inserted,
            updated,
            deleted,
            len(plan.kept_ids),
        )
        emit_event(
            "schedule_resync",
            subject_id=subject.id,
            status="success",
            inserted=inserted,
            deleted=deleted,
            updated=updated,
            kept=len(plan.kept_ids),
            horizon_end=effective_start + self._horizon,
            duration_ms=round(duration_ms, 2),
        )
        return ResyncResult(
            subject_id=subject.id,
            inserted=inserted,
            deleted=deleted,
            updated=updated,
            kept=len(plan.kept_ids),
        )

    # ensure -----------------------------------------------------------------

    def validate_window(self, window_start: WindowBound, window_end: WindowBound) -> None:
        start, end = window_bounds(window_start, window_end, self._default_timezone)
        if end < start:
            raise InvalidWindowError("Window end precedes window start.")
        if end - start > timedelta(days=self._max_window_days):
            raise InvalidWindowError(
                f"Window spans more than {self._max_window_days} days; request a narrower range."
            )

    async def ensure(
        self,
        subjects: Sequence[Subject],
        window_start: WindowBound,
        window_end: WindowBound,
        *,
        now: Optional[datetime] = None,
    ) -> EnsureReport:
        self.validate_window(window_start, window_end)
        current = ensure_aware(now) if now is not None else datetime.now(timezone.utc)
        unique: Dict[str, Subject] = {}
        for subject in subjects:
            unique.setdefault(subject.id, subject)
        eligible = [
            subject
            for subject in unique.values()
            if subject.kind == "student" and subject.is_active and subject.has_schedule()
        ]
        report = EnsureReport(window_start=window_start, window_end=window_end)
        if not eligible:
            return report

        logger.info(
            "Ensuring lessons for %s subjects between %s and %s",
            len(eligible),
            window_start.isoformat(),
            window_end.isoformat(),
        )
        report.outcomes = list(
            await asyncio.gather(
                *(self._ensure_subject(subject, window_start, window_end, current) for subject in eligible)
            )
        )
        emit_event(
            "schedule_ensure",
            window_start=window_start,
            window_end=window_end,
            subject_count=len(eligible),
            inserted=report.inserted,
            failed=[outcome.subject_id for outcome in report.failed],
        )
        return report

    async def _ensure_subject(
        self,
        subject: Subject,
        window_start: WindowBound,
        window_end: WindowBound,
        now: datetime,
    ) -> SubjectEnsureOutcome:
        key = GuardKey(subject.id, window_start, window_end, revision=template_revision(subject))
        try:
            inserted = await self._guard.run_exclusive(
                key, lambda: self._fill_window(subject, window_start, window_end, now)
            )
        except ScheduleError as exc:
            logger.warning("Ensure failed for %s: %s", subject.id, exc)
            return SubjectEnsureOutcome(subject_id=subject.id, error=str(exc))
        return SubjectEnsureOutcome(subject_id=subject.id, inserted=inserted)

    async def _fill_window(
        self,
        subject: Subject,
        window_start: WindowBound,
        window_end: WindowBound,
        now: datetime,
    ) -> int:
        assert subject.template is not None
        zone = self.subject_timezone(subject)
        start, end = window_bounds(window_start, window_end, zone)
        existing = await self._store_call("lesson query", self._instances.query(subject.id, start, end))
        existing_keys = {instant_key(instance.start_time) for instance in existing}

        candidates = project_instances(subject.template, start, end, now, tz=zone)
        missing = [
            build_generated_instance(subject, projected)
            for projected in candidates
            if projected.key not in existing_keys
        ]
        if not missing:
            return 0
        inserted = await self._store_call("lesson insert", self._instances.bulk_insert(missing))
        logger.info("Filled %s lessons for %s", inserted, subject.id)
        return inserted


__all__ = [
    "EnsureReport",
    "ResyncPlan",
    "ResyncResult",
    "ScheduleReconciler",
    "SubjectEnsureOutcome",
    "build_generated_instance",
    "plan_resync",
    "template_revision",
]
