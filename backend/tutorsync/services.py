"""Wiring of stores, reconciler, and trackers according to the active settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .concurrency import ReconciliationGuard
from .config import Settings, get_settings
from .lesson_service import LessonService
from .reconciliation import ScheduleReconciler
from .routines import RoutineTracker
from .stores import (
    CompletionLogStore,
    InMemoryCompletionLogStore,
    InMemoryInstanceStore,
    InMemorySubjectRepository,
    InstanceStore,
    SubjectRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class ScheduleServices:
    subjects: SubjectRepository
    instances: InstanceStore
    logs: CompletionLogStore
    reconciler: ScheduleReconciler
    tracker: RoutineTracker
    lessons: LessonService


def _memory_stores() -> tuple[SubjectRepository, InstanceStore, CompletionLogStore]:
    return InMemorySubjectRepository(), InMemoryInstanceStore(), InMemoryCompletionLogStore()


def _database_stores() -> tuple[SubjectRepository, InstanceStore, CompletionLogStore]:
    from .repositories import SqlCompletionLogStore, SqlInstanceStore, SqlSubjectRepository

    return SqlSubjectRepository(), SqlInstanceStore(), SqlCompletionLogStore()


def build_services(
    settings: Optional[Settings] = None,
    *,
    subjects: Optional[SubjectRepository] = None,
    instances: Optional[InstanceStore] = None,
    logs: Optional[CompletionLogStore] = None,
) -> ScheduleServices:
    """Assemble the service graph; explicit stores override the configured persistence mode."""
    settings = settings or get_settings()
    if settings.persistence_mode == "memory":
        default_subjects, default_instances, default_logs = _memory_stores()
    else:
        default_subjects, default_instances, default_logs = _database_stores()
    subjects = subjects or default_subjects
    instances = instances or default_instances
    logs = logs or default_logs

    reconciler = ScheduleReconciler(
        instances,
        guard=ReconciliationGuard(scope=settings.guard_scope),
        default_timezone=settings.default_timezone,
        horizon_weeks=settings.resync_horizon_weeks,
        max_window_days=settings.max_ensure_window_days,
        store_timeout_seconds=settings.store_timeout_seconds,
    )
    tracker = RoutineTracker(logs, subjects, default_timezone=settings.default_timezone)
    lessons = LessonService(
        instances,
        subjects,
        default_duration_minutes=settings.default_makeup_minutes,
    )
    logger.info(
        "Schedule services ready (persistence=%s, guard=%s, horizon=%s weeks)",
        settings.persistence_mode,
        settings.guard_scope,
        settings.resync_horizon_weeks,
    )
    return ScheduleServices(
        subjects=subjects,
        instances=instances,
        logs=logs,
        reconciler=reconciler,
        tracker=tracker,
        lessons=lessons,
    )


_services: Optional[ScheduleServices] = None


def get_services() -> ScheduleServices:
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[ScheduleServices]) -> None:
    """Install a prebuilt service graph, or clear it with ``None``."""
    global _services
    _services = services


def get_reconciler() -> ScheduleReconciler:
    return get_services().reconciler


def get_routine_tracker() -> RoutineTracker:
    return get_services().tracker


def get_lesson_service() -> LessonService:
    return get_services().lessons


def get_subject_repository() -> SubjectRepository:
    return get_services().subjects


__all__ = [
    "ScheduleServices",
    "build_services",
    "get_lesson_service",
    "get_reconciler",
    "get_routine_tracker",
    "get_services",
    "get_subject_repository",
    "set_services",
]
