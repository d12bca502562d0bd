"""ORM models backing subjects, lesson instances, and routine logs."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class SubjectModel(TimestampMixin, Base):
    __tablename__ = "subjects"
    __table_args__ = (Index("ix_subjects_status", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), default="student", nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="active", nullable=False)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    schedule_template: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    active_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    active_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    repeat_days: Mapped[list[int]] = mapped_column(JSONType, default=list, nullable=False)
    target_time: Mapped[str | None] = mapped_column(String(5), nullable=True)

    lessons: Mapped[list["LessonInstanceModel"]] = relationship(
        back_populates="subject", cascade="all, delete-orphan"
    )
    completion_logs: Mapped[list["CompletionLogModel"]] = relationship(
        back_populates="subject", cascade="all, delete-orphan"
    )


class LessonInstanceModel(TimestampMixin, Base):
    __tablename__ = "lesson_instances"
    __table_args__ = (
        UniqueConstraint("subject_id", "start_time", name="uq_lesson_instances_subject_start"),
        Index("ix_lesson_instances_subject_start", "subject_id", "start_time"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subject_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=40, nullable=False)
    origin: Mapped[str] = mapped_column(String(32), default="template-generated", nullable=False)
    lifecycle: Mapped[str] = mapped_column(String(16), default="scheduled", nullable=False)
    title: Mapped[str] = mapped_column(Text, default="", nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    subject: Mapped[SubjectModel] = relationship(back_populates="lessons")


class CompletionLogModel(TimestampMixin, Base):
    __tablename__ = "completion_logs"
    __table_args__ = (
        UniqueConstraint("subject_id", "log_date", name="uq_completion_logs_subject_date"),
        Index("ix_completion_logs_subject_date", "subject_id", "log_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subject_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False
    )
    log_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    subject: Mapped[SubjectModel] = relationship(back_populates="completion_logs")


__all__ = [
    "CompletionLogModel",
    "LessonInstanceModel",
    "SubjectModel",
]
