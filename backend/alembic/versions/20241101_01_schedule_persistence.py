"""Subjects, lesson instances, and routine completion logs."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20241101_01_schedule_persistence"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "subjects",
        sa.Column("id", sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False, server_default="student"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("schedule_template", sa.JSON(), nullable=False),
        sa.Column("active_from", sa.Date(), nullable=True),
        sa.Column("active_until", sa.Date(), nullable=True),
        sa.Column("repeat_days", sa.JSON(), nullable=False),
        sa.Column("target_time", sa.String(length=5), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_subjects"),
    )
    op.create_index("ix_subjects_status", "subjects", ["status"])

    op.create_table(
        "lesson_instances",
        sa.Column("id", sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.Column("subject_id", sa.String(length=36), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="40"),
        sa.Column("origin", sa.String(length=32), nullable=False, server_default="template-generated"),
        sa.Column("lifecycle", sa.String(length=16), nullable=False, server_default="scheduled"),
        sa.Column("title", sa.Text(), nullable=False, server_default=""),
        sa.Column("note", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_lesson_instances"),
        sa.ForeignKeyConstraint(
            ["subject_id"],
            ["subjects.id"],
            name="fk_lesson_instances_subject_id_subjects",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("subject_id", "start_time", name="uq_lesson_instances_subject_start"),
    )
    op.create_index("ix_lesson_instances_subject_start", "lesson_instances", ["subject_id", "start_time"])

    op.create_table(
        "completion_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.Column("subject_id", sa.String(length=36), nullable=False),
        sa.Column("log_date", sa.Date(), nullable=False),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_completion_logs"),
        sa.ForeignKeyConstraint(
            ["subject_id"],
            ["subjects.id"],
            name="fk_completion_logs_subject_id_subjects",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("subject_id", "log_date", name="uq_completion_logs_subject_date"),
    )
    op.create_index("ix_completion_logs_subject_date", "completion_logs", ["subject_id", "log_date"])


def downgrade() -> None:
    op.drop_index("ix_completion_logs_subject_date", table_name="completion_logs")
    op.drop_table("completion_logs")
    op.drop_index("ix_lesson_instances_subject_start", table_name="lesson_instances")
    op.drop_table("lesson_instances")
    op.drop_index("ix_subjects_status", table_name="subjects")
    op.drop_table("subjects")
