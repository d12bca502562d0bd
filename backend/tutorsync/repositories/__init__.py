"""SQL implementations of the lesson, completion log, and subject stores."""

from .completion_logs import CompletionLogRepository, SqlCompletionLogStore
from .lesson_instances import LessonInstanceRepository, SqlInstanceStore
from .subjects import SqlSubjectRepository, SubjectTableRepository

__all__ = [
    "CompletionLogRepository",
    "LessonInstanceRepository",
    "SqlCompletionLogStore",
    "SqlInstanceStore",
    "SqlSubjectRepository",
    "SubjectTableRepository",
]
