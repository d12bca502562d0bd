"""Shared plumbing for the SQL stores: thread offloading and error translation."""

from __future__ import annotations

import functools
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

import anyio.to_thread
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.session import session_scope
from ..errors import StoreError
from ..recurrence import ensure_aware

T = TypeVar("T")


def to_utc(value: datetime) -> datetime:
    """Normalize to aware UTC; drivers without timezone support hand back naive UTC."""
    return ensure_aware(value).astimezone(timezone.utc)


def optional_utc(value: Optional[datetime]) -> Optional[datetime]:
    return to_utc(value) if value is not None else None


def _in_session(work: Callable[[Session], T], commit: bool) -> T:
    try:
        with session_scope(commit=commit) as session:
            return work(session)
    except SQLAlchemyError as exc:
        raise StoreError(f"Database operation failed: {exc}") from exc


async def run_in_session(work: Callable[[Session], T], *, commit: bool = True) -> T:
    """Run ``work`` inside a session on a worker thread.

    Cancellation abandons the worker so callers that time out return
    promptly; the session still commits or rolls back on its own.
    """
    return await anyio.to_thread.run_sync(
        functools.partial(_in_session, work, commit),
        abandon_on_cancel=True,
    )


__all__ = ["optional_utc", "run_in_session", "to_utc"]
