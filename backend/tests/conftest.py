from __future__ import annotations

import os
from typing import Iterator, List

import pytest

os.environ.setdefault("TUTORSYNC_PERSISTENCE_MODE", "memory")
os.environ.setdefault("TUTORSYNC_DEFAULT_TIMEZONE", "UTC")

from tutorsync.config import get_settings  # noqa: E402
from tutorsync.db.session import create_schema, dispose_engine  # noqa: E402
from tutorsync.telemetry import TelemetryEvent, clear_listeners, register_listener  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_telemetry() -> Iterator[None]:
    clear_listeners()
    yield
    clear_listeners()


@pytest.fixture
def telemetry_events() -> List[TelemetryEvent]:
    events: List[TelemetryEvent] = []
    register_listener(events.append)
    return events


@pytest.fixture
def sqlite_database(tmp_path, monkeypatch) -> Iterator[str]:
    """Point the engine at a throwaway sqlite file with every table created."""
    url = f"sqlite:///{tmp_path / 'tutorsync.sqlite'}"
    monkeypatch.setenv("TUTORSYNC_DATABASE_URL", url)
    monkeypatch.setenv("TUTORSYNC_PERSISTENCE_MODE", "database")
    get_settings.cache_clear()
    dispose_engine()
    create_schema()
    yield url
    dispose_engine()
    get_settings.cache_clear()
