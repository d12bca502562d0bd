from __future__ import annotations

import types

import pytest
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from scripts import run_migrations as runner


def _config(url: str = runner.URL_PLACEHOLDER) -> Config:
    config = runner.get_alembic_config(str(runner.BACKEND_ROOT / "alembic.ini"))
    config.set_main_option("sqlalchemy.url", url)
    return config


def test_resolve_database_url_prefers_env_over_placeholder(monkeypatch) -> None:
    monkeypatch.setenv("TUTORSYNC_DATABASE_URL", "sqlite://")
    config = _config()

    assert runner.resolve_database_url(config) == "sqlite://"
    assert config.get_main_option("sqlalchemy.url") == "sqlite://"


def test_resolve_database_url_keeps_explicit_url(monkeypatch) -> None:
    monkeypatch.setenv("TUTORSYNC_DATABASE_URL", "sqlite:///ignored.db")

    assert runner.resolve_database_url(_config("sqlite:///explicit.db")) == "sqlite:///explicit.db"


def test_resolve_database_url_requires_configuration(monkeypatch) -> None:
    monkeypatch.delenv("TUTORSYNC_DATABASE_URL", raising=False)

    with pytest.raises(RuntimeError):
        runner.resolve_database_url(_config())


def test_wait_for_database_succeeds_with_sqlite(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'ready.sqlite'}"

    assert runner.wait_for_database(url, timeout=2, poll_interval=0.1) == 1


def test_wait_for_database_times_out(monkeypatch) -> None:
    attempts = []

    class DummyEngine:
        def connect(self) -> types.SimpleNamespace:
            attempts.append(1)
            raise runner.OperationalError("SELECT 1", {}, Exception("boom"))

        def dispose(self) -> None:
            pass

    monkeypatch.setattr(runner, "create_engine", lambda *_, **__: DummyEngine())
    with pytest.raises(RuntimeError):
        runner.wait_for_database("postgresql://example", timeout=0, poll_interval=0)
    assert len(attempts) == 1


def test_run_migrations_waits_then_upgrades(monkeypatch, telemetry_events) -> None:
    recorded: dict[str, object] = {}

    def fake_wait(url: str, *, timeout: int, poll_interval: float) -> int:
        recorded["wait"] = (url, timeout, poll_interval)
        return 2

    def fake_upgrade(config, revision: str, sql: bool = False) -> None:  # type: ignore[no-untyped-def]
        recorded["upgrade"] = (revision, sql)

    monkeypatch.setattr(runner, "wait_for_database", fake_wait)
    monkeypatch.setattr(runner.command, "upgrade", fake_upgrade)

    runner.run_migrations("head", timeout=5, poll_interval=1.0, config=_config("sqlite://"))

    assert recorded["wait"] == ("sqlite://", 5, 1.0)
    assert recorded["upgrade"] == ("head", False)
    assert telemetry_events[-1].name == "db_migrations"
    assert telemetry_events[-1].payload["readiness_attempts"] == 2


def test_sql_mode_skips_readiness_probe(monkeypatch) -> None:
    calls: list[tuple[str, bool]] = []

    def fail_wait(*_args, **_kwargs) -> int:  # type: ignore[no-untyped-def]
        raise AssertionError("offline rendering must not probe the database")

    monkeypatch.setattr(runner, "wait_for_database", fail_wait)
    monkeypatch.setattr(runner.command, "upgrade", lambda config, revision, sql=False: calls.append((revision, sql)))

    runner.run_migrations("head", timeout=5, poll_interval=1.0, config=_config("sqlite://"), sql=True)

    assert calls == [("head", True)]


def test_upgrade_creates_schedule_tables(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.sqlite'}"

    runner.run_migrations("head", timeout=2, poll_interval=0.1, config=_config(url))

    engine = create_engine(url)
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {"subjects", "lesson_instances", "completion_logs"} <= tables


def test_main_reports_failure(monkeypatch) -> None:
    monkeypatch.delenv("TUTORSYNC_DATABASE_URL", raising=False)

    assert runner.main(["--timeout", "0"]) == 1
