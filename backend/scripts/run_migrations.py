"""Apply Alembic migrations for the lesson scheduler once the database answers.

Run before the API starts so the lesson and routine tables exist and match the
ORM models. ``--sql`` renders the upgrade script without touching the database.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from tutorsync.logging_config import configure_logging
from tutorsync.telemetry import emit_event

LOGGER = logging.getLogger("tutorsync.migrations")
URL_PLACEHOLDER = "%(TUTORSYNC_DATABASE_URL)s"
DEFAULT_TIMEOUT = int(os.getenv("TUTORSYNC_DB_MIGRATION_TIMEOUT", "60"))
DEFAULT_POLL_INTERVAL = float(os.getenv("TUTORSYNC_DB_MIGRATION_POLL_INTERVAL", "3"))
SCRIPT_DIR = Path(__file__).resolve().parent
BACKEND_ROOT = SCRIPT_DIR.parent


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upgrade the scheduler database schema.")
    parser.add_argument(
        "--revision",
        default=os.getenv("TUTORSYNC_DB_MIGRATION_REVISION", "head"),
        help="Target revision (default: head).",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=DEFAULT_TIMEOUT,
        help=f"Seconds to wait for the database (default: {DEFAULT_TIMEOUT}).",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help=f"Upper bound in seconds between readiness probes (default: {DEFAULT_POLL_INTERVAL}).",
    )
    parser.add_argument(
        "--config",
        default=str(BACKEND_ROOT / "alembic.ini"),
        help="Path to alembic.ini.",
    )
    parser.add_argument(
        "--sql",
        action="store_true",
        help="Print the upgrade SQL instead of applying it.",
    )
    return parser.parse_args(argv)


def get_alembic_config(config_path: str) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    return config


def resolve_database_url(config: Config) -> str:
    """Use an explicit ``sqlalchemy.url`` when set, else ``TUTORSYNC_DATABASE_URL``."""
    url = config.get_main_option("sqlalchemy.url")
    if url and url != URL_PLACEHOLDER:
        return url
    env_url = os.getenv("TUTORSYNC_DATABASE_URL")
    if not env_url:
        raise RuntimeError("TUTORSYNC_DATABASE_URL must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", env_url)
    return env_url


def wait_for_database(database_url: str, *, timeout: int, poll_interval: float) -> int:
    """Probe with ``SELECT 1`` until it succeeds; returns the number of attempts used.

    The delay between attempts doubles from a quarter of ``poll_interval`` up
    to ``poll_interval``. Non-connectivity errors abort immediately.
    """
    deadline = time.monotonic() + timeout
    delay = max(poll_interval / 4, 0.0)
    attempts = 0
    engine: Optional[Engine] = None
    last_error: Optional[Exception] = None

    try:
        engine = create_engine(database_url, pool_pre_ping=True)
        while True:
            attempts += 1
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                LOGGER.info("Database reachable after %s attempt(s).", attempts)
                return attempts
            except OperationalError as exc:
                last_error = exc
                LOGGER.warning("Database not ready (attempt %s): %s", attempts, exc)
            except SQLAlchemyError as exc:
                last_error = exc
                LOGGER.error("Database error during readiness probe: %s", exc)
                break
            if time.monotonic() + delay >= deadline:
                break
            time.sleep(delay)
            delay = min(delay * 2, poll_interval) if delay else poll_interval
    finally:
        if engine is not None:
            engine.dispose()

    raise RuntimeError(f"Database did not become ready within {timeout}s.") from last_error


def run_migrations(
    revision: str,
    *,
    timeout: int,
    poll_interval: float,
    config: Optional[Config] = None,
    sql: bool = False,
) -> None:
    config = config or get_alembic_config(str(BACKEND_ROOT / "alembic.ini"))
    database_url = resolve_database_url(config)
    if sql:
        LOGGER.info("Rendering upgrade SQL up to %s", revision)
        command.upgrade(config, revision, sql=True)
        return

    started = time.perf_counter()
    attempts = wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    command.upgrade(config, revision)
    duration_ms = (time.perf_counter() - started) * 1000.0
    LOGGER.info("Migrations complete up to %s.", revision)
    emit_event(
        "db_migrations",
        revision=revision,
        readiness_attempts=attempts,
        duration_ms=round(duration_ms, 2),
    )


def main(argv: Optional[list[str]] = None) -> int:
    configure_logging()
    args = parse_args(argv)
    try:
        config = get_alembic_config(args.config)
        run_migrations(
            args.revision,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            config=config,
            sql=args.sql,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Migration run failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
