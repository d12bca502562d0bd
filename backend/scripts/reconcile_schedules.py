"""Operator CLI for subject imports and lesson reconciliation.

Examples::

    python -m scripts.reconcile_schedules import-subjects subjects.json
    python -m scripts.reconcile_schedules resync --all
    python -m scripts.reconcile_schedules ensure --start 2024-01-01 --end 2024-01-31
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import date
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from tutorsync.db.session import create_schema
from tutorsync.errors import ScheduleError, TemplateConflictError
from tutorsync.lessons import Subject
from tutorsync.logging_config import configure_logging
from tutorsync.services import ScheduleServices, build_services

logger = logging.getLogger("tutorsync.reconcile")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import subjects and reconcile lesson schedules.")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before running (local sqlite setups).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    importer = commands.add_parser("import-subjects", help="Load subjects from a JSON array.")
    importer.add_argument("path", type=Path)

    resync = commands.add_parser("resync", help="Realign future lessons with each subject's template.")
    resync.add_argument("subject_ids", nargs="*")
    resync.add_argument("--all", action="store_true", help="Resync every active subject.")

    ensure = commands.add_parser("ensure", help="Fill missing lessons inside a date window.")
    ensure.add_argument("--start", type=date.fromisoformat, required=True)
    ensure.add_argument("--end", type=date.fromisoformat, required=True)
    ensure.add_argument("--subject", action="append", dest="subject_ids", default=[])
    return parser.parse_args(argv)


async def import_subjects(services: ScheduleServices, path: Path) -> int:
    if not path.exists():
        logger.info("No subject file found at %s", path)
        return 0
    with path.open(encoding="utf-8") as handle:
        payload = json.load(handle)
    imported = 0
    for entry in payload if isinstance(payload, list) else [payload]:
        try:
            subject = Subject.model_validate(entry)
        except (ValidationError, TemplateConflictError) as exc:
            logger.warning("Skipping invalid subject payload: %s", exc)
            continue
        await services.subjects.save(subject)
        imported += 1
    logger.info("Imported %d subjects", imported)
    return imported


async def _select_subjects(services: ScheduleServices, subject_ids: List[str], *, all_active: bool) -> List[Subject]:
    if all_active or not subject_ids:
        return await services.subjects.list_subjects(active_only=True)
    return [await services.subjects.get(subject_id) for subject_id in subject_ids]


async def resync_subjects(services: ScheduleServices, subject_ids: List[str], *, all_active: bool) -> int:
    """Resync each subject in turn; returns the number that failed."""
    failures = 0
    for subject in await _select_subjects(services, subject_ids, all_active=all_active):
        try:
            result = await services.reconciler.resync(subject)
        except ScheduleError as exc:
            failures += 1
            logger.error("Resync failed for %s: %s", subject.id, exc)
            continue
        logger.info(
            "%s: +%d -%d ~%d (kept %d%s)",
            subject.name,
            result.inserted,
            result.deleted,
            result.updated,
            result.kept,
            ", no template" if result.skipped else "",
        )
    return failures


async def ensure_window(services: ScheduleServices, start: date, end: date, subject_ids: List[str]) -> int:
    subjects = await _select_subjects(services, subject_ids, all_active=False)
    report = await services.reconciler.ensure(subjects, start, end)
    logger.info("Ensured %s..%s: %d lessons inserted", start, end, report.inserted)
    for outcome in report.failed:
        logger.error("Ensure failed for %s: %s", outcome.subject_id, outcome.error)
    return len(report.failed)


async def _run(args: argparse.Namespace) -> int:
    services = build_services()
    if args.command == "import-subjects":
        await import_subjects(services, args.path)
        return 0
    if args.command == "resync":
        return await resync_subjects(services, args.subject_ids, all_active=args.all)
    return await ensure_window(services, args.start, args.end, args.subject_ids)


def main(argv: Optional[list[str]] = None) -> int:
    configure_logging()
    args = parse_args(argv)
    if args.create_schema:
        create_schema()
    try:
        failures = asyncio.run(_run(args))
    except ScheduleError as exc:
        logger.error("%s", exc)
        return 1
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
