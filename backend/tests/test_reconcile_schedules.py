from __future__ import annotations

import asyncio
import json
from datetime import date

import pytest

from scripts import reconcile_schedules as cli
from tutorsync.config import get_settings
from tutorsync.errors import SubjectNotFoundError
from tutorsync.services import build_services


def _subjects_file(tmp_path):  # type: ignore[no-untyped-def]
    path = tmp_path / "subjects.json"
    path.write_text(
        json.dumps(
            [
                {
                    "id": "s1",
                    "name": "Seoyeon",
                    "timezone": "Asia/Seoul",
                    "template": {"slots": [{"day": 1, "time": "19:00"}, {"day": 4, "time": "19:00", "duration": 50}]},
                },
                {
                    "id": "dup",
                    "name": "Colliding",
                    "template": {"slots": [{"day": 1, "time": "19:00"}, {"day": 1, "time": "19:00"}]},
                },
                {"id": "bad", "name": "Bad days", "repeat_days": [9]},
            ]
        ),
        encoding="utf-8",
    )
    return path


def test_import_skips_invalid_subjects(tmp_path) -> None:
    services = build_services(get_settings())

    imported = asyncio.run(cli.import_subjects(services, _subjects_file(tmp_path)))
    subjects = asyncio.run(services.subjects.list_subjects(active_only=False))

    assert imported == 1
    assert [subject.id for subject in subjects] == ["s1"]


def test_resync_and_ensure_commands(tmp_path) -> None:
    services = build_services(get_settings())

    async def scenario() -> tuple[int, int]:
        await cli.import_subjects(services, _subjects_file(tmp_path))
        resync_failures = await cli.resync_subjects(services, [], all_active=True)
        ensure_failures = await cli.ensure_window(services, date(2030, 1, 1), date(2030, 1, 31), ["s1"])
        return resync_failures, ensure_failures

    assert asyncio.run(scenario()) == (0, 0)
    lessons = asyncio.run(services.instances.query("s1"))
    assert lessons
    assert {lesson.duration_minutes for lesson in lessons} == {40, 50}


def test_missing_subject_is_reported() -> None:
    services = build_services(get_settings())

    with pytest.raises(SubjectNotFoundError):
        asyncio.run(cli.resync_subjects(services, ["ghost"], all_active=False))


def test_parse_args_for_ensure() -> None:
    args = cli.parse_args(["ensure", "--start", "2030-01-01", "--end", "2030-01-31", "--subject", "s1"])

    assert args.command == "ensure"
    assert args.start == date(2030, 1, 1)
    assert args.subject_ids == ["s1"]
