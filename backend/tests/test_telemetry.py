from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from tutorsync.telemetry import emit_event, register_listener


def test_emit_event_sanitizes_payload(telemetry_events) -> None:
    event = emit_event(
        "schedule_ensure",
        window_start=date(2024, 1, 1),
        emitted=datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc),
        failed={"b", "a"},
        pair=(1, 2),
    )

    assert telemetry_events == [event]
    assert event.payload == {
        "window_start": "2024-01-01",
        "emitted": "2024-01-01T09:00:00+00:00",
        "failed": ["a", "b"],
        "pair": [1, 2],
    }


def test_failing_listener_does_not_block_others(caplog) -> None:
    received = []

    def broken(_event) -> None:  # type: ignore[no-untyped-def]
        raise RuntimeError("listener down")

    register_listener(broken)
    register_listener(received.append)

    with caplog.at_level(logging.INFO, logger="tutorsync.telemetry"):
        emit_event("schedule_resync", subject_id="s1", status="success")

    assert [event.name for event in received] == ["schedule_resync"]
    assert "Telemetry listener failed" in caplog.text
    assert "TELEMETRY" in caplog.text


def test_unregister_stops_delivery() -> None:
    received = []
    unregister = register_listener(received.append)
    emit_event("first")
    unregister()
    emit_event("second")

    assert [event.name for event in received] == ["first"]
