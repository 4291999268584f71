from __future__ import annotations

import asyncio
from typing import Any

from agentic_sandbox.events import (
    EV_ASSERT,
    AlertKind,
    AlertRecord,
    EventIntake,
    EventRecord,
    RecordLog,
)
from agentic_sandbox.host import ParentWindow
from agentic_sandbox.protocol import make_event

# ═══════════════════════════════════════════════════════════════════════════════
# RECORDS + LOGS
# ═══════════════════════════════════════════════════════════════════════════════


def test_record_log_is_bounded_and_newest_first() -> None:
    log = RecordLog(3)
    for i in range(5):
        log.append(i)
    assert len(log) == 3
    assert log.snapshot() == [4, 3, 2]
    assert log.snapshot(2) == [4, 3]
    assert log.snapshot(0) == []
    assert list(log) == [2, 3, 4]
    log.clear()
    assert log.snapshot() == []


def test_message_redacts_but_payload_keeps_raw_values() -> None:
    rec = EventRecord(1, "c1", "form_submit", {"#username": "alice", "#password": "secret123"})
    assert "secret123" not in rec.message
    assert "alice" in rec.message
    assert rec.payload["#password"] == "secret123"
    as_dict = rec.to_dict()
    assert as_dict["payload"]["#password"] != "secret123"
    assert as_dict["contextId"] == "c1"


def test_message_formats() -> None:
    assert EventRecord(1, "c", "ready").message == "ready"
    assert EventRecord(1, "c", EV_ASSERT, {"includes": "Welcome", "ok": True}).message == 'assert OK: "Welcome"'
    assert EventRecord(1, "c", EV_ASSERT, {"includes": "Nope", "ok": False}).message == 'assert FAILED: "Nope"'
    assert EventRecord(1, "c", "pong", {"a": 1}).message == 'pong {"a": 1}'


def test_alert_record_to_dict() -> None:
    alert = AlertRecord(5, "c2", AlertKind.CLICK_STORM, "Rapid clicking detected.")
    assert alert.to_dict() == {"ts": 5, "contextId": "c2", "kind": "ClickStorm", "detail": "Rapid clicking detected."}
    assert str(AlertKind.POTENTIAL_XSS) == "PotentialXSS"


# ═══════════════════════════════════════════════════════════════════════════════
# INTAKE
# ═══════════════════════════════════════════════════════════════════════════════


def test_intake_attributes_by_source_and_drops_the_rest() -> None:
    async def _main() -> None:
        parent = ParentWindow()
        known, stranger = object(), object()
        events = RecordLog(10)
        intake = EventIntake(events, clock=lambda: 42, monotonic=lambda: 7)
        intake.attach(parent)
        intake.subscribe(known, "c1")

        parent.post_message(make_event("click", {"tag": "A"}), source=known)
        parent.post_message(make_event("click", {"tag": "B"}), source=stranger)
        parent.post_message({"type": "something", "event": "click"}, source=known)
        parent.post_message("garbage", source=known)
        await asyncio.sleep(0)

        assert [(r.context_id, r.event, r.payload, r.timestamp_ms, r.elapsed_ms) for r in events] == [
            ("c1", "click", {"tag": "A"}, 42, 7)
        ]

        intake.unsubscribe(known)
        parent.post_message(make_event("click"), source=known)
        await asyncio.sleep(0)
        assert len(events) == 1

        intake.detach()
        intake.subscribe(known, "c1")
        parent.post_message(make_event("click"), source=known)
        await asyncio.sleep(0)
        assert len(events) == 1

    asyncio.run(_main())


def test_parent_clones_when_posting() -> None:
    async def _main() -> None:
        parent = ParentWindow()
        received: list[Any] = []
        parent.add_message_listener(lambda ev: received.append(ev.data))
        msg = make_event("form_submit", {"q": "before"})
        parent.post_message(msg)
        msg["payload"]["q"] = "after"
        await asyncio.sleep(0)
        assert received == [{"type": "agentic:event", "event": "form_submit", "payload": {"q": "before"}}]

    asyncio.run(_main())


def test_drop_context_forgets_every_window_of_it() -> None:
    intake = EventIntake(RecordLog(10))
    old, new, other = object(), object(), object()
    intake.subscribe(old, "c1")
    intake.subscribe(new, "c1")
    intake.subscribe(other, "c2")
    intake.drop_context("c1")
    assert intake.context_for(old) is None and intake.context_for(new) is None
    assert intake.context_for(other) == "c2"


def test_listeners_see_records_and_failures_are_contained() -> None:
    events = RecordLog(10)
    intake = EventIntake(events)
    seen: list[str] = []

    def broken(_rec: EventRecord, _alerts: list[Any]) -> None:
        raise RuntimeError("listener bug")

    intake.add_listener(broken)
    intake.add_listener(lambda rec, alerts: seen.append(rec.event))
    intake.ingest("c1", "pong")
    intake.record("c1", EV_ASSERT, {"includes": "x", "ok": True})
    assert seen == ["pong", EV_ASSERT]
    assert len(events) == 2
