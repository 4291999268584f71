from __future__ import annotations

import asyncio
from typing import Any

import pytest

from agentic_sandbox.protocol import (
    CMD_ASSERT_TEXT,
    COMMAND_TYPE,
    EVENT_TYPE,
    RESERVED_COMMANDS,
    RESERVED_EVENTS,
    MessageChannel,
    MessageEvent,
    make_command,
    make_event,
    parse_command,
    parse_event,
    request_assert_text,
)


async def _turns(n: int = 5) -> None:
    for _ in range(n):
        await asyncio.sleep(0)


# ═══════════════════════════════════════════════════════════════════════════════
# MESSAGE SHAPES
# ═══════════════════════════════════════════════════════════════════════════════


def test_make_event_omits_missing_payload() -> None:
    assert make_event("ready") == {"type": EVENT_TYPE, "event": "ready"}
    assert make_event("click", {"tag": "A"}) == {"type": EVENT_TYPE, "event": "click", "payload": {"tag": "A"}}


def test_make_command_omits_missing_args() -> None:
    assert make_command("ping") == {"type": COMMAND_TYPE, "command": "ping"}
    assert make_command("click", {"selector": "#go"})["args"] == {"selector": "#go"}


def test_parse_event_roundtrip() -> None:
    parsed = parse_event(make_event("form_submit", {"q": "x"}))
    assert parsed is not None
    assert parsed.event == "form_submit"
    assert parsed.payload == {"q": "x"}


@pytest.mark.parametrize(
    "data",
    [
        None,
        "agentic:event",
        [],
        {},
        {"event": "ready"},
        {"type": "other", "event": "ready"},
        {"type": EVENT_TYPE},
        {"type": EVENT_TYPE, "event": ""},
        {"type": EVENT_TYPE, "event": 42},
        {"type": COMMAND_TYPE, "command": "ping"},
    ],
)
def test_parse_event_rejects_malformed(data: Any) -> None:
    assert parse_event(data) is None


def test_parse_command_requires_discriminator() -> None:
    assert parse_command({"command": "ping"}) is None
    assert parse_command({"type": EVENT_TYPE, "command": "ping"}) is None
    cmd = parse_command(make_command("fill", {"#q": "x"}))
    assert cmd is not None and cmd.command == "fill" and cmd.args == {"#q": "x"}


# ═══════════════════════════════════════════════════════════════════════════════
# CHANNELS
# ═══════════════════════════════════════════════════════════════════════════════


def test_message_channel_delivers_async_and_clones() -> None:
    async def _main() -> None:
        channel = MessageChannel()
        got: list[Any] = []
        channel.port2.on_message = lambda ev: got.append(ev.data)

        payload = {"items": [1, 2]}
        channel.port1.post_message(payload)
        payload["items"].append(3)
        assert got == []  # never synchronous

        await _turns()
        assert got == [{"items": [1, 2]}]
        assert got[0] is not payload

    asyncio.run(_main())


def test_message_port_queues_until_handler_set() -> None:
    async def _main() -> None:
        channel = MessageChannel()
        channel.port1.post_message({"ok": True})
        await _turns()

        got: list[MessageEvent] = []
        channel.port2.on_message = got.append
        assert [ev.data for ev in got] == [{"ok": True}]

    asyncio.run(_main())


def test_closed_port_drops_messages() -> None:
    async def _main() -> None:
        channel = MessageChannel()
        got: list[Any] = []
        channel.port2.on_message = lambda ev: got.append(ev.data)
        channel.port2.close()
        channel.port1.post_message("x")
        await _turns()
        assert got == []

    asyncio.run(_main())


# ═══════════════════════════════════════════════════════════════════════════════
# assertText REPLY PATH
# ═══════════════════════════════════════════════════════════════════════════════


def test_request_assert_text_resolves_from_reply_port() -> None:
    async def _main() -> None:
        sent: list[dict[str, Any]] = []

        def post(message: dict[str, Any], ports: Any = None) -> bool:
            sent.append(message)
            ports[0].post_message({"ok": True})
            return True

        ok = await request_assert_text(post, "#status", "Welcome", timeout=1.0)
        assert ok is True
        assert sent[0]["command"] == CMD_ASSERT_TEXT
        assert sent[0]["args"] == {"selector": "#status", "includes": "Welcome"}

    asyncio.run(_main())


def test_request_assert_text_times_out_to_false() -> None:
    async def _main() -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        ok = await request_assert_text(lambda message, ports=None: True, "#x", "y", timeout=0.05)
        assert ok is False
        assert loop.time() - started < 1.0

    asyncio.run(_main())


def test_request_assert_text_false_when_not_delivered() -> None:
    async def _main() -> None:
        ok = await request_assert_text(lambda message, ports=None: False, "#x", "y", timeout=5.0)
        assert ok is False

    asyncio.run(_main())


def test_request_assert_text_malformed_reply_is_false() -> None:
    async def _main() -> None:
        def post(message: dict[str, Any], ports: Any = None) -> bool:
            ports[0].post_message("yes")
            return True

        assert await request_assert_text(post, "#x", "y", timeout=1.0) is False

    asyncio.run(_main())


def test_reserved_vocabulary() -> None:
    assert RESERVED_COMMANDS == {"ping", "fill", "click", "assertText"}
    assert {"ready", "click", "form_submit", "command_received", "assert_result", "error"} <= RESERVED_EVENTS
