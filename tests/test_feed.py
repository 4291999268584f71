from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from browser_support import require_chromium

from agentic_sandbox.config import SandboxConfig
from agentic_sandbox.feed import ConsoleFeed, _FeedClient
from agentic_sandbox.sandbox import Sandbox
from agentic_sandbox.workflow import resolve_timeouts


def _websockets() -> Any:
    try:
        import websockets  # type: ignore[import-not-found]
    except Exception:  # noqa: BLE001
        pytest.skip("websockets not installed")
    return websockets


async def _recv_until(ws: Any, kind: str, timeout: float = 2.0) -> dict[str, Any]:
    async def _loop() -> dict[str, Any]:
        while True:
            msg = json.loads(await ws.recv())
            if msg.get("type") == kind:
                return msg

    return await asyncio.wait_for(_loop(), timeout)


def test_client_queue_drops_oldest() -> None:
    async def _main() -> None:
        client = _FeedClient(2)
        for i in range(4):
            client.push({"n": i})
        assert client.dropped == 2
        assert [client.queue.get_nowait()["n"] for _ in range(2)] == [2, 3]

    asyncio.run(_main())


def test_feed_streams_snapshot_events_and_contexts() -> None:
    websockets = _websockets()
    require_chromium()

    async def _main() -> None:
        async with Sandbox(SandboxConfig(), timeouts=resolve_timeouts("fast", env={})) as sandbox:
            cid = await sandbox.start()
            async with ConsoleFeed(sandbox, host="127.0.0.1", port=0) as feed:
                assert feed.port != 0
                assert feed.status()["listening"] is True

                async with websockets.connect(f"ws://127.0.0.1:{feed.port}") as ws:
                    first = json.loads(await asyncio.wait_for(ws.recv(), 2.0))
                    assert first["type"] == "snapshot"
                    assert first["data"]["activeId"] == cid

                    await ws.send(json.dumps({"type": "ping"}))
                    await ws.send("not json")
                    pong = await _recv_until(ws, "pong")
                    assert isinstance(pong["ts"], int)

                    other = sandbox.open_context("form")
                    contexts = await _recv_until(ws, "contexts")
                    assert contexts["data"]["activeId"] == other

                    await sandbox.run_sample(context_id=cid)
                    alert = await _recv_until(ws, "alert")
                    assert alert["data"]["kind"] == "SensitiveSubmit"
                    assert alert["data"]["contextId"] == cid

            assert feed.status()["listening"] is False

    asyncio.run(_main())


def test_feed_never_leaks_raw_passwords() -> None:
    websockets = _websockets()
    require_chromium()

    async def _main() -> None:
        async with Sandbox(SandboxConfig(), timeouts=resolve_timeouts("fast", env={})) as sandbox:
            await sandbox.start()
            async with ConsoleFeed(sandbox, host="127.0.0.1", port=0) as feed:
                async with websockets.connect(f"ws://127.0.0.1:{feed.port}") as ws:
                    await asyncio.wait_for(ws.recv(), 2.0)
                    await sandbox.run_sample()
                    frames: list[str] = []
                    while True:
                        try:
                            frames.append(await asyncio.wait_for(ws.recv(), 0.2))
                        except asyncio.TimeoutError:
                            break
        assert any("form_submit" in frame for frame in frames)
        assert not any("secret123" in frame for frame in frames)

    asyncio.run(_main())
