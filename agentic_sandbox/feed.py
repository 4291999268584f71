"""Read-only live feed of the sandbox over a local WebSocket.

On connect a client receives ``{"type": "snapshot", "data": ...}``, then a stream of
``event``, ``alert`` and ``contexts`` messages. The feed never changes sandbox state; the
only thing a client may send is ``{"type": "ping"}`` (answered with ``pong``).

Slow clients do not hold anything up: each client has a bounded queue and the oldest
queued message is dropped once it is full.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any

from .events import AlertRecord, EventRecord, now_ms
from .sandbox import Sandbox

logger = logging.getLogger("agentic_sandbox.feed")

DEFAULT_QUEUE_SIZE = 256


def _import_websockets():
    try:
        import websockets  # type: ignore[import-not-found]

        return websockets
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(
            "The live feed requires the 'websockets' Python package. Install it (pip install websockets) "
            "or run without --feed."
        ) from exc


class _FeedClient:
    def __init__(self, queue_size: int) -> None:
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max(1, int(queue_size)))
        self.dropped = 0

    def push(self, msg: dict[str, Any]) -> None:
        if self.queue.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(msg)


class ConsoleFeed:
    def __init__(
        self,
        sandbox: Sandbox,
        *,
        host: str | None = None,
        port: int | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self.sandbox = sandbox
        self.host = host or sandbox.config.feed_host
        self.port = sandbox.config.feed_port if port is None else int(port)
        self.queue_size = queue_size
        self._server: Any = None
        self._clients: set[_FeedClient] = set()
        self._started_at_ms = 0

    async def __aenter__(self) -> ConsoleFeed:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        if self._server is not None:
            return
        websockets = _import_websockets()
        self._server = await websockets.serve(
            self._handler,
            self.host,
            self.port,
            max_size=64_000,
            ping_interval=None,
        )
        sockets = list(getattr(self._server, "sockets", None) or [])
        if sockets:
            self.port = int(sockets[0].getsockname()[1])
        self._started_at_ms = now_ms()
        self.sandbox.intake.add_listener(self._on_record)
        self.sandbox.contexts.add_change_listener(self._on_contexts)
        logger.info("live feed listening on ws://%s:%d", self.host, self.port)

    async def stop(self) -> None:
        srv = self._server
        if srv is None:
            return
        self._server = None
        self.sandbox.intake.remove_listener(self._on_record)
        self.sandbox.contexts.remove_change_listener(self._on_contexts)
        srv.close()
        await srv.wait_closed()
        self._clients.clear()
        logger.info("live feed stopped")

    def status(self) -> dict[str, Any]:
        return {
            "listening": self._server is not None,
            "host": self.host,
            "port": self.port,
            "clients": len(self._clients),
            "dropped": sum(c.dropped for c in self._clients),
            **({"startedAtMs": self._started_at_ms} if self._started_at_ms else {}),
        }

    # ─────────────────────────────────────────────────────────────────────────
    # Publishing
    # ─────────────────────────────────────────────────────────────────────────

    def _broadcast(self, msg: dict[str, Any]) -> None:
        for client in list(self._clients):
            client.push(msg)

    def _on_record(self, record: EventRecord, alerts: list[AlertRecord]) -> None:
        self._broadcast({"type": "event", "data": record.to_dict()})
        for alert in alerts:
            self._broadcast({"type": "alert", "data": alert.to_dict()})

    def _on_contexts(self) -> None:
        self._broadcast({"type": "contexts", "data": self.sandbox.contexts_snapshot()})

    # ─────────────────────────────────────────────────────────────────────────
    # Connections
    # ─────────────────────────────────────────────────────────────────────────

    async def _handler(self, ws):  # type: ignore[no-untyped-def]
        websockets = _import_websockets()
        client = _FeedClient(self.queue_size)
        client.push({"type": "snapshot", "data": self.sandbox.snapshot()})
        self._clients.add(client)
        sender = asyncio.create_task(self._pump(ws, client))
        try:
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except (TypeError, ValueError):
                    continue
                if isinstance(msg, dict) and msg.get("type") == "ping":
                    client.push({"type": "pong", "ts": now_ms()})
        except websockets.exceptions.ConnectionClosed:
            logger.debug("feed client disconnected")
        finally:
            self._clients.discard(client)
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender

    async def _pump(self, ws, client: _FeedClient) -> None:  # type: ignore[no-untyped-def]
        websockets = _import_websockets()
        while True:
            msg = await client.queue.get()
            try:
                await ws.send(json.dumps(msg, ensure_ascii=False, default=str))
            except websockets.exceptions.ConnectionClosed:
                return
