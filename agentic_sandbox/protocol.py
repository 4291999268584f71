"""Cross-context message protocol between the controller and document agents.

Two shapes travel over the document host's `post_message` channel, both tagged with a
`type` discriminator so unrelated cross-context traffic is never mistaken for ours:

    {"type": "agentic:event",   "event": str,   "payload"?: Any}   document -> controller
    {"type": "agentic:command", "command": str, "args"?: Any}      controller -> document

Anything that does not parse is dropped by the receiver without a reply.

`assertText` additionally supports a direct reply over a `MessageChannel` port: the
controller transfers one port with the command and awaits `{"ok": bool}` on the other.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("agentic_sandbox.protocol")

EVENT_TYPE = "agentic:event"
COMMAND_TYPE = "agentic:command"

# Events (document -> controller)
EV_READY = "ready"
EV_CLICK = "click"
EV_FORM_SUBMIT = "form_submit"
EV_COMMAND_RECEIVED = "command_received"
EV_AUTOFILLED = "autofilled"
EV_CLICKED = "clicked"
EV_ASSERT_RESULT = "assert_result"
EV_ERROR = "error"
EV_PONG = "pong"

RESERVED_EVENTS = frozenset(
    {
        EV_READY,
        EV_CLICK,
        EV_FORM_SUBMIT,
        EV_COMMAND_RECEIVED,
        EV_AUTOFILLED,
        EV_CLICKED,
        EV_ASSERT_RESULT,
        EV_ERROR,
        EV_PONG,
    }
)

# Commands (controller -> document)
CMD_PING = "ping"
CMD_FILL = "fill"
CMD_CLICK = "click"
CMD_ASSERT_TEXT = "assertText"

RESERVED_COMMANDS = frozenset({CMD_PING, CMD_FILL, CMD_CLICK, CMD_ASSERT_TEXT})


@dataclass(frozen=True, slots=True)
class AgentEvent:
    event: str
    payload: Any = None


@dataclass(frozen=True, slots=True)
class AgentCommand:
    command: str
    args: Any = None


def make_event(event: str, payload: Any = None) -> dict[str, Any]:
    msg: dict[str, Any] = {"type": EVENT_TYPE, "event": event}
    if payload is not None:
        msg["payload"] = payload
    return msg


def make_command(command: str, args: Any = None) -> dict[str, Any]:
    msg: dict[str, Any] = {"type": COMMAND_TYPE, "command": command}
    if args is not None:
        msg["args"] = args
    return msg


def parse_event(data: Any) -> AgentEvent | None:
    if not isinstance(data, dict) or data.get("type") != EVENT_TYPE:
        return None
    name = data.get("event")
    if not isinstance(name, str) or not name:
        return None
    return AgentEvent(event=name, payload=data.get("payload"))


def parse_command(data: Any) -> AgentCommand | None:
    if not isinstance(data, dict) or data.get("type") != COMMAND_TYPE:
        return None
    name = data.get("command")
    if not isinstance(name, str) or not name:
        return None
    return AgentCommand(command=name, args=data.get("args"))


def structured_clone(data: Any) -> Any:
    """Copy a message payload so sender and receiver never share mutable state."""
    return copy.deepcopy(data)


# ─────────────────────────────────────────────────────────────────────────────
# Message events + channels
# ─────────────────────────────────────────────────────────────────────────────


class MessageEvent:
    """A delivered cross-context message: cloned ``data``, the sending window and any transferred ports."""

    type = "message"

    def __init__(self, data: Any, *, source: Any = None, ports: Sequence[MessagePort] = ()) -> None:
        self.data = data
        self.source = source
        self.ports: tuple[MessagePort, ...] = tuple(ports)


class MessagePort:
    """One end of a `MessageChannel`. Delivery to the peer is always asynchronous.

    Messages that arrive before `on_message` is assigned are queued and flushed on assignment.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._peer: MessagePort | None = None
        self._handler: Callable[[MessageEvent], Any] | None = None
        self._pending: deque[Any] = deque()
        self.closed = False

    @property
    def on_message(self) -> Callable[[MessageEvent], Any] | None:
        return self._handler

    @on_message.setter
    def on_message(self, handler: Callable[[MessageEvent], Any] | None) -> None:
        self._handler = handler
        while handler is not None and self._pending and not self.closed:
            handler(MessageEvent(self._pending.popleft()))

    def post_message(self, data: Any) -> None:
        peer = self._peer
        if self.closed or peer is None or peer.closed:
            return
        loop = self._loop or asyncio.get_running_loop()
        loop.call_soon(peer._deliver, structured_clone(data))

    def _deliver(self, data: Any) -> None:
        if self.closed:
            return
        if self._handler is None:
            self._pending.append(data)
            return
        self._handler(MessageEvent(data))

    def close(self) -> None:
        self.closed = True
        self._pending.clear()
        self._handler = None


class MessageChannel:
    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self.port1 = MessagePort(loop)
        self.port2 = MessagePort(loop)
        self.port1._peer = self.port2
        self.port2._peer = self.port1


# post(message, ports) -> True when the message was handed to a live document.
PostFunc = Callable[[dict[str, Any], "Sequence[MessagePort] | None"], bool]


async def request_assert_text(post: PostFunc, selector: str, includes: str, *, timeout: float) -> bool:
    """Send `assertText` with a reply port and await the agent's direct answer.

    Resolves to False when nothing could be sent, when no reply arrives within ``timeout``,
    or when the reply is malformed. Never raises for those cases.
    """
    loop = asyncio.get_running_loop()
    channel = MessageChannel(loop)
    reply: asyncio.Future[bool] = loop.create_future()

    def _on_reply(ev: MessageEvent) -> None:
        if reply.done():
            return
        data = ev.data
        reply.set_result(bool(data.get("ok")) if isinstance(data, dict) else False)

    channel.port1.on_message = _on_reply
    try:
        sent = post(make_command(CMD_ASSERT_TEXT, {"selector": selector, "includes": includes}), [channel.port2])
        if not sent:
            logger.debug("assertText not delivered selector=%s", selector)
            return False
        return await asyncio.wait_for(reply, timeout=max(0.0, float(timeout)))
    except asyncio.TimeoutError:
        logger.debug("assertText timed out selector=%s timeout=%.2fs", selector, timeout)
        return False
    finally:
        channel.port1.close()
        channel.port2.close()
