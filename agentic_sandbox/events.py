"""Event/alert records, bounded logs and the inbound event intake.

`EventIntake` is the only listener on the controller window. It demultiplexes every
message by its source window, turns parsed agent events into `EventRecord`s and runs
them through the log, the security monitor and listeners, in that order and inside one
event-loop callback.

Records carry two clocks: ``timestamp_ms`` is wall time for display, ``elapsed_ms`` is a
monotonic reading used for rule windows.
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .protocol import MessageEvent, parse_event
from .sensitivity import redact_payload

if TYPE_CHECKING:
    from .host import ParentWindow
    from .monitor import SecurityMonitor

logger = logging.getLogger("agentic_sandbox.events")

# Controller-side records that do not come from an agent.
EV_ASSERT = "assert"
EV_NAVIGATE_FAILED = "navigate_failed"
EV_LOAD_ERROR = "load_error"


def now_ms() -> int:
    return int(time.time() * 1000)


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class AlertKind(str, Enum):
    SENSITIVE_SUBMIT = "SensitiveSubmit"
    POTENTIAL_XSS = "PotentialXSS"
    CLICK_STORM = "ClickStorm"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class EventRecord:
    timestamp_ms: int
    context_id: str
    event: str
    payload: Any = None
    elapsed_ms: int = 0

    @property
    def message(self) -> str:
        """Console line. Sensitive values are redacted here only, never in ``payload``."""
        if self.event == EV_ASSERT and isinstance(self.payload, dict):
            verdict = "OK" if self.payload.get("ok") else "FAILED"
            return f'assert {verdict}: "{self.payload.get("includes", "")}"'
        if self.payload is None:
            return self.event
        rendered = json.dumps(redact_payload(self.payload), ensure_ascii=False, default=str)
        return f"{self.event} {rendered}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "ts": self.timestamp_ms,
            "contextId": self.context_id,
            "event": self.event,
            "payload": redact_payload(self.payload),
            "msg": self.message,
        }


@dataclass(frozen=True, slots=True)
class AlertRecord:
    timestamp_ms: int
    context_id: str
    kind: AlertKind
    detail: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "ts": self.timestamp_ms,
            "contextId": self.context_id,
            "kind": self.kind.value,
            "detail": self.detail,
        }


class RecordLog:
    """Append-only ring buffer; the oldest entries fall off once ``max_items`` is reached."""

    def __init__(self, max_items: int) -> None:
        self._items: deque[Any] = deque(maxlen=max(1, int(max_items)))

    def append(self, item: Any) -> None:
        self._items.append(item)

    def snapshot(self, limit: int | None = None) -> list[Any]:
        """Most-recent-first copy."""
        items = list(reversed(self._items))
        return items if limit is None else items[: max(0, int(limit))]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._items))

    def clear(self) -> None:
        self._items.clear()


RecordListener = Callable[[EventRecord, list[Any]], None]


class EventIntake:
    def __init__(
        self,
        events: RecordLog,
        monitor: SecurityMonitor | None = None,
        *,
        clock: Callable[[], int] = now_ms,
        monotonic: Callable[[], int] = monotonic_ms,
    ) -> None:
        self.events = events
        self.monitor = monitor
        self.clock = clock
        self.monotonic = monotonic
        self._sources: dict[int, tuple[Any, str]] = {}
        self._listeners: list[RecordListener] = []
        self._attached: ParentWindow | None = None

    # ─────────────────────────────────────────────────────────────────────────
    # Subscriptions
    # ─────────────────────────────────────────────────────────────────────────

    def attach(self, parent: ParentWindow) -> None:
        if self._attached is parent:
            return
        if self._attached is not None:
            self._attached.remove_message_listener(self._on_message)
        parent.add_message_listener(self._on_message)
        self._attached = parent

    def detach(self) -> None:
        if self._attached is not None:
            self._attached.remove_message_listener(self._on_message)
            self._attached = None

    def subscribe(self, window: Any, context_id: str) -> None:
        self._sources[id(window)] = (window, context_id)

    def unsubscribe(self, window: Any) -> None:
        self._sources.pop(id(window), None)

    def drop_context(self, context_id: str) -> None:
        for key, (_window, cid) in list(self._sources.items()):
            if cid == context_id:
                del self._sources[key]

    def context_for(self, window: Any) -> str | None:
        entry = self._sources.get(id(window))
        if entry is None or entry[0] is not window:
            return None
        return entry[1]

    def add_listener(self, listener: RecordListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: RecordListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ─────────────────────────────────────────────────────────────────────────
    # Intake
    # ─────────────────────────────────────────────────────────────────────────

    def _on_message(self, event: MessageEvent) -> None:
        context_id = self.context_for(event.source)
        if context_id is None:
            logger.debug("dropping message from unknown source %r", event.source)
            return
        parsed = parse_event(event.data)
        if parsed is None:
            logger.debug("dropping malformed message from %s", context_id)
            return
        self.ingest(context_id, parsed.event, parsed.payload)

    def ingest(self, context_id: str, event: str, payload: Any = None) -> EventRecord:
        """Log an agent event, then evaluate security rules on it."""
        record = self._make(context_id, event, payload)
        self.events.append(record)
        alerts = self.monitor.evaluate(record) if self.monitor is not None else []
        self._notify(record, alerts)
        return record

    def record(self, context_id: str, event: str, payload: Any = None) -> EventRecord:
        """Log a controller-side record. Security rules only apply to agent events."""
        record = self._make(context_id, event, payload)
        self.events.append(record)
        self._notify(record, [])
        return record

    def _make(self, context_id: str, event: str, payload: Any) -> EventRecord:
        return EventRecord(
            timestamp_ms=self.clock(),
            context_id=context_id,
            event=event,
            payload=payload,
            elapsed_ms=self.monotonic(),
        )

    def _notify(self, record: EventRecord, alerts: list[Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(record, alerts)
            except Exception:  # noqa: BLE001
                logger.warning("event listener failed", exc_info=True)
