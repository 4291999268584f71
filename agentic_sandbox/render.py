from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

from .contexts import Context
from .events import AlertRecord, EventRecord

CONSOLE_LIMIT = 80


def format_time(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000).strftime("%H:%M:%S")


def render_console(records: Sequence[EventRecord], *, limit: int = CONSOLE_LIMIT) -> str:
    """Agent console, newest first; ``records`` must already be most-recent-first."""
    if not records:
        return "No events yet."
    lines = [f"{format_time(rec.timestamp_ms)} {rec.message}" for rec in records[:limit]]
    if len(records) > limit:
        lines.append(f"... {len(records) - limit} older")
    return "\n".join(lines)


def render_alerts(alerts: Sequence[AlertRecord]) -> str:
    if not alerts:
        return "No alerts yet."
    return "\n".join(f"[{a.kind.value}] {a.detail} ({format_time(a.timestamp_ms)})" for a in alerts)


def render_contexts(contexts: Iterable[Context], active_id: str | None) -> str:
    rows = []
    for ctx in contexts:
        marker = "*" if ctx.id == active_id else " "
        state = "loaded" if ctx.rendered_content is not None else "loading"
        rows.append(f"{marker} {ctx.title:<8} {ctx.id[:8]} {state}")
    return "\n".join(rows) if rows else "(no tabs)"
