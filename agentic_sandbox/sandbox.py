"""Controller facade wiring the core together.

Presentation code (CLI, live feed) only reads `snapshot()` and calls the operations
exposed here; it never touches contexts or logs directly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .config import SandboxConfig
from .contexts import ContextManager, UnknownContextError
from .events import EventIntake, RecordLog, now_ms
from .fixtures import FixtureKey, FixtureLoader, FixtureSource
from .host import BrowserHost
from .monitor import SecurityMonitor
from .protocol import CMD_PING
from .workflow import SAMPLE_WORKFLOW, Step, WorkflowEngine, WorkflowRun, WorkflowTimeouts

logger = logging.getLogger("agentic_sandbox.sandbox")


class Sandbox:
    def __init__(
        self,
        config: SandboxConfig | None = None,
        *,
        timeouts: WorkflowTimeouts | None = None,
        fixtures: FixtureLoader | None = None,
        host: BrowserHost | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config or SandboxConfig.from_env()
        self.events = RecordLog(self.config.event_log_max)
        self.alerts = RecordLog(self.config.alert_log_max)
        self.monitor = SecurityMonitor(
            self.alerts,
            window_ms=self.config.click_storm_window_ms,
            threshold=self.config.click_storm_threshold,
        )
        self.intake = EventIntake(self.events, self.monitor, clock=clock)
        self.host = host or BrowserHost()
        self.contexts = ContextManager(fixtures or FixtureSource(self.config), self.host, self.intake)
        self.engine = WorkflowEngine(self.contexts, self.intake, timeouts)

    async def __aenter__(self) -> Sandbox:
        await self.host.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def start(self, fixture: FixtureKey | str = FixtureKey.LOGIN) -> str:
        """App init: launch the browser and open one tab with ``fixture``, loaded before returning."""
        await self.host.start()
        if self.contexts.active_id is None:
            self.contexts.open_context(fixture)
        await self.contexts.drain()
        active = self.contexts.active_id
        if active is None:
            raise UnknownContextError("no context is open after start")
        return active

    async def aclose(self) -> None:
        """Abort runs, close every context and stop the browser."""
        for ctx in self.contexts.contexts():
            self.contexts.close_context(ctx.id)
        try:
            await self.contexts.drain()
        finally:
            await self.host.aclose()

    # ─────────────────────────────────────────────────────────────────────────
    # Operations
    # ─────────────────────────────────────────────────────────────────────────

    def open_context(self, fixture: FixtureKey | str) -> str:
        return self.contexts.open_context(fixture)

    def close_context(self, context_id: str) -> None:
        self.contexts.close_context(context_id)

    def set_active(self, context_id: str) -> None:
        self.contexts.set_active(context_id)

    async def load_fixture(self, context_id: str, fixture: FixtureKey | str) -> bool:
        return await self.contexts.load_fixture(context_id, fixture)

    async def reload(self, context_id: str | None = None) -> bool:
        target = context_id or self.contexts.active_id
        if target is None:
            return False
        return await self.contexts.reload(target)

    def ping(self, context_id: str | None = None) -> bool:
        target = context_id or self.contexts.active_id
        return target is not None and self.contexts.send_command(target, CMD_PING)

    async def run_workflow(
        self, steps: Iterable[Step | Mapping[str, Any]], *, context_id: str | None = None
    ) -> WorkflowRun:
        return await self.engine.run(steps, context_id=context_id)

    async def run_sample(self, *, context_id: str | None = None) -> WorkflowRun:
        return await self.engine.run(SAMPLE_WORKFLOW, context_id=context_id)

    def cancel(self, context_id: str) -> bool:
        return self.engine.cancel(context_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Read model
    # ─────────────────────────────────────────────────────────────────────────

    def contexts_snapshot(self) -> dict[str, Any]:
        return {
            "contexts": [ctx.to_dict() for ctx in self.contexts.contexts()],
            "activeId": self.contexts.active_id,
        }

    def snapshot(self, *, limit: int | None = None) -> dict[str, Any]:
        """Plain-data read model; logs and alerts are most-recent-first."""
        return {
            **self.contexts_snapshot(),
            "logs": [rec.to_dict() for rec in self.events.snapshot(limit)],
            "alerts": [alert.to_dict() for alert in self.alerts.snapshot(limit)],
        }
