"""Workflow engine: runs an ordered list of steps against one context.

The target is the context that was active when the run started; later tab switches do
not move it. Apart from fixture loads, waits (readiness, settle delays, assertion replies)
are the only suspension points, and each of them is cut short when the run is aborted.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from ..contexts import ContextManager, UnknownContextError
from ..events import EV_ASSERT, EV_NAVIGATE_FAILED, EventIntake
from ..fixtures import FixtureFetchError
from ..protocol import CMD_CLICK, CMD_FILL, request_assert_text
from .steps import AssertText, Click, Fill, Navigate, Step, coerce_steps
from .timeouts import WorkflowTimeouts, resolve_timeouts

logger = logging.getLogger("agentic_sandbox.workflow")

T = TypeVar("T")

ABORT_CONTEXT_CLOSED = "context closed"
ABORT_CANCELLED = "cancelled"


class WorkflowBusyError(RuntimeError):
    """A run is already in flight for the target context."""

    def __init__(self, context_id: str) -> None:
        super().__init__(f"A workflow is already running on context {context_id}")
        self.context_id = context_id


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class AssertionOutcome:
    selector: str
    includes: str
    ok: bool


@dataclass
class WorkflowRun:
    run_id: str
    context_id: str
    steps_total: int
    state: RunState = RunState.IDLE
    steps_done: int = 0
    assertions: list[AssertionOutcome] = field(default_factory=list)
    abort_reason: str | None = None
    _abort: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    @property
    def passed(self) -> int:
        return sum(1 for a in self.assertions if a.ok)

    @property
    def failed(self) -> int:
        return sum(1 for a in self.assertions if not a.ok)

    def request_abort(self, reason: str) -> None:
        if self._abort.is_set():
            return
        self.abort_reason = reason
        self._abort.set()

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "contextId": self.context_id,
            "state": self.state.value,
            "stepsTotal": self.steps_total,
            "stepsDone": self.steps_done,
            "assertions": [{"selector": a.selector, "includes": a.includes, "ok": a.ok} for a in self.assertions],
            "abortReason": self.abort_reason,
        }


class WorkflowEngine:
    def __init__(
        self,
        contexts: ContextManager,
        intake: EventIntake,
        timeouts: WorkflowTimeouts | None = None,
    ) -> None:
        self.contexts = contexts
        self.intake = intake
        self.timeouts = timeouts or resolve_timeouts()
        self._runs: dict[str, WorkflowRun] = {}
        contexts.add_close_listener(self._on_context_closed)

    def is_running(self, context_id: str) -> bool:
        return context_id in self._runs

    def current_run(self, context_id: str) -> WorkflowRun | None:
        return self._runs.get(context_id)

    def cancel(self, context_id: str) -> bool:
        run = self._runs.get(context_id)
        if run is None:
            return False
        run.request_abort(ABORT_CANCELLED)
        return True

    def _on_context_closed(self, context_id: str) -> None:
        run = self._runs.get(context_id)
        if run is not None:
            logger.info("context %s closed during run %s; aborting", context_id, run.run_id)
            run.request_abort(ABORT_CONTEXT_CLOSED)

    async def run(
        self,
        steps: Iterable[Step | Mapping[str, Any]],
        *,
        context_id: str | None = None,
    ) -> WorkflowRun:
        plan = coerce_steps(steps)
        target = context_id if context_id is not None else self.contexts.active_id
        if target is None or target not in self.contexts:
            raise UnknownContextError(f"No context to run against: {target}")
        if target in self._runs:
            raise WorkflowBusyError(target)

        run = WorkflowRun(run_id=uuid.uuid4().hex[:12], context_id=target, steps_total=len(plan))
        self._runs[target] = run
        run.state = RunState.RUNNING
        logger.info("workflow %s started on %s (%d steps)", run.run_id, target, len(plan))
        try:
            for step in plan:
                if run.aborted:
                    break
                await self._run_step(run, step)
                if run.aborted:
                    break
                run.steps_done += 1
        except asyncio.CancelledError:
            run.request_abort(ABORT_CANCELLED)
            run.state = RunState.ABORTED
            raise
        finally:
            self._runs.pop(target, None)

        run.state = RunState.ABORTED if run.aborted else RunState.COMPLETED
        logger.info(
            "workflow %s %s: %d/%d steps, %d passed, %d failed%s",
            run.run_id,
            run.state.value,
            run.steps_done,
            run.steps_total,
            run.passed,
            run.failed,
            f" ({run.abort_reason})" if run.abort_reason else "",
        )
        return run

    # ─────────────────────────────────────────────────────────────────────────
    # Steps
    # ─────────────────────────────────────────────────────────────────────────

    async def _run_step(self, run: WorkflowRun, step: Step) -> None:
        if isinstance(step, Navigate):
            await self._navigate(run, step)
        elif isinstance(step, Fill):
            self.contexts.send_command(run.context_id, CMD_FILL, dict(step.fields))
            await self._pause(run, self.timeouts.settle_delay_s)
        elif isinstance(step, Click):
            self.contexts.send_command(run.context_id, CMD_CLICK, {"selector": step.selector})
            await self._pause(run, self.timeouts.settle_delay_s)
        elif isinstance(step, AssertText):
            await self._assert_text(run, step)
        else:
            raise TypeError(f"not a workflow step: {step!r}")

    async def _navigate(self, run: WorkflowRun, step: Navigate) -> None:
        cid = run.context_id
        try:
            await self.contexts.load_fixture(cid, step.fixture)
        except UnknownContextError:
            run.request_abort(ABORT_CONTEXT_CLOSED)
            return
        except FixtureFetchError as exc:
            logger.warning("navigate to %s failed on %s: %s", step.fixture.value, cid, exc)
            self.intake.record(cid, EV_NAVIGATE_FAILED, {"fixture": step.fixture.value, "message": str(exc)})
            return
        window = self.contexts.window_for(cid)
        if run.aborted or window is None:
            return

        how = await self._wait(run, window.wait_ready(), self.timeouts.ready_timeout_s)
        if how is None and not run.aborted:
            logger.debug("no ready signal from %s within %.2fs; continuing", cid, self.timeouts.ready_timeout_s)

    async def _assert_text(self, run: WorkflowRun, step: AssertText) -> None:
        cid = run.context_id
        reply = asyncio.ensure_future(
            request_assert_text(
                self.contexts.poster(cid),
                step.selector,
                step.includes,
                timeout=self.timeouts.assert_timeout_s,
            )
        )
        ok = await self._wait(run, reply, None)
        if run.aborted:
            return
        outcome = AssertionOutcome(selector=step.selector, includes=step.includes, ok=bool(ok))
        run.assertions.append(outcome)
        self.intake.record(cid, EV_ASSERT, {"selector": step.selector, "includes": step.includes, "ok": outcome.ok})

    # ─────────────────────────────────────────────────────────────────────────
    # Waiting
    # ─────────────────────────────────────────────────────────────────────────

    async def _wait(self, run: WorkflowRun, fut: Awaitable[T], timeout: float | None) -> T | None:
        """Result of ``fut``, or None on timeout/abort. ``fut`` is cancelled if still pending."""
        target = asyncio.ensure_future(fut)
        abort = asyncio.ensure_future(run._abort.wait())
        try:
            await asyncio.wait({target, abort}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort.cancel()
            if not target.done():
                target.cancel()
        if target.done() and not target.cancelled():
            return target.result()
        return None

    async def _pause(self, run: WorkflowRun, delay_s: float) -> None:
        """Settle delay that ends early when the run is aborted."""
        abort = asyncio.ensure_future(run._abort.wait())
        try:
            await asyncio.wait({abort}, timeout=max(0.0, float(delay_s)))
        finally:
            abort.cancel()
