"""Context ("tab") manager.

Owns the set of open contexts, the active id, and the mapping from each context to the
document window currently showing it. Loads are tagged with a per-context sequence
number so a slow, superseded fetch can never overwrite newer content.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any

from .agent import inject_agent
from .events import EV_LOAD_ERROR, EventIntake
from .fixtures import FixtureFetchError, FixtureKey, FixtureLoader
from .host import BrowserHost, DocumentWindow
from .protocol import MessagePort, PostFunc, make_command

logger = logging.getLogger("agentic_sandbox.contexts")


class UnknownContextError(LookupError):
    pass


@dataclass
class Context:
    id: str
    fixture_key: FixtureKey
    title: str
    rendered_content: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "fixture": self.fixture_key.value,
            "title": self.title,
            "loaded": self.rendered_content is not None,
        }


class ContextManager:
    def __init__(self, fixtures: FixtureLoader, host: BrowserHost, intake: EventIntake) -> None:
        self.fixtures = fixtures
        self.host = host
        self.intake = intake
        self._contexts: dict[str, Context] = {}
        self._windows: dict[str, DocumentWindow] = {}
        self._load_seq: dict[str, int] = {}
        self._active_id: str | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._close_listeners: list[Callable[[str], None]] = []
        self._change_listeners: list[Callable[[], None]] = []
        intake.attach(host.parent)

    # ─────────────────────────────────────────────────────────────────────────
    # Read model
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def active_id(self) -> str | None:
        return self._active_id

    def active(self) -> Context | None:
        return self.get(self._active_id) if self._active_id is not None else None

    def get(self, context_id: str) -> Context | None:
        ctx = self._contexts.get(context_id)
        return replace(ctx) if ctx is not None else None

    def contexts(self) -> tuple[Context, ...]:
        return tuple(replace(ctx) for ctx in self._contexts.values())

    def window_for(self, context_id: str) -> DocumentWindow | None:
        return self._windows.get(context_id)

    def __len__(self) -> int:
        return len(self._contexts)

    def __contains__(self, context_id: object) -> bool:
        return context_id in self._contexts

    def add_close_listener(self, listener: Callable[[str], None]) -> None:
        self._close_listeners.append(listener)

    def add_change_listener(self, listener: Callable[[], None]) -> None:
        self._change_listeners.append(listener)

    def remove_change_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._change_listeners:
            self._change_listeners.remove(listener)

    def _notify_change(self) -> None:
        for listener in list(self._change_listeners):
            try:
                listener()
            except Exception:  # noqa: BLE001
                logger.warning("context change listener failed", exc_info=True)

    def _require(self, context_id: str) -> Context:
        ctx = self._contexts.get(context_id)
        if ctx is None:
            raise UnknownContextError(f"Unknown context: {context_id}")
        return ctx

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def open_context(self, fixture_key: FixtureKey | str) -> str:
        """Allocate a context, make it active and start loading its fixture in the background."""
        key = FixtureKey.coerce(fixture_key)
        ctx = Context(id=uuid.uuid4().hex, fixture_key=key, title=key.value)
        self._contexts[ctx.id] = ctx
        self._active_id = ctx.id
        logger.info("opened context %s (%s)", ctx.id, key.value)
        self._spawn_load(ctx.id, key, self._next_seq(ctx.id))
        self._notify_change()
        return ctx.id

    def _next_seq(self, context_id: str) -> int:
        # Taken when the load is requested, so request order decides which load wins.
        seq = self._load_seq.get(context_id, 0) + 1
        self._load_seq[context_id] = seq
        return seq

    def _spawn_load(self, context_id: str, key: FixtureKey, seq: int) -> None:
        task = asyncio.get_running_loop().create_task(self._background_load(context_id, key, seq))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _background_load(self, context_id: str, key: FixtureKey, seq: int) -> None:
        try:
            await self._load(context_id, key, seq)
        except UnknownContextError:
            logger.debug("context %s closed before its first load", context_id)
        except FixtureFetchError as exc:
            logger.warning("background load failed for %s: %s", context_id, exc)
            self.intake.record(context_id, EV_LOAD_ERROR, {"fixture": key.value, "message": str(exc)})

    async def drain(self) -> None:
        """Wait for every background load started so far (and any they start)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def load_fixture(self, context_id: str, fixture_key: FixtureKey | str) -> bool:
        """(Re)load a fixture into an existing context, keeping its id.

        Returns False when the result was discarded because a newer load was requested
        or the context was closed meanwhile. Raises `FixtureFetchError` on fetch failure,
        leaving the previous content and document in place.
        """
        self._require(context_id)
        key = FixtureKey.coerce(fixture_key)
        return await self._load(context_id, key, self._next_seq(context_id))

    def _superseded(self, ctx: Context, seq: int) -> bool:
        if self._contexts.get(ctx.id) is not ctx:
            logger.debug("discarding load #%d for closed context %s", seq, ctx.id)
            return True
        if self._load_seq.get(ctx.id) != seq:
            logger.debug("discarding stale load #%d for %s", seq, ctx.id)
            return True
        return False

    async def _load(self, context_id: str, key: FixtureKey, seq: int) -> bool:
        ctx = self._require(context_id)
        raw = await self.fixtures.fetch(key)
        if self._superseded(ctx, seq):
            return False

        instrumented = inject_agent(raw)
        window = await self.host.create_window(name=f"{key.value}:{context_id[:8]}")
        self.intake.subscribe(window, context_id)
        try:
            await window.mount(instrumented)
        except Exception:
            self.intake.unsubscribe(window)
            window.close()
            raise
        if self._superseded(ctx, seq):
            self.intake.unsubscribe(window)
            window.close()
            return False

        previous = self._windows.get(context_id)
        self._windows[context_id] = window
        ctx.rendered_content = instrumented
        ctx.fixture_key = key
        ctx.title = key.value
        if previous is not None:
            self.intake.unsubscribe(previous)
            previous.close()
        logger.info("loaded %s into %s (load #%d)", key.value, context_id, seq)
        self._notify_change()
        return True

    async def reload(self, context_id: str) -> bool:
        ctx = self._require(context_id)
        return await self.load_fixture(context_id, ctx.fixture_key)

    def close_context(self, context_id: str) -> None:
        ctx = self._contexts.pop(context_id, None)
        if ctx is None:
            return
        self._load_seq.pop(context_id, None)
        window = self._windows.pop(context_id, None)
        self.intake.drop_context(context_id)
        if window is not None:
            window.close()
        if self._active_id == context_id:
            self._active_id = next(iter(self._contexts), None)
        logger.info("closed context %s; active=%s", context_id, self._active_id)
        for listener in list(self._close_listeners):
            try:
                listener(context_id)
            except Exception:  # noqa: BLE001
                logger.warning("close listener failed", exc_info=True)
        self._notify_change()

    def set_active(self, context_id: str) -> None:
        if context_id not in self._contexts or context_id == self._active_id:
            return
        self._active_id = context_id
        self._notify_change()

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    def post(self, context_id: str, message: dict[str, Any], ports: Sequence[MessagePort] | None = None) -> bool:
        window = self._windows.get(context_id)
        if window is None:
            return False
        return window.post_message(message, ports)

    def send_command(
        self,
        context_id: str,
        command: str,
        args: Any = None,
        ports: Sequence[MessagePort] | None = None,
    ) -> bool:
        """Post a command to the context's live document. False when nothing can receive it."""
        sent = self.post(context_id, make_command(command, args), ports)
        if not sent:
            logger.debug("command %s not delivered to %s", command, context_id)
        return sent

    def poster(self, context_id: str) -> PostFunc:
        """Bind `post` to one context; the window is looked up at send time."""

        def _post(message: dict[str, Any], ports: Sequence[MessagePort] | None = None) -> bool:
            return self.post(context_id, message, ports)

        return _post
