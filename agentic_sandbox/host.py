"""Headless Chromium document host (the "hosting environment" for contexts).

Each `DocumentWindow` is one page in its own browser context, so documents share no
cookies, storage or globals with each other. The controller never touches page objects
directly: every message crosses `post_message`, is structured-cloned when it is sent and
is delivered asynchronously, like a browser's cross-context messaging.

    controller -> document   window.post_message(cmd)  ->  page `window.postMessage`
    document -> controller   `parent.postMessage(evt)` ->  binding  ->  ParentWindow

Pages are top-level, so `parent` is replaced in every page by a stand-in whose
`postMessage` forwards through a Playwright binding. Ports handed to `post_message` are
bridged the same way: the page receives a real `MessagePort` and whatever it posts on it
arrives on the controller's side of the Python `MessageChannel`.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable, Sequence
from typing import Any

from .agent import has_agent_script
from .protocol import EV_READY, MessageEvent, MessagePort, parse_event, structured_clone

logger = logging.getLogger("agentic_sandbox.host")

DEFAULT_LAUNCH_ARGS = ("--no-sandbox", "--disable-dev-shm-usage")

_TO_PARENT_BINDING = "__agenticToParent"
_PORT_BINDING = "__agenticPortReply"

# Runs before any page script, and once more on the initial blank document.
BRIDGE_SCRIPT_SOURCE = (
    r"""
(() => {
  const forward = (data) => {
    try { window.%(to_parent)s(data).catch(() => {}); } catch {}
  };
  const parentProxy = Object.freeze({ postMessage: (data) => forward(data) });
  Object.defineProperty(window, 'parent', { get: () => parentProxy, configurable: true });
})();
"""
    % {"to_parent": _TO_PARENT_BINDING}
)

_DELIVER_SOURCE = (
    r"""
([msg, portIds]) => {
  const transfer = portIds.map((id) => {
    const channel = new MessageChannel();
    channel.port1.onmessage = (e) => {
      try { window.%(port)s(id, e.data).catch(() => {}); } catch {}
    };
    return channel.port2;
  });
  window.postMessage(msg, '*', transfer);
}
"""
    % {"port": _PORT_BINDING}
)

MessageListener = Callable[[MessageEvent], None]


class UninstrumentedContentError(ValueError):
    """Markup was handed to a context without the agent script injected."""


def _import_playwright():
    try:
        from playwright.async_api import async_playwright  # type: ignore[import-not-found]

        return async_playwright
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(
            "Playwright is not installed. Run: pip install playwright && playwright install chromium"
        ) from exc


class ParentWindow:
    """The controller's own message target. Every document posts here."""

    def __init__(self) -> None:
        self._listeners: list[MessageListener] = []

    def add_message_listener(self, listener: MessageListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_message_listener(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def post_message(self, data: Any, *, source: Any = None, ports: Sequence[MessagePort] | None = None) -> None:
        cloned = structured_clone(data)
        asyncio.get_running_loop().call_soon(self._deliver, cloned, source, tuple(ports or ()))

    def _deliver(self, data: Any, source: Any, ports: tuple[MessagePort, ...]) -> None:
        event = MessageEvent(data, source=source, ports=ports)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.warning("parent message listener failed", exc_info=True)


class DocumentWindow:
    """A single headless page hosted for one logical context."""

    def __init__(self, host: BrowserHost, context: Any, page: Any, *, name: str = "") -> None:
        self.host = host
        self.name = name
        self.content: str | None = None
        self.closed = False
        self._context = context
        self._page = page
        self._loop = asyncio.get_running_loop()
        # Resolved by the first agent ``ready`` or by load completion, whichever comes first.
        self.ready: asyncio.Future[str] = self._loop.create_future()
        self._outbox: asyncio.Queue[tuple[Any, tuple[MessagePort, ...]]] = asyncio.Queue()
        self._sender: asyncio.Task[None] | None = None
        self._ports: dict[int, MessagePort] = {}
        self._port_ids = itertools.count(1)

    def __repr__(self) -> str:
        state = "empty" if self.content is None else ("ready" if self.ready.done() else "loading")
        return f"DocumentWindow(name={self.name!r}, state={state}, closed={self.closed})"

    @property
    def page(self) -> Any:
        return self._page

    @property
    def mounted(self) -> bool:
        return self.content is not None

    async def _install_bridge(self) -> None:
        await self._page.expose_binding(_TO_PARENT_BINDING, self._on_to_parent)
        await self._page.expose_binding(_PORT_BINDING, self._on_port_reply)
        await self._page.add_init_script(BRIDGE_SCRIPT_SOURCE)
        await self._page.evaluate(BRIDGE_SCRIPT_SOURCE)

    # ─────────────────────────────────────────────────────────────────────────
    # Loading
    # ─────────────────────────────────────────────────────────────────────────

    async def mount(self, markup: str) -> None:
        """Load instrumented markup; returns once the page reached its load event."""
        if self.closed:
            raise RuntimeError("cannot mount into a closed document window")
        if self.mounted:
            raise RuntimeError("document window is already mounted")
        if not has_agent_script(markup):
            raise UninstrumentedContentError("refusing to run markup without the agent script")
        self.content = markup
        await self._page.set_content(markup, wait_until="load")
        self._mark_ready("load")
        if not self.closed:
            self._sender = self._loop.create_task(self._drain_outbox())

    def _mark_ready(self, how: str) -> None:
        if not self.ready.done():
            self.ready.set_result(how)

    def wait_ready(self) -> asyncio.Future[str]:
        """Awaitable for readiness; cancelling it leaves the window's own state untouched."""
        return asyncio.shield(self.ready)

    # ─────────────────────────────────────────────────────────────────────────
    # Messaging
    # ─────────────────────────────────────────────────────────────────────────

    def post_message(self, data: Any, ports: Sequence[MessagePort] | None = None) -> bool:
        """Controller -> document. Returns False when the document can no longer receive."""
        if self.closed or not self.mounted:
            return False
        self._outbox.put_nowait((structured_clone(data), tuple(ports or ())))
        return True

    async def _drain_outbox(self) -> None:
        while not self.closed:
            data, ports = await self._outbox.get()
            port_ids = []
            for port in ports:
                port_id = next(self._port_ids)
                self._ports[port_id] = port
                port_ids.append(port_id)
            try:
                await self._page.evaluate(_DELIVER_SOURCE, [data, port_ids])
            except Exception:  # noqa: BLE001
                if self.closed:
                    return
                logger.warning("message delivery to %s failed", self.name, exc_info=True)

    def _on_to_parent(self, _source: Any, data: Any) -> None:
        if self.closed:
            return
        parsed = parse_event(data)
        if parsed is not None and parsed.event == EV_READY:
            self._mark_ready("ready")
        self.host.parent.post_message(data, source=self)

    def _on_port_reply(self, _source: Any, port_id: int, data: Any) -> None:
        port = self._ports.get(int(port_id))
        if port is None:
            return
        if port.closed:
            del self._ports[int(port_id)]
            return
        port.post_message(data)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if not self.ready.done():
            self.ready.cancel()
        if self._sender is not None:
            self._sender.cancel()
        self._ports.clear()
        self.host._dispose(self)


class BrowserHost:
    """Owns the headless browser; creates document windows that all report to one `ParentWindow`."""

    def __init__(self, *, headless: bool = True, launch_args: Sequence[str] | None = None) -> None:
        self.parent = ParentWindow()
        self.headless = headless
        self.launch_args = list(DEFAULT_LAUNCH_ARGS if launch_args is None else launch_args)
        self._playwright: Any = None
        self._browser: Any = None
        self._disposing: set[asyncio.Task[None]] = set()

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def start(self) -> None:
        if self._browser is not None:
            return
        async_playwright = _import_playwright()
        logger.info("starting headless chromium")
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(headless=self.headless, args=self.launch_args)
        except Exception:
            await self._playwright.stop()
            self._playwright = None
            raise

    async def create_window(self, *, name: str = "") -> DocumentWindow:
        if self._browser is None:
            raise RuntimeError("browser host is not started")
        context = await self._browser.new_context()
        try:
            page = await context.new_page()
            window = DocumentWindow(self, context, page, name=name)
            await window._install_bridge()
        except Exception:
            await context.close()
            raise
        return window

    def _dispose(self, window: DocumentWindow) -> None:
        task = asyncio.get_running_loop().create_task(self._close_window(window))
        self._disposing.add(task)
        task.add_done_callback(self._disposing.discard)

    async def _close_window(self, window: DocumentWindow) -> None:
        try:
            await window._context.close()
        except Exception:  # noqa: BLE001
            logger.debug("closing %s failed", window.name, exc_info=True)

    async def aclose(self) -> None:
        while self._disposing:
            await asyncio.gather(*list(self._disposing))
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None
        if browser is not None:
            await browser.close()
        if playwright is not None:
            await playwright.stop()
        logger.info("headless chromium stopped")
