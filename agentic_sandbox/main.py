"""Command-line entry point.

Opens the initial ``login`` tab, runs the sample workflow against it and prints the
agent console and the security alerts. ``--feed`` additionally serves the read-only live
feed and keeps running until interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence

from .config import SandboxConfig
from .feed import ConsoleFeed
from .render import render_alerts, render_console, render_contexts
from .sandbox import Sandbox
from .workflow.timeouts import PROFILES, resolve_timeouts

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger("agentic_sandbox")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentic-sandbox", description="Run the sample agent workflow in the sandbox")
    parser.add_argument("--profile", choices=PROFILES, default=None, help="Workflow timeout profile")
    parser.add_argument("--fixtures", default=None, help="Fixture base: http(s) URL or directory")
    parser.add_argument("--feed", action="store_true", help="Serve the live feed and keep running")
    parser.add_argument("--port", type=int, default=None, help="Live feed port (default: SANDBOX_FEED_PORT or 8766)")
    parser.add_argument("--json", action="store_true", help="Print the final snapshot as JSON")
    return parser


async def run(args: argparse.Namespace) -> int:
    config = SandboxConfig.from_env()
    if args.fixtures:
        config.fixture_base = SandboxConfig.normalize_fixture_base(args.fixtures)
    sandbox = Sandbox(config, timeouts=resolve_timeouts(args.profile))

    feed = ConsoleFeed(sandbox, port=args.port) if args.feed else None
    if feed is not None:
        await feed.start()
    try:
        await sandbox.start()
        result = await sandbox.run_sample()

        if args.json:
            print(json.dumps({"run": result.to_dict(), **sandbox.snapshot()}, ensure_ascii=False, indent=2))
        else:
            print("Tabs")
            print(render_contexts(sandbox.contexts.contexts(), sandbox.contexts.active_id))
            print()
            print(f"Agent Console ({len(sandbox.events)})")
            print(render_console(sandbox.events.snapshot()))
            print()
            print(f"Security Monitor ({len(sandbox.alerts)})")
            print(render_alerts(sandbox.alerts.snapshot()))

        if feed is not None:
            logger.info("feed running on ws://%s:%d (Ctrl+C to stop)", feed.host, feed.port)
            await asyncio.Event().wait()
        return 0 if result.failed == 0 else 1
    finally:
        if feed is not None:
            await feed.stop()
        await sandbox.aclose()


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
