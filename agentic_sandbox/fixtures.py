"""Fixture registry and loader.

Fixtures are addressed by key and resolved to a location (``/fixtures/<key>.html``).
Where the markup comes from depends on ``SandboxConfig.fixture_base``:

- an http(s) base URL: fetched with the allow-listed urllib client (worker thread)
- a directory: read from disk (worker thread)
- unset: the built-in documents shipped in `agentic_sandbox.pages`
"""

from __future__ import annotations

import asyncio
import logging
import urllib.parse
from enum import Enum
from pathlib import Path
from typing import Protocol

from .config import SandboxConfig
from .http_client import HttpClientError, http_get_text
from .pages import BUILTIN_FIXTURES

logger = logging.getLogger("agentic_sandbox.fixtures")


class FixtureFetchError(Exception):
    """Fixture markup could not be retrieved."""


class UnknownFixtureError(FixtureFetchError):
    pass


class FixtureKey(str, Enum):
    LOGIN = "login"
    SEARCH = "search"
    FORM = "form"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def coerce(cls, raw: FixtureKey | str) -> FixtureKey:
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise UnknownFixtureError(f"Unknown fixture: {raw!r}") from None


FIXTURES: dict[FixtureKey, str] = {key: f"/fixtures/{key.value}.html" for key in FixtureKey}


class FixtureLoader(Protocol):
    async def fetch(self, key: FixtureKey) -> str: ...


class FixtureSource:
    def __init__(self, config: SandboxConfig | None = None) -> None:
        self.config = config or SandboxConfig()

    def location_for(self, key: FixtureKey | str) -> str:
        return FIXTURES[FixtureKey.coerce(key)]

    async def fetch(self, key: FixtureKey | str) -> str:
        location = self.location_for(key)
        base = self.config.fixture_base
        try:
            if base and base.startswith(("http://", "https://")):
                url = urllib.parse.urljoin(base, location.lstrip("/"))
                logger.debug("fetching fixture %s from %s", key, url)
                return await asyncio.to_thread(http_get_text, url, self.config)
            if base:
                path = Path(base) / Path(location).name
                logger.debug("reading fixture %s from %s", key, path)
                return await asyncio.to_thread(path.read_text, encoding="utf-8")
            return BUILTIN_FIXTURES[location]
        except (HttpClientError, OSError, KeyError) as exc:
            raise FixtureFetchError(f"Failed to load fixture {key}: {exc}") from exc
