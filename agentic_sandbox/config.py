from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _env_int(name: str, fallback: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


def _env_float(name: str, fallback: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return fallback
    try:
        return float(raw)
    except ValueError:
        return fallback


@dataclass
class SandboxConfig:
    fixture_base: str | None = None
    allow_hosts: list[str] = field(default_factory=list)
    http_timeout: float = 10.0
    http_max_bytes: int = 1_000_000
    event_log_max: int = 5000
    alert_log_max: int = 1000
    click_storm_window_ms: int = 800
    click_storm_threshold: int = 4
    feed_host: str = "127.0.0.1"
    feed_port: int = 8766

    @staticmethod
    def normalize_fixture_base(raw: str | None) -> str | None:
        base = (raw or "").strip()
        if not base:
            return None
        if base.startswith(("http://", "https://")):
            return base if base.endswith("/") else base + "/"
        return expand_path(base)

    @classmethod
    def from_env(cls) -> SandboxConfig:
        allow_raw = os.environ.get("SANDBOX_ALLOW_HOSTS", "")
        allow_hosts = [host.strip().lower() for host in allow_raw.split(",") if host.strip() and host.strip() != "*"]
        return cls(
            fixture_base=cls.normalize_fixture_base(os.environ.get("SANDBOX_FIXTURE_BASE")),
            allow_hosts=allow_hosts,
            http_timeout=_env_float("SANDBOX_HTTP_TIMEOUT", 10.0),
            http_max_bytes=_env_int("SANDBOX_HTTP_MAX_BYTES", 1_000_000),
            event_log_max=max(1, _env_int("SANDBOX_EVENT_LOG_MAX", 5000)),
            alert_log_max=max(1, _env_int("SANDBOX_ALERT_LOG_MAX", 1000)),
            click_storm_window_ms=max(1, _env_int("SANDBOX_CLICK_STORM_WINDOW_MS", 800)),
            click_storm_threshold=max(1, _env_int("SANDBOX_CLICK_STORM_THRESHOLD", 4)),
            feed_host=(os.environ.get("SANDBOX_FEED_HOST") or "127.0.0.1").strip() or "127.0.0.1",
            feed_port=_env_int("SANDBOX_FEED_PORT", 8766),
        )

    def is_host_allowed(self, host: str) -> bool:
        host = (host or "").strip().lower().rstrip(".")
        if not self.allow_hosts:
            return True
        for raw_allowed in self.allow_hosts:
            allowed = (raw_allowed or "").strip().lower().lstrip(".").rstrip(".")
            if not allowed:
                continue
            if host == allowed:
                return True
            if host.endswith("." + allowed):
                return True
        return False
