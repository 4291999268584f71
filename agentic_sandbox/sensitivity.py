"""Small helpers for identifying potentially sensitive keys.

Used when rendering event payloads for display (safe-by-default). Security rules
match on raw payloads and never go through these helpers.
"""

from __future__ import annotations

from typing import Any

_SENSITIVE_SUBSTRINGS = (
    "token",
    "secret",
    "password",
    "passwd",
    "pwd",
    "authorization",
    "cookie",
    "session",
    "jwt",
    "bearer",
    "api-key",
    "api_key",
    "apikey",
)

_SENSITIVE_EXACT = {
    # Avoid false-positives like "author"/"authorship" while still protecting obvious keys.
    "auth",
}


def is_sensitive_key(key: str) -> bool:
    # Selector-style keys ("#password") are compared without their sigil.
    k = (key or "").strip().lower().lstrip("#.")
    if not k:
        return False
    if k in _SENSITIVE_EXACT:
        return True
    return any(s in k for s in _SENSITIVE_SUBSTRINGS)


def redact_value(value: Any) -> str:
    if value is None:
        return "<redacted>"
    if isinstance(value, str):
        return f"<redacted str len={len(value)}>"
    if isinstance(value, (list, tuple, set)):
        return f"<redacted list len={len(value)}>"
    if isinstance(value, dict):
        return f"<redacted dict keys={len(value)}>"
    return "<redacted>"


def redact_payload(value: Any) -> Any:
    """Deep copy of ``value`` with values under sensitive keys replaced."""
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if isinstance(k, str) and is_sensitive_key(k):
                out[k] = redact_value(v)
            else:
                out[k] = redact_payload(v)
        return out
    if isinstance(value, list):
        return [redact_payload(v) for v in value]
    return value
