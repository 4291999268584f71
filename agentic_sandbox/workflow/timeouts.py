from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass


@dataclass(frozen=True)
class WorkflowTimeouts:
    ready_timeout_s: float
    settle_delay_s: float
    assert_timeout_s: float


_PROFILE_DEFAULTS: dict[str, WorkflowTimeouts] = {
    "fast": WorkflowTimeouts(
        ready_timeout_s=1.0,
        settle_delay_s=0.05,
        assert_timeout_s=0.4,
    ),
    "default": WorkflowTimeouts(
        ready_timeout_s=2.5,
        settle_delay_s=0.2,
        assert_timeout_s=0.8,
    ),
    "slow": WorkflowTimeouts(
        # Heavier fixtures (remote base URL) get more room before the safety valves fire.
        ready_timeout_s=6.0,
        settle_delay_s=0.5,
        assert_timeout_s=2.0,
    ),
}

PROFILES = tuple(_PROFILE_DEFAULTS)


def _coerce_profile(raw: str | None) -> str:
    if not isinstance(raw, str) or not raw.strip():
        return "default"
    value = raw.strip().lower()
    return value if value in _PROFILE_DEFAULTS else "default"


def _env_float(env: Mapping[str, str], *keys: str, fallback: float) -> float:
    for key in keys:
        raw = env.get(key)
        if raw is None:
            continue
        try:
            value = float(raw)
        except ValueError:
            continue
        if value >= 0:
            return value
    return float(fallback)


def resolve_timeout_profile(
    *, args_profile: str | None = None, scope: str = "workflow", env: Mapping[str, str] | None = None
) -> str:
    env_map = os.environ if env is None else env
    if isinstance(args_profile, str) and args_profile.strip():
        return _coerce_profile(args_profile)
    scoped_key = f"SANDBOX_{scope.upper()}_TIMEOUT_PROFILE"
    if scoped_key in env_map:
        return _coerce_profile(env_map.get(scoped_key))
    return _coerce_profile(env_map.get("SANDBOX_TIMEOUT_PROFILE"))


def resolve_timeout_defaults(
    *, profile: str = "default", scope: str = "workflow", env: Mapping[str, str] | None = None
) -> WorkflowTimeouts:
    env_map = os.environ if env is None else env
    base = _PROFILE_DEFAULTS.get(profile, _PROFILE_DEFAULTS["default"])
    prefix = f"SANDBOX_{scope.upper()}_"

    return WorkflowTimeouts(
        ready_timeout_s=_env_float(
            env_map,
            f"{prefix}READY_TIMEOUT",
            "SANDBOX_READY_TIMEOUT",
            fallback=base.ready_timeout_s,
        ),
        settle_delay_s=_env_float(
            env_map,
            f"{prefix}SETTLE_DELAY",
            "SANDBOX_SETTLE_DELAY",
            fallback=base.settle_delay_s,
        ),
        assert_timeout_s=_env_float(
            env_map,
            f"{prefix}ASSERT_TIMEOUT",
            "SANDBOX_ASSERT_TIMEOUT",
            fallback=base.assert_timeout_s,
        ),
    )


def resolve_timeouts(profile: str | None = None, env: Mapping[str, str] | None = None) -> WorkflowTimeouts:
    """Profile (explicit > env > "default") plus per-value env overrides."""
    chosen = resolve_timeout_profile(args_profile=profile, env=env)
    return resolve_timeout_defaults(profile=chosen, env=env)
