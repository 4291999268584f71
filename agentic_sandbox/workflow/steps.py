"""Workflow steps and their JSON form (``{"type": "navigate", "fixture": "login"}``, ...)."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Union

from ..fixtures import FixtureKey, UnknownFixtureError


@dataclass(frozen=True, slots=True)
class Navigate:
    fixture: FixtureKey

    def __post_init__(self) -> None:
        object.__setattr__(self, "fixture", FixtureKey.coerce(self.fixture))


@dataclass(frozen=True, slots=True)
class Fill:
    fields: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        frozen = MappingProxyType({str(k): str(v) for k, v in dict(self.fields).items()})
        object.__setattr__(self, "fields", frozen)


@dataclass(frozen=True, slots=True)
class Click:
    selector: str


@dataclass(frozen=True, slots=True)
class AssertText:
    selector: str
    includes: str


Step = Union[Navigate, Fill, Click, AssertText]
STEP_TYPES = (Navigate, Fill, Click, AssertText)


def _require_str(raw: Mapping[str, Any], key: str, kind: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str):
        raise ValueError(f"{kind} step requires string '{key}'")
    return value


def step_from_dict(raw: Mapping[str, Any]) -> Step:
    if not isinstance(raw, Mapping):
        raise ValueError("step must be an object")
    kind = raw.get("type")
    if kind == "navigate":
        name = _require_str(raw, "fixture", kind)
        try:
            return Navigate(fixture=FixtureKey.coerce(name))
        except UnknownFixtureError as exc:
            raise ValueError(str(exc)) from exc
    if kind == "fill":
        fields = raw.get("fields")
        if not isinstance(fields, Mapping):
            raise ValueError("fill step requires object 'fields'")
        return Fill(fields=fields)
    if kind == "click":
        return Click(selector=_require_str(raw, "selector", kind))
    if kind == "assertText":
        return AssertText(selector=_require_str(raw, "selector", kind), includes=_require_str(raw, "includes", kind))
    raise ValueError(f"Unknown step type: {kind!r}")


def steps_from_dicts(items: Iterable[Mapping[str, Any]]) -> list[Step]:
    out: list[Step] = []
    for i, raw in enumerate(items):
        try:
            out.append(step_from_dict(raw))
        except ValueError as exc:
            raise ValueError(f"step[{i}]: {exc}") from exc
    return out


def step_to_dict(step: Step) -> dict[str, Any]:
    if isinstance(step, Navigate):
        return {"type": "navigate", "fixture": step.fixture.value}
    if isinstance(step, Fill):
        return {"type": "fill", "fields": dict(step.fields)}
    if isinstance(step, Click):
        return {"type": "click", "selector": step.selector}
    if isinstance(step, AssertText):
        return {"type": "assertText", "selector": step.selector, "includes": step.includes}
    raise TypeError(f"not a workflow step: {step!r}")


def coerce_steps(items: Iterable[Step | Mapping[str, Any]]) -> list[Step]:
    """Accept step objects and/or their JSON form."""
    out: list[Step] = []
    for i, item in enumerate(items):
        if isinstance(item, STEP_TYPES):
            out.append(item)
            continue
        try:
            out.append(step_from_dict(item))
        except ValueError as exc:
            raise ValueError(f"step[{i}]: {exc}") from exc
    return out


SAMPLE_WORKFLOW: tuple[Step, ...] = (
    Navigate(FixtureKey.LOGIN),
    Fill({"#username": "alice", "#password": "secret123"}),
    Click("#login-btn"),
    AssertText("#status", "Welcome, alice!"),
    Navigate(FixtureKey.SEARCH),
    Fill({"#q": "agent safety"}),
    Click("#go"),
    AssertText("#results", "Result A"),
)
