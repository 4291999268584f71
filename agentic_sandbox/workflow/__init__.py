from .engine import AssertionOutcome, RunState, WorkflowBusyError, WorkflowEngine, WorkflowRun
from .steps import SAMPLE_WORKFLOW, AssertText, Click, Fill, Navigate, Step, step_to_dict, steps_from_dicts
from .timeouts import WorkflowTimeouts, resolve_timeouts

__all__ = [
    "SAMPLE_WORKFLOW",
    "AssertText",
    "AssertionOutcome",
    "Click",
    "Fill",
    "Navigate",
    "RunState",
    "Step",
    "WorkflowBusyError",
    "WorkflowEngine",
    "WorkflowRun",
    "WorkflowTimeouts",
    "resolve_timeouts",
    "step_to_dict",
    "steps_from_dicts",
]
