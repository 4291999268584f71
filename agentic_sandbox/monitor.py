"""Security monitor: classifies inbound agent events into alerts.

Rules are independent and every rule runs on every event, so one submission can raise
both SensitiveSubmit and PotentialXSS. There is no deduplication: a sustained click storm
raises one alert per qualifying click.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Mapping

from .events import AlertKind, AlertRecord, EventRecord, RecordLog
from .protocol import EV_CLICK, EV_FORM_SUBMIT

logger = logging.getLogger("agentic_sandbox.monitor")

DETAILS: dict[AlertKind, str] = {
    AlertKind.SENSITIVE_SUBMIT: "Form submitted with a password field.",
    AlertKind.POTENTIAL_XSS: 'User input contained "<script".',
    AlertKind.CLICK_STORM: "Rapid clicking detected.",
}


class SecurityMonitor:
    def __init__(self, alerts: RecordLog, *, window_ms: int = 800, threshold: int = 4) -> None:
        self.alerts = alerts
        self.window_ms = max(1, int(window_ms))
        self.threshold = max(1, int(threshold))
        # Monotonic click readings inside the trailing window, across all contexts.
        self._clicks: deque[int] = deque()

    def evaluate(self, record: EventRecord) -> list[AlertRecord]:
        raised: list[AlertRecord] = []
        if record.event == EV_FORM_SUBMIT:
            raised.extend(self._check_submit(record))
        if record.event == EV_CLICK:
            raised.extend(self._check_click(record))
        for alert in raised:
            self.alerts.append(alert)
            logger.warning("alert %s from %s: %s", alert.kind.value, alert.context_id, alert.detail)
        return raised

    def reset(self) -> None:
        self._clicks.clear()

    def _alert(self, record: EventRecord, kind: AlertKind) -> AlertRecord:
        return AlertRecord(
            timestamp_ms=record.timestamp_ms,
            context_id=record.context_id,
            kind=kind,
            detail=DETAILS[kind],
        )

    def _check_submit(self, record: EventRecord) -> list[AlertRecord]:
        payload = record.payload
        if not isinstance(payload, Mapping):
            return []
        out: list[AlertRecord] = []
        if any("pass" in str(key).lower() for key in payload):
            out.append(self._alert(record, AlertKind.SENSITIVE_SUBMIT))
        values = " ".join(str(v) for v in payload.values())
        if "<script" in values:
            out.append(self._alert(record, AlertKind.POTENTIAL_XSS))
        return out

    def _check_click(self, record: EventRecord) -> list[AlertRecord]:
        now = record.elapsed_ms
        clicks = self._clicks
        clicks.append(now)
        while clicks and now - clicks[0] >= self.window_ms:
            clicks.popleft()
        if len(clicks) >= self.threshold:
            return [self._alert(record, AlertKind.CLICK_STORM)]
        return []
