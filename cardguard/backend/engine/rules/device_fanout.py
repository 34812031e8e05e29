"""
engine/rules/device_fanout.py

One subject seen on too many devices inside the analysis window.

Devices are compared as raw `device_info` strings with no normalization, so
slightly different user-agent strings from the same phone count separately.

The rule fires only when the triggering event brings a device that is not
already in the rest of the window. Events from known devices (including the
derived events this rule produces) never re-fire at the same count.
"""

from __future__ import annotations

import logging

from ...config import settings
from ...models import RiskLevel, SecurityEvent
from ..models import RuleResult
from .base import BaseRule

logger = logging.getLogger(__name__)


class DeviceFanoutRule(BaseRule):
    name = "device_fanout"
    pattern = "MULTIPLE_DEVICES"
    risk_level = RiskLevel.HIGH
    order = 30

    def __init__(self, threshold: int | None = None) -> None:
        self.threshold = settings.DEVICE_FANOUT_THRESHOLD if threshold is None else threshold

    def analyze(self, event: SecurityEvent, window: list[SecurityEvent]) -> RuleResult:
        try:
            return self._analyze(event, window)
        except Exception as exc:
            logger.exception("DeviceFanoutRule.analyze() raised: %s", exc)
            return RuleResult.quiet(self.name, "internal error in device_fanout rule")

    def _analyze(self, event: SecurityEvent, window: list[SecurityEvent]) -> RuleResult:
        others = {e.device_info for e in window if e.event_id != event.event_id}
        if event.device_info in others:
            return RuleResult.quiet(self.name, "device already seen in window")

        device_count = len(others | {event.device_info})
        if device_count <= self.threshold:
            return RuleResult.quiet(self.name, f"{device_count} device(s), below threshold")

        return self._fired(
            f"{event.subject_id!r} used {device_count} devices in the analysis window",
            device_count=device_count,
        )
