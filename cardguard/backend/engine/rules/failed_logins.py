"""
engine/rules/failed_logins.py

Repeated failed logins for one subject inside the analysis window.
Only an explicit `success is False` counts as a failure; a login event
without a success flag (e.g. a logout) is ignored.
"""

from __future__ import annotations

import logging

from ...config import settings
from ...models import EventType, LoginAttemptDetails, RiskLevel, SecurityEvent
from ..models import RuleResult
from .base import BaseRule

logger = logging.getLogger(__name__)


def _is_failed_login(event: SecurityEvent) -> bool:
    return (
        event.event_type is EventType.LOGIN_ATTEMPT
        and isinstance(event.details, LoginAttemptDetails)
        and event.details.success is False
    )


class FailedLoginsRule(BaseRule):
    name = "failed_logins"
    pattern = "MULTIPLE_FAILED_LOGINS"
    risk_level = RiskLevel.HIGH
    order = 10

    def __init__(self, threshold: int | None = None) -> None:
        self.threshold = settings.FAILED_LOGIN_THRESHOLD if threshold is None else threshold

    def analyze(self, event: SecurityEvent, window: list[SecurityEvent]) -> RuleResult:
        try:
            return self._analyze(event, window)
        except Exception as exc:
            logger.exception("FailedLoginsRule.analyze() raised: %s", exc)
            return RuleResult.quiet(self.name, "internal error in failed_logins rule")

    def _analyze(self, event: SecurityEvent, window: list[SecurityEvent]) -> RuleResult:
        if not _is_failed_login(event):
            return RuleResult.quiet(self.name)

        failures = sum(1 for e in window if _is_failed_login(e))
        if failures < self.threshold:
            return RuleResult.quiet(self.name, f"{failures} failed login(s), below threshold")

        return self._fired(
            f"{failures} failed logins for {event.subject_id!r} in the analysis window",
            count=failures,
        )
