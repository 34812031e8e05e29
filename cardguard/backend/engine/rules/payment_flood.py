"""
engine/rules/payment_flood.py

Too many payment attempts from one subject inside the analysis window.
"""

from __future__ import annotations

import logging

from ...config import settings
from ...models import EventType, RiskLevel, SecurityEvent
from ..models import RuleResult
from .base import BaseRule

logger = logging.getLogger(__name__)


class PaymentFloodRule(BaseRule):
    name = "payment_flood"
    pattern = "RAPID_PAYMENT_ATTEMPTS"
    risk_level = RiskLevel.MEDIUM
    order = 20

    def __init__(self, threshold: int | None = None) -> None:
        self.threshold = settings.PAYMENT_FLOOD_THRESHOLD if threshold is None else threshold

    def analyze(self, event: SecurityEvent, window: list[SecurityEvent]) -> RuleResult:
        try:
            return self._analyze(event, window)
        except Exception as exc:
            logger.exception("PaymentFloodRule.analyze() raised: %s", exc)
            return RuleResult.quiet(self.name, "internal error in payment_flood rule")

    def _analyze(self, event: SecurityEvent, window: list[SecurityEvent]) -> RuleResult:
        if event.event_type is not EventType.PAYMENT_ATTEMPT:
            return RuleResult.quiet(self.name)

        attempts = sum(1 for e in window if e.event_type is EventType.PAYMENT_ATTEMPT)
        if attempts <= self.threshold:
            return RuleResult.quiet(self.name, f"{attempts} payment attempt(s), below threshold")

        return self._fired(
            f"{attempts} payment attempts for {event.subject_id!r} in the analysis window",
            count=attempts,
        )
