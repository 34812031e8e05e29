"""
engine/rules/base.py

Abstract base class that all anomaly rules must implement.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ...models import RiskLevel, SecurityEvent
from ..models import RuleResult


class BaseRule(ABC):
    """
    Contract that every anomaly rule must satisfy.

    Class-level attributes:
        name       - unique snake_case identifier, used to stop a rule from
                     firing twice within one append call chain
        pattern    - value written to details.pattern of the derived event
        risk_level - risk of the derived SUSPICIOUS_ACTIVITY event
        order      - evaluation order (ascending)
        threshold  - count the rule compares the window against
        enabled    - False for stubs not yet implemented

    The analyze() method MUST:
        - Never raise an exception (catch internally, return non-triggered result)
        - Only look at the window it is given (same subject, trailing window,
          triggering event included)
        - Return only JSON-serializable types in details
    """

    name: str = ""
    pattern: str = ""
    risk_level: RiskLevel = RiskLevel.LOW
    order: int = 100
    threshold: int = 0
    enabled: bool = True

    @abstractmethod
    def analyze(self, event: SecurityEvent, window: list[SecurityEvent]) -> RuleResult:
        """
        Analyze the triggering event against its window and return a RuleResult.

        Must never raise - catch all exceptions internally.
        """
        ...

    def _fired(self, description: str, **details) -> RuleResult:
        return RuleResult(
            triggered=True,
            rule_name=self.name,
            risk_level=self.risk_level,
            details={"pattern": self.pattern, **details},
            description=description,
        )

    def __repr__(self) -> str:
        return f"<Rule:{self.name} enabled={self.enabled}>"
