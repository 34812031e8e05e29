"""
engine/models.py

Data models for the anomaly analyzer.

RuleResult - returned by every rule's analyze() method
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..models import RiskLevel


@dataclass(slots=True)
class RuleResult:
    """
    Return value of BaseRule.analyze().

    Rules must NEVER raise - catch internally and return a non-triggered result.
    Details must contain only JSON-serializable types (str, int, float, list, dict).
    When triggered, `details` becomes the payload of a derived
    SUSPICIOUS_ACTIVITY event logged at `risk_level`.
    """

    triggered: bool
    rule_name: str
    risk_level: RiskLevel
    details: dict[str, Any]
    description: str

    @classmethod
    def quiet(cls, rule_name: str, description: str = "no pattern detected") -> "RuleResult":
        return cls(triggered=False, rule_name=rule_name, risk_level=RiskLevel.LOW,
                   details={}, description=description)

    def __repr__(self) -> str:
        return (
            f"RuleResult({self.rule_name} triggered={self.triggered} "
            f"risk={self.risk_level.value} desc={self.description!r})"
        )
