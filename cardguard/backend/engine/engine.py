"""
engine/engine.py

AnomalyAnalyzer - runs every enabled rule against a newly appended event.

The EventStore hands over the triggering event plus a snapshot of the
trailing window for the same subject. Rules run in `order`; every rule that
matches produces its own RuleResult (they are not exclusive). Rules named in
`exclude` are skipped so a derived event cannot re-trigger the rule that
produced it within the same append call chain.
"""

from __future__ import annotations

import importlib
import inspect
import logging
import pkgutil
import threading
import time

from ..config import settings
from ..models import SecurityEvent
from .models import RuleResult
from .rules.base import BaseRule

logger = logging.getLogger(__name__)

_RULE_TIMEOUT_MS = 50.0


class AnomalyAnalyzer:
    def __init__(
        self,
        window_seconds: int | None = None,
        rules: list[BaseRule] | None = None,
    ) -> None:
        seconds = settings.ANALYSIS_WINDOW_SECONDS if window_seconds is None else window_seconds
        self.window_ms: int = seconds * 1000
        loaded = self._load_rules() if rules is None else list(rules)
        self.rules: list[BaseRule] = sorted(
            (r for r in loaded if r.enabled), key=lambda r: r.order
        )

        self.stats: dict[str, int] = {
            "events_analyzed": 0,
            "patterns_detected": 0,
            "rules_skipped": 0,
            "rule_errors": 0,
        }
        self._stats_lock = threading.Lock()
        logger.info(
            "AnomalyAnalyzer loaded %d rule(s): %s | window=%ds",
            len(self.rules),
            [r.name for r in self.rules],
            seconds,
        )

    def analyze(
        self,
        event: SecurityEvent,
        window: list[SecurityEvent],
        exclude: frozenset[str] = frozenset(),
    ) -> list[RuleResult]:
        """Return the triggered results for `event`. Never raises."""
        if event.subject_id is None:
            return []

        self._inc("events_analyzed")
        results: list[RuleResult] = []

        for rule in self.rules:
            if rule.name in exclude:
                self._inc("rules_skipped")
                continue
            result = self._safe_analyze(rule, event, window)
            if not result.triggered:
                continue

            results.append(result)
            self._inc("patterns_detected")
            logger.warning(
                "PATTERN [%s] rule=%r subject=%r - %s",
                result.risk_level.value,
                result.rule_name,
                event.subject_id,
                result.description,
            )

        return results

    def _safe_analyze(
        self, rule: BaseRule, event: SecurityEvent, window: list[SecurityEvent]
    ) -> RuleResult:
        t0 = time.monotonic()
        try:
            result = rule.analyze(event, window)
        except Exception as exc:
            self._inc("rule_errors")
            logger.exception("Rule %r raised an unhandled exception: %s", rule.name, exc)
            result = RuleResult.quiet(rule.name, f"rule error: {exc}")
        elapsed_ms = (time.monotonic() - t0) * 1000
        if elapsed_ms > _RULE_TIMEOUT_MS:
            logger.warning("Rule %r took %.1fms", rule.name, elapsed_ms)
        return result

    def _inc(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] += 1

    def _load_rules(self) -> list[BaseRule]:
        from . import rules as rules_pkg
        rules: list[BaseRule] = []
        for _, module_name, _ in pkgutil.iter_modules(rules_pkg.__path__):
            if module_name == "base":
                continue
            try:
                module = importlib.import_module(f"{rules_pkg.__name__}.{module_name}")
            except Exception as exc:
                logger.error("Failed to import rule module %r: %s", module_name, exc)
                continue
            for _, obj in inspect.getmembers(module, inspect.isclass):
                if (
                    issubclass(obj, BaseRule)
                    and obj is not BaseRule
                    and obj.__module__ == module.__name__
                ):
                    try:
                        rules.append(obj())
                    except Exception as exc:
                        logger.error("Failed to instantiate rule %r: %s", obj, exc)
        return rules
