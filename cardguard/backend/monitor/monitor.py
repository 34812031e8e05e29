"""
monitor/monitor.py

SecurityMonitor - the one entry point the login flow, payment flow,
dashboard and admin console talk to.

It owns an EventStore and a RateLimiter and adds the read-side shapes the
dashboard and admin views consume. There is no module-level instance:
build one at startup (see build_monitor) and pass it to whatever needs it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any

from ..config import Settings, settings as default_settings
from ..engine import AnomalyAnalyzer
from ..models import EventDetails, EventType, RiskLevel, SecurityEvent, SecurityStats
from ..storage.database import Database
from ..storage.repository import EventRepository, RateLimitRepository
from .rate_limiter import RateLimiter
from .store import Clock, EventStore

logger = logging.getLogger(__name__)


class SecurityMonitor:
    def __init__(self, store: EventStore, limiter: RateLimiter,
                 default_limit: int | None = None) -> None:
        self.store = store
        self.limiter = limiter
        self._default_limit = (
            default_settings.DEFAULT_QUERY_LIMIT if default_limit is None else default_limit
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def log_security_event(
        self,
        event_type: EventType | str,
        details: Mapping[str, Any] | EventDetails | None = None,
        subject_id: str | None = None,
        risk_level: RiskLevel | str = RiskLevel.LOW,
        *,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> SecurityEvent:
        return self.store.append(
            event_type, details, subject_id, risk_level,
            device_info=device_info, ip_address=ip_address,
        )

    def check_rate_limit(
        self,
        action: str,
        subject_id: str,
        limit: int,
        window_ms: int,
        *,
        device_info: str | None = None,
    ) -> None:
        """Raises RateLimitExceededError when the window is full."""
        self.limiter.check_and_consume(
            action, subject_id, limit, window_ms, device_info=device_info
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_security_events(self, subject_id: str | None = None,
                            limit: int | None = None) -> list[SecurityEvent]:
        return self.store.query(subject_id, self._default_limit if limit is None else limit)

    def get_security_stats(self, lookback_ms: int | None = None) -> SecurityStats:
        return self.store.stats(lookback_ms)

    def dashboard_summary(self, lookback_ms: int | None = None) -> dict[str, Any]:
        """24 h rollup in the shape the security dashboard renders (zero-filled)."""
        stats = self.store.stats(lookback_ms)
        by_type = stats.by_type
        by_risk = stats.by_risk
        return {
            "total_events": stats.total,
            "login_attempts": by_type.get(EventType.LOGIN_ATTEMPT.value, 0),
            "payment_attempts": by_type.get(EventType.PAYMENT_ATTEMPT.value, 0),
            "suspicious_activities": by_type.get(EventType.SUSPICIOUS_ACTIVITY.value, 0),
            "rate_limit_hits": by_type.get(EventType.RATE_LIMIT_HIT.value, 0),
            "risk_levels": {
                level.value.lower(): by_risk.get(level.value, 0) for level in RiskLevel
            },
        }

    def export_events(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Every retained event (or the newest `limit`), newest first, as plain dicts."""
        return [e.to_dict() for e in self.store.query(None, limit)]

    def health(self) -> dict[str, Any]:
        return {
            "events_retained": len(self.store),
            "rate_limit_keys": len(self.limiter),
            "store": dict(self.store.counters),
            "limiter": dict(self.limiter.counters),
        }


def build_monitor(
    db: Database | None = None,
    config: Settings | None = None,
    clock: Clock = time.time,
) -> SecurityMonitor:
    """
    Wire a SecurityMonitor from settings.

    With `db=None` everything lives in memory (useful for tests and demos).
    """
    cfg = config or default_settings
    analyzer = AnomalyAnalyzer(window_seconds=cfg.ANALYSIS_WINDOW_SECONDS)
    for rule in analyzer.rules:
        threshold = _RULE_THRESHOLDS.get(rule.name)
        if threshold is not None:
            rule.threshold = getattr(cfg, threshold)

    store = EventStore(
        repository=EventRepository(db) if db is not None else None,
        analyzer=analyzer,
        max_events=cfg.EVENT_RETENTION_MAX,
        clock=clock,
        default_device_info=cfg.DEFAULT_DEVICE_INFO,
    )
    limiter = RateLimiter(
        store,
        repository=RateLimitRepository(db) if db is not None else None,
    )
    logger.info(
        "SecurityMonitor ready - persistence=%s retention=%d",
        db.db_path if db is not None else "memory",
        cfg.EVENT_RETENTION_MAX,
    )
    return SecurityMonitor(store, limiter, default_limit=cfg.DEFAULT_QUERY_LIMIT)


_RULE_THRESHOLDS: dict[str, str] = {
    "failed_logins": "FAILED_LOGIN_THRESHOLD",
    "payment_flood": "PAYMENT_FLOOD_THRESHOLD",
    "device_fanout": "DEVICE_FANOUT_THRESHOLD",
}
