"""
monitor/store.py

EventStore - append-only, time-ordered, retention-capped security log.

append() is a two-phase operation:
  1. Under the lock: stamp, append, trim to the cap, persist, and copy the
     trailing window of same-subject events.
  2. Outside the lock: run the AnomalyAnalyzer on that snapshot and append
     each derived SUSPICIOUS_ACTIVITY event through append() again, with the
     rules that already fired excluded so no rule fires twice per call.

The in-memory log is authoritative. Persistence failures are logged and
never reach the caller; the log keeps working in memory.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter, deque
from collections.abc import Callable, Mapping
from typing import Any

from ..config import settings
from ..engine import AnomalyAnalyzer
from ..exceptions import PersistenceError
from ..models import (
    EventDetails,
    EventType,
    RiskLevel,
    SecurityEvent,
    SecurityStats,
    new_event_id,
    parse_details,
)
from ..storage.repository import EventRepository

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class EventStore:
    """
    Args:
        repository:    Durable backend. None keeps the log in memory only.
        analyzer:      Anomaly analyzer run after every append. None disables analysis.
        max_events:    Retention cap; the oldest events are evicted first.
        clock:         Returns seconds since epoch (time.time by default).
        default_device_info: device_info used when the caller gives none.
    """

    def __init__(
        self,
        repository: EventRepository | None = None,
        analyzer: AnomalyAnalyzer | None = None,
        max_events: int | None = None,
        clock: Clock = time.time,
        default_device_info: str | None = None,
    ) -> None:
        self._repository = repository
        self._analyzer = analyzer
        self._window_ms = (
            analyzer.window_ms if analyzer is not None
            else settings.ANALYSIS_WINDOW_SECONDS * 1000
        )
        self._max_events = settings.EVENT_RETENTION_MAX if max_events is None else max_events
        if self._max_events < 1:
            raise ValueError(f"max_events must be >= 1 - got {self._max_events}")
        self._clock = clock
        self._default_device = default_device_info or settings.DEFAULT_DEVICE_INFO
        self._lock = threading.RLock()
        self._events: deque[SecurityEvent] = deque()

        self.counters: dict[str, int] = {
            "events_appended": 0,
            "events_derived": 0,
            "events_evicted": 0,
            "persistence_failures": 0,
        }
        self._load()

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def append(
        self,
        event_type: EventType | str,
        details: Mapping[str, Any] | EventDetails | None = None,
        subject_id: str | None = None,
        risk_level: RiskLevel | str = RiskLevel.LOW,
        *,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> SecurityEvent:
        """Stamp, store and analyze one event. Returns the stored event."""
        return self._append(
            EventType(event_type),
            details,
            subject_id,
            RiskLevel(risk_level),
            device_info=device_info,
            ip_address=ip_address,
            fired=frozenset(),
        )

    def _append(
        self,
        event_type: EventType,
        details: Mapping[str, Any] | EventDetails | None,
        subject_id: str | None,
        risk_level: RiskLevel,
        *,
        device_info: str | None,
        ip_address: str | None,
        fired: frozenset[str],
    ) -> SecurityEvent:
        parsed = parse_details(event_type, details)

        with self._lock:
            now = self._now_ms()
            event = SecurityEvent(
                event_id=new_event_id(now),
                timestamp=now,
                event_type=event_type,
                details=parsed,
                risk_level=risk_level,
                subject_id=subject_id,
                device_info=device_info or self._default_device,
                ip_address=ip_address,
            )
            self._events.append(event)
            self.counters["events_appended"] += 1
            self._trim()
            self._persist(event)
            window = self._window_locked(subject_id, now) if self._analyzer else []

        logger.debug("Appended %r", event)

        if self._analyzer is None or subject_id is None:
            return event

        results = self._analyzer.analyze(event, window, exclude=fired)
        if results:
            chain = fired | {r.rule_name for r in results}
            for result in results:
                with self._lock:
                    self.counters["events_derived"] += 1
                self._append(
                    EventType.SUSPICIOUS_ACTIVITY,
                    result.details,
                    subject_id,
                    result.risk_level,
                    device_info=event.device_info,
                    ip_address=event.ip_address,
                    fired=chain,
                )
        return event

    def _trim(self) -> None:
        while len(self._events) > self._max_events:
            evicted = self._events.popleft()
            self.counters["events_evicted"] += 1
            logger.debug("Retention cap reached - evicted %s", evicted.event_id)

    def _persist(self, event: SecurityEvent) -> None:
        if self._repository is None:
            return
        try:
            self._repository.save_event(event, self._max_events)
        except PersistenceError as exc:
            self.counters["persistence_failures"] += 1
            logger.error("Event %s kept in memory only: %s", event.event_id, exc.message)

    def _load(self) -> None:
        if self._repository is None:
            return
        try:
            loaded = self._repository.load_events(self._max_events)
        except PersistenceError as exc:
            self.counters["persistence_failures"] += 1
            logger.error("Could not load security events, starting empty: %s", exc.message)
            return
        self._events.extend(loaded)
        logger.info("Loaded %d security event(s) from storage", len(loaded))

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def query(self, subject_id: str | None = None, limit: int | None = 100) -> list[SecurityEvent]:
        """
        Events for `subject_id` (all events when None), newest first.

        Equal timestamps keep insertion order. `limit=None` returns everything.
        """
        with self._lock:
            snapshot = list(self._events)
        if subject_id is not None:
            snapshot = [e for e in snapshot if e.subject_id == subject_id]
        ordered = sorted(snapshot, key=lambda e: e.timestamp, reverse=True)
        if limit is None:
            return ordered
        return ordered[:max(0, limit)]

    def stats(self, lookback_ms: int | None = None) -> SecurityStats:
        """Totals per type and per risk level over events newer than now - lookback_ms."""
        if lookback_ms is None:
            lookback_ms = settings.STATS_LOOKBACK_SECONDS * 1000
        with self._lock:
            snapshot = list(self._events)
            since = self._now_ms() - lookback_ms

        recent = [e for e in snapshot if e.timestamp > since]
        by_type = Counter(e.event_type.value for e in recent)
        by_risk = Counter(e.risk_level.value for e in recent)
        return SecurityStats(
            total=len(recent),
            by_type=dict(by_type),
            by_risk=dict(by_risk),
            since=since,
            lookback_ms=lookback_ms,
        )

    def window(self, subject_id: str | None, now_ms: int | None = None) -> list[SecurityEvent]:
        """Same-subject events inside the analysis window ending at `now_ms`."""
        with self._lock:
            return self._window_locked(subject_id, self._now_ms() if now_ms is None else now_ms)

    def _window_locked(self, subject_id: str | None, now_ms: int) -> list[SecurityEvent]:
        if subject_id is None:
            return []
        return [
            e for e in self._events
            if e.subject_id == subject_id and now_ms - e.timestamp < self._window_ms
        ]

    def now_ms(self) -> int:
        return self._now_ms()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
