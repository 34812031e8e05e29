"""
monitor/rate_limiter.py

RateLimiter - fixed-window counters keyed by (action, subject).

Algorithm, per check_and_consume() call:
  - no counter, or now > window_end → replace with count=1, window_end=now+window_ms
  - count < limit                   → count += 1
  - count >= limit                  → log RATE_LIMIT_HIT, raise RateLimitExceededError

This is a fixed window, not a sliding one: a burst straddling a window
boundary can admit up to 2 × limit actions. That is accepted behaviour.

Thread safety: read-check-increment-persist runs under one lock, so two
callers can never both take the last slot. The RATE_LIMIT_HIT event is
logged after the lock is released.
"""

from __future__ import annotations

import logging
import threading

from ..exceptions import PersistenceError, RateLimitExceededError
from ..models import EventType, RateLimitCounter, RiskLevel, rate_limit_key
from ..storage.repository import RateLimitRepository
from .store import EventStore

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(
        self,
        store: EventStore,
        repository: RateLimitRepository | None = None,
    ) -> None:
        self._store = store
        self._repository = repository
        self._lock = threading.Lock()
        self._counters: dict[str, RateLimitCounter] = {}

        self.counters: dict[str, int] = {
            "checks_allowed": 0,
            "checks_rejected": 0,
            "persistence_failures": 0,
        }
        self._load()

    def check_and_consume(
        self,
        action: str,
        subject_id: str,
        limit: int,
        window_ms: int,
        *,
        device_info: str | None = None,
    ) -> None:
        """Consume one slot or raise RateLimitExceededError."""
        if limit < 1:
            raise ValueError(f"limit must be >= 1 - got {limit}")
        if window_ms < 1:
            raise ValueError(f"window_ms must be >= 1 - got {window_ms}")

        key = rate_limit_key(action, subject_id)
        with self._lock:
            now = self._store.now_ms()
            counter = self._counters.get(key)

            if counter is None or counter.expired(now):
                counter = RateLimitCounter(
                    action=action,
                    subject_id=subject_id,
                    count=1,
                    window_end=now + window_ms,
                )
                self._counters[key] = counter
                self._persist(counter)
                self.counters["checks_allowed"] += 1
                return

            if counter.count < limit:
                counter.count += 1
                self._persist(counter)
                self.counters["checks_allowed"] += 1
                return

            self.counters["checks_rejected"] += 1
            current_count = counter.count
            window_end = counter.window_end

        logger.warning(
            "Rate limit hit - action=%r subject=%r count=%d limit=%d",
            action, subject_id, current_count, limit,
        )
        self._store.append(
            EventType.RATE_LIMIT_HIT,
            {"action": action, "limit": limit, "current_count": current_count},
            subject_id,
            RiskLevel.MEDIUM,
            device_info=device_info,
        )
        raise RateLimitExceededError(action, window_end, now=now)

    def get_counter(self, action: str, subject_id: str) -> RateLimitCounter | None:
        """Copy of the live counter for (action, subject), or None."""
        with self._lock:
            counter = self._counters.get(rate_limit_key(action, subject_id))
            if counter is None:
                return None
            return RateLimitCounter(
                action=counter.action,
                subject_id=counter.subject_id,
                count=counter.count,
                window_end=counter.window_end,
            )

    def _persist(self, counter: RateLimitCounter) -> None:
        if self._repository is None:
            return
        try:
            self._repository.save_counter(counter)
        except PersistenceError as exc:
            self.counters["persistence_failures"] += 1
            logger.error("Rate limit %r kept in memory only: %s", counter.key, exc.message)

    def _load(self) -> None:
        if self._repository is None:
            return
        try:
            self._counters = self._repository.load_counters()
        except PersistenceError as exc:
            self.counters["persistence_failures"] += 1
            logger.error("Could not load rate limits, starting empty: %s", exc.message)
            return
        logger.info("Loaded %d rate-limit counter(s) from storage", len(self._counters))

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)
