"""
tests/test_store.py

Tests for monitor/store.py - ordering, retention, restart, analysis wiring,
rollups and persistence failure handling.

Time is driven by a FakeClock passed to the store, so window boundaries
are deterministic without real waiting.
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from cardguard.backend.engine.engine import AnomalyAnalyzer
from cardguard.backend.engine.rules.device_fanout import DeviceFanoutRule
from cardguard.backend.engine.rules.failed_logins import FailedLoginsRule
from cardguard.backend.engine.rules.payment_flood import PaymentFloodRule
from cardguard.backend.exceptions import PersistenceError
from cardguard.backend.models import EventType, RiskLevel, SecurityEvent, SuspiciousActivityDetails
from cardguard.backend.monitor.store import EventStore
from cardguard.backend.storage.database import Database
from cardguard.backend.storage.repository import EventRepository

HOUR = 3600.0
MINUTE = 60.0


# ---------------------------------------------------------------------------
# Helpers / fixtures
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def default_analyzer() -> AnomalyAnalyzer:
    return AnomalyAnalyzer(
        window_seconds=30 * 60,
        rules=[
            FailedLoginsRule(threshold=3),
            PaymentFloodRule(threshold=10),
            DeviceFanoutRule(threshold=3),
        ],
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return EventStore(analyzer=default_analyzer(), max_events=1000, clock=clock)


def patterns(store: EventStore, subject_id: str | None = None) -> list[SuspiciousActivityDetails]:
    """Derived-pattern details, oldest first."""
    return [
        e.details for e in sorted(store.query(subject_id, limit=None), key=lambda e: e.timestamp)
        if e.event_type is EventType.SUSPICIOUS_ACTIVITY
        and isinstance(e.details, SuspiciousActivityDetails)
        and e.details.pattern is not None
    ]


def latest_pattern(store: EventStore, subject_id: str) -> SecurityEvent:
    return next(
        e for e in store.query(subject_id, limit=None)
        if e.event_type is EventType.SUSPICIOUS_ACTIVITY
    )


def fail_login(store: EventStore, subject: str = "ana", device: str = "phone-1"):
    return store.append(
        EventType.LOGIN_ATTEMPT, {"action": "LOGIN", "success": False}, subject,
        device_info=device,
    )


# ---------------------------------------------------------------------------
# append
# ---------------------------------------------------------------------------

class TestAppend:

    def test_stamps_timestamp_and_id(self, store, clock):
        e = store.append(EventType.LOGIN_ATTEMPT, {"success": True}, "ana")
        assert e.timestamp == int(clock.now * 1000)
        assert e.event_id.startswith(f"SEC_{e.timestamp}_")
        assert e.risk_level is RiskLevel.LOW

    def test_accepts_string_enums(self, store):
        e = store.append("PAYMENT_ATTEMPT", {"amount": 5.0}, "ana", "MEDIUM")
        assert e.event_type is EventType.PAYMENT_ATTEMPT
        assert e.risk_level is RiskLevel.MEDIUM

    def test_default_device(self, clock):
        s = EventStore(clock=clock, default_device_info="web")
        assert s.append(EventType.LOGIN_ATTEMPT, {}).device_info == "web"

    def test_invalid_cap_rejected(self):
        with pytest.raises(ValueError):
            EventStore(max_events=0)


# ---------------------------------------------------------------------------
# query ordering
# ---------------------------------------------------------------------------

class TestQuery:

    def test_newest_first(self, store, clock):
        ids = []
        for _ in range(5):
            ids.append(store.append(EventType.LOGIN_ATTEMPT, {"success": True}).event_id)
            clock.advance(1)
        assert [e.event_id for e in store.query(limit=None)] == list(reversed(ids))

    def test_non_increasing_even_if_clock_goes_back(self, store, clock):
        store.append(EventType.LOGIN_ATTEMPT, {})
        clock.advance(-10)
        store.append(EventType.LOGIN_ATTEMPT, {})
        clock.advance(20)
        store.append(EventType.LOGIN_ATTEMPT, {})
        stamps = [e.timestamp for e in store.query(limit=None)]
        assert stamps == sorted(stamps, reverse=True)

    def test_ties_keep_insertion_order(self, store):
        a = store.append(EventType.LOGIN_ATTEMPT, {"success": True})
        b = store.append(EventType.LOGIN_ATTEMPT, {"success": True})
        assert [e.event_id for e in store.query()] == [a.event_id, b.event_id]

    def test_filter_by_subject(self, store):
        store.append(EventType.LOGIN_ATTEMPT, {"success": True}, "ana")
        store.append(EventType.LOGIN_ATTEMPT, {"success": True}, "bob")
        store.append(EventType.LOGIN_ATTEMPT, {"success": True})
        assert [e.subject_id for e in store.query("bob")] == ["bob"]
        assert len(store.query()) == 3

    def test_limit(self, store):
        for _ in range(10):
            store.append(EventType.LOGIN_ATTEMPT, {"success": True})
        assert len(store.query(limit=4)) == 4
        assert store.query(limit=0) == []


# ---------------------------------------------------------------------------
# Retention cap
# ---------------------------------------------------------------------------

class TestRetention:

    def test_evicts_exactly_the_oldest(self, clock):
        s = EventStore(max_events=5, clock=clock)
        appended = []
        for _ in range(6):
            appended.append(s.append(EventType.LOGIN_ATTEMPT, {"success": True}))
            clock.advance(1)
        remaining = {e.event_id for e in s.query(limit=None)}
        assert len(s) == 5
        assert appended[0].event_id not in remaining
        assert remaining == {e.event_id for e in appended[1:]}
        assert s.counters["events_evicted"] == 1

    def test_size_never_exceeds_cap(self, clock):
        s = EventStore(max_events=3, clock=clock)
        for _ in range(20):
            s.append(EventType.PAYMENT_ATTEMPT, {"amount": 1.0})
            assert len(s) <= 3

    def test_durable_copy_capped(self, clock):
        db = Database(":memory:")
        db.init_schema()
        repo = EventRepository(db)
        s = EventStore(repository=repo, max_events=4, clock=clock)
        for _ in range(9):
            s.append(EventType.LOGIN_ATTEMPT, {"success": True})
        assert repo.count_events() == 4
        db.close()


# ---------------------------------------------------------------------------
# Restart
# ---------------------------------------------------------------------------

class TestRestart:

    def test_reload_returns_identical_events(self, tmp_path, clock):
        path = str(tmp_path / "security.db")
        db = Database(path)
        db.init_schema()
        s = EventStore(repository=EventRepository(db), analyzer=default_analyzer(), clock=clock)
        for i in range(5):
            fail_login(s, device=f"d{i % 2}")
            s.append(EventType.PAYMENT_ATTEMPT, {"amount": 10.0 + i, "method": "NFC"}, "ana")
            clock.advance(0.5)
        before = s.query(limit=None)
        db.close()

        db2 = Database(path)
        db2.init_schema()
        reloaded = EventStore(repository=EventRepository(db2), analyzer=default_analyzer(), clock=clock)
        assert reloaded.query(limit=None) == before
        db2.close()

    def test_reload_respects_cap(self, tmp_path, clock):
        path = str(tmp_path / "security.db")
        db = Database(path)
        db.init_schema()
        s = EventStore(repository=EventRepository(db), max_events=10, clock=clock)
        for _ in range(10):
            s.append(EventType.LOGIN_ATTEMPT, {"success": True})
        db.close()

        db2 = Database(path)
        db2.init_schema()
        smaller = EventStore(repository=EventRepository(db2), max_events=3, clock=clock)
        assert len(smaller) == 3
        db2.close()


# ---------------------------------------------------------------------------
# Persistence failures
# ---------------------------------------------------------------------------

class TestPersistenceFailure:

    def test_save_failure_never_reaches_caller(self, clock):
        repo = MagicMock(spec=EventRepository)
        repo.load_events.return_value = []
        repo.save_event.side_effect = PersistenceError("save_event", "disk I/O error")
        s = EventStore(repository=repo, clock=clock)

        e = s.append(EventType.LOGIN_ATTEMPT, {"success": True}, "ana")

        assert s.query() == [e]
        assert s.counters["persistence_failures"] == 1

    def test_load_failure_starts_empty(self, clock):
        repo = MagicMock(spec=EventRepository)
        repo.load_events.side_effect = PersistenceError("load_events", "no such table")
        s = EventStore(repository=repo, clock=clock)
        assert len(s) == 0
        assert s.counters["persistence_failures"] == 1

    def test_closed_database_keeps_memory_log(self, clock):
        db = Database(":memory:")
        db.init_schema()
        s = EventStore(repository=EventRepository(db), clock=clock)
        db.close()
        s.append(EventType.PAYMENT_ATTEMPT, {"amount": 3.0}, "ana")
        s.append(EventType.PAYMENT_ATTEMPT, {"amount": 4.0}, "ana")
        assert len(s) == 2
        assert s.counters["persistence_failures"] == 2


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

class TestStats:

    def test_lookback_excludes_old_events(self, store, clock):
        now = clock.now
        clock.now = now - 25 * HOUR
        store.append(EventType.LOGIN_ATTEMPT, {"success": True})
        clock.now = now - 1 * HOUR
        store.append(EventType.PAYMENT_ATTEMPT, {"amount": 9.99})
        clock.now = now

        stats = store.stats(lookback_ms=24 * 3600 * 1000)

        assert stats.total == 1
        assert stats.by_type == {"PAYMENT_ATTEMPT": 1}
        assert stats.by_risk == {"LOW": 1}

    def test_counts_by_risk(self, store):
        store.append(EventType.LOGIN_ATTEMPT, {"success": True}, risk_level=RiskLevel.LOW)
        store.append(EventType.SUSPICIOUS_ACTIVITY, {"action": "NFC_TOGGLE"}, risk_level=RiskLevel.HIGH)
        store.append(EventType.SUSPICIOUS_ACTIVITY, {"action": "NFC_TOGGLE"}, risk_level=RiskLevel.HIGH)
        stats = store.stats()
        assert stats.total == 3
        assert stats.by_risk == {"LOW": 1, "HIGH": 2}
        assert stats.by_type == {"LOGIN_ATTEMPT": 1, "SUSPICIOUS_ACTIVITY": 2}

    def test_boundary_is_exclusive(self, store, clock):
        store.append(EventType.LOGIN_ATTEMPT, {})
        clock.advance(10)
        assert store.stats(lookback_ms=10_000).total == 0
        assert store.stats(lookback_ms=10_001).total == 1

    def test_empty(self, store):
        stats = store.stats()
        assert stats.total == 0
        assert stats.by_type == {}


# ---------------------------------------------------------------------------
# Analysis wired into append
# ---------------------------------------------------------------------------

class TestDerivedEvents:

    def test_three_failed_logins_one_pattern(self, store):
        for _ in range(3):
            fail_login(store)
        found = patterns(store, "ana")
        assert len(found) == 1
        assert found[0].pattern == "MULTIPLE_FAILED_LOGINS"
        assert found[0].count == 3

    def test_fourth_failure_second_pattern(self, store):
        for _ in range(4):
            fail_login(store)
        found = patterns(store, "ana")
        assert [(p.pattern, p.count) for p in found] == [
            ("MULTIPLE_FAILED_LOGINS", 3),
            ("MULTIPLE_FAILED_LOGINS", 4),
        ]

    def test_derived_event_shape(self, store):
        for _ in range(3):
            fail_login(store, device="tablet")
        derived = latest_pattern(store, "ana")
        assert derived.event_type is EventType.SUSPICIOUS_ACTIVITY
        assert derived.risk_level is RiskLevel.HIGH
        assert derived.device_info == "tablet"
        assert derived.subject_id == "ana"

    def test_failures_outside_window_ignored(self, store, clock):
        fail_login(store)
        clock.advance(31 * MINUTE)
        fail_login(store)
        fail_login(store)
        assert patterns(store, "ana") == []

    def test_subjects_analyzed_separately(self, store):
        fail_login(store, subject="ana")
        fail_login(store, subject="bob")
        fail_login(store, subject="ana")
        assert patterns(store) == []

    def test_anonymous_events_not_analyzed(self, store):
        for _ in range(5):
            store.append(EventType.LOGIN_ATTEMPT, {"success": False}, None)
        assert patterns(store) == []

    def test_four_devices_one_pattern(self, store):
        for i in range(4):
            store.append(EventType.LOGIN_ATTEMPT, {"success": True}, "ana", device_info=f"device-{i}")
        found = patterns(store, "ana")
        assert [(p.pattern, p.device_count) for p in found] == [("MULTIPLE_DEVICES", 4)]

    def test_known_device_does_not_refire(self, store):
        for i in range(4):
            store.append(EventType.LOGIN_ATTEMPT, {"success": True}, "ana", device_info=f"device-{i}")
        store.append(EventType.LOGIN_ATTEMPT, {"success": True}, "ana", device_info="device-1")
        found = patterns(store, "ana")
        assert len(found) == 1
        assert found[0].device_count == 4

    def test_payment_flood(self, store):
        for _ in range(11):
            store.append(EventType.PAYMENT_ATTEMPT, {"amount": 1.0, "method": "QR_CODE"}, "ana")
        found = patterns(store, "ana")
        assert [(p.pattern, p.count) for p in found] == [("RAPID_PAYMENT_ATTEMPTS", 11)]
        derived = latest_pattern(store, "ana")
        assert derived.risk_level is RiskLevel.MEDIUM

    def test_two_rules_one_event(self, store):
        """Third failure from a fourth device fires both rules, nothing more."""
        store.append(EventType.LOGIN_ATTEMPT, {"success": True}, "ana", device_info="d1")
        fail_login(store, device="d2")
        fail_login(store, device="d3")
        fail_login(store, device="d4")
        found = [p.pattern for p in patterns(store, "ana")]
        assert found == ["MULTIPLE_FAILED_LOGINS", "MULTIPLE_DEVICES"]
        assert store.counters["events_derived"] == 2

    def test_derived_events_count_in_later_windows(self, store):
        for _ in range(3):
            fail_login(store)
        assert store.stats().by_type["SUSPICIOUS_ACTIVITY"] == 1

    def test_no_analyzer_no_patterns(self, clock):
        s = EventStore(clock=clock)
        for _ in range(5):
            fail_login(s)
        assert patterns(s) == []


# ---------------------------------------------------------------------------
# Analysis window
# ---------------------------------------------------------------------------

class TestWindow:

    def test_defaults_to_now(self, store, clock):
        first = fail_login(store, subject="bob")
        clock.advance(29 * MINUTE)
        second = fail_login(store, subject="bob")
        fail_login(store, subject="eve")
        assert store.window("bob") == [first, second]

    def test_explicit_end_excludes_old_events(self, store, clock):
        first = fail_login(store, subject="bob")
        clock.advance(29 * MINUTE)
        second = fail_login(store, subject="bob")
        end = first.timestamp + 30 * 60 * 1000
        assert store.window("bob", now_ms=end) == [second]
        assert store.now_ms() == second.timestamp

    def test_anonymous_subject_is_empty(self, store):
        store.append(EventType.LOGIN_ATTEMPT, {"success": True})
        assert store.window(None) == []


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

class TestConcurrentAppends:

    def test_counters_not_lost(self, clock):
        analyzer = default_analyzer()
        s = EventStore(analyzer=analyzer, max_events=5000, clock=clock)

        def worker(subject: str) -> None:
            for _ in range(100):
                fail_login(s, subject=subject)

        threads = [threading.Thread(target=worker, args=(f"user-{i}",)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # failures 3..100 each fire once per subject
        derived = 8 * 98
        assert s.counters["events_derived"] == derived
        assert s.counters["events_appended"] == 8 * 100 + derived
        assert len(s) == 8 * 100 + derived
        assert analyzer.stats["events_analyzed"] == 8 * 100 + derived
        assert analyzer.stats["patterns_detected"] == derived
        assert analyzer.stats["rules_skipped"] == derived
