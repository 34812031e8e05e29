"""
storage/repository.py

Write-through persistence for the security log and the rate-limit counters.

The two repositories share one Database but own disjoint tables.
Every SQLite failure is wrapped in PersistenceError; the EventStore and
RateLimiter catch it, log it and keep serving from memory.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from ..exceptions import PersistenceError
from ..models import RateLimitCounter, SecurityEvent
from .database import Database

logger = logging.getLogger(__name__)


class EventRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    # ==================================================================
    # Write methods
    # ==================================================================

    def save_event(self, event: SecurityEvent, max_rows: int) -> None:
        """Insert one event and prune the table to the newest `max_rows` rows."""
        d = event.to_dict()
        try:
            details_json = json.dumps(d["details"])
        except (TypeError, ValueError) as exc:
            logger.error("save_event: details not JSON-serializable: %s", exc)
            details_json = json.dumps({"error": "non-serializable details"})

        try:
            self._db.execute(
                """
                INSERT OR IGNORE INTO security_events (
                    event_id, timestamp, event_type, subject_id,
                    device_info, ip_address, details, risk_level
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    d["event_id"],
                    d["timestamp"],
                    d["event_type"],
                    d["subject_id"],
                    d["device_info"],
                    d["ip_address"],
                    details_json,
                    d["risk_level"],
                ),
            )
            self._db.execute(
                """
                DELETE FROM security_events
                WHERE seq NOT IN (
                    SELECT seq FROM security_events
                    ORDER BY seq DESC
                    LIMIT ?
                )
                """,
                (max_rows,),
            )
            self._db.commit()
        except sqlite3.Error as exc:
            _safe_rollback(self._db)
            raise PersistenceError("save_event", str(exc)) from exc

    # ==================================================================
    # Read methods
    # ==================================================================

    def load_events(self, limit: int) -> list[SecurityEvent]:
        """Return the newest `limit` events in insertion order (oldest first)."""
        try:
            rows = self._db.execute(
                "SELECT * FROM security_events ORDER BY seq DESC LIMIT ?",
                (limit,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError("load_events", str(exc)) from exc

        events: list[SecurityEvent] = []
        for row in reversed(rows):
            event = self._row_to_event(row)
            if event is not None:
                events.append(event)
        return events

    def count_events(self) -> int:
        try:
            row = self._db.execute("SELECT COUNT(*) FROM security_events").fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError("count_events", str(exc)) from exc
        return row[0] if row else 0

    # ==================================================================
    # Internal helpers
    # ==================================================================

    @staticmethod
    def _row_to_event(row: Any) -> SecurityEvent | None:
        d = dict(row)
        try:
            d["details"] = json.loads(d.get("details") or "{}")
        except (TypeError, json.JSONDecodeError):
            d["details"] = {}
        try:
            return SecurityEvent.from_dict(d)
        except (KeyError, ValueError, TypeError) as exc:
            logger.error("Skipping unreadable event row %r: %s", d.get("event_id"), exc)
            return None


class RateLimitRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def save_counter(self, counter: RateLimitCounter) -> None:
        """Insert or replace the counter stored under `counter.key`."""
        try:
            self._db.execute(
                """
                INSERT INTO rate_limits (limit_key, action, subject_id, count, window_end)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(limit_key) DO UPDATE SET
                    count = excluded.count,
                    window_end = excluded.window_end
                """,
                (
                    counter.key,
                    counter.action,
                    counter.subject_id,
                    counter.count,
                    counter.window_end,
                ),
            )
            self._db.commit()
        except sqlite3.Error as exc:
            _safe_rollback(self._db)
            raise PersistenceError("save_counter", str(exc)) from exc

    def load_counters(self) -> dict[str, RateLimitCounter]:
        try:
            rows = self._db.execute(
                "SELECT limit_key, action, subject_id, count, window_end FROM rate_limits"
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError("load_counters", str(exc)) from exc

        return {
            row["limit_key"]: RateLimitCounter(
                action=row["action"],
                subject_id=row["subject_id"],
                count=row["count"],
                window_end=row["window_end"],
            )
            for row in rows
        }


def _safe_rollback(db: Database) -> None:
    try:
        db.rollback()
    except sqlite3.Error as exc:
        logger.warning("Rollback failed: %s", exc)
