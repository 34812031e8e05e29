"""
backend/exceptions.py

Typed failure taxonomy shared by the monitor, the payment/login flows and the API.

Every error carries:
    code      - stable machine-readable identifier
    message   - human-readable text, built deterministically from the inputs
    timestamp - milliseconds since epoch, captured at construction
    details   - JSON-serializable payload for the caller

Policy failures (blocked user, bad credentials, insufficient funds, rate limit)
are shown to the user verbatim. Precision and lookup errors are input-validation
failures for the immediate caller. PersistenceError never leaves the storage
boundary - the event store catches it and keeps running in memory.
"""

from __future__ import annotations

import math
import time
from typing import Any


def _now_ms() -> int:
    return int(time.time() * 1000)


class CardGuardError(Exception):
    """Base class for every structured failure raised by CardGuard."""

    code: str = "CARDGUARD_ERROR"
    user_facing: bool = False
    http_status: int = 400

    def __init__(self, message: str, code: str | None = None,
                 details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.timestamp: int = _now_ms()
        self.details: dict[str, Any] = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "timestamp": self.timestamp,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class UserBlockedError(CardGuardError):
    code = "USER_BLOCKED"
    user_facing = True
    http_status = 423

    def __init__(self, block_time_remaining: int | float) -> None:
        minutes = math.ceil(block_time_remaining / 60)
        super().__init__(
            f"User temporarily blocked. Try again in {minutes} minutes.",
            details={"block_time_remaining": block_time_remaining},
        )


class InvalidCredentialsError(CardGuardError):
    code = "INVALID_CREDENTIALS"
    user_facing = True
    http_status = 401

    def __init__(self, attempts_remaining: int) -> None:
        super().__init__(
            f"Invalid credentials. {attempts_remaining} attempts remaining.",
            details={"attempts_remaining": attempts_remaining},
        )


class TransactionPrecisionError(CardGuardError):
    code = "TRANSACTION_PRECISION_ERROR"
    http_status = 422

    def __init__(self, value: str, max_digits: int = 16) -> None:
        super().__init__(
            f"Value exceeds the maximum allowed precision ({max_digits} digits). "
            f"Value provided: {value}",
            details={"value": value, "max_digits": max_digits},
        )


class UserNotFoundError(CardGuardError):
    code = "USER_NOT_FOUND"
    http_status = 404

    def __init__(self, identifier: str) -> None:
        super().__init__(
            f"User not found: {identifier}",
            details={"identifier": identifier},
        )


class InsufficientFundsError(CardGuardError):
    code = "INSUFFICIENT_FUNDS"
    user_facing = True
    http_status = 402

    def __init__(self, requested_amount: float, available_balance: float) -> None:
        super().__init__(
            f"Insufficient funds. Requested: {requested_amount}, "
            f"available: {available_balance}",
            details={
                "requested_amount": requested_amount,
                "available_balance": available_balance,
            },
        )


class SuspiciousActivityError(CardGuardError):
    code = "SUSPICIOUS_ACTIVITY"
    http_status = 403

    def __init__(self, activity_type: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            f"Suspicious activity detected: {activity_type}",
            details={"activity_type": activity_type, **(details or {})},
        )


class RateLimitExceededError(CardGuardError):
    code = "RATE_LIMIT_EXCEEDED"
    user_facing = True
    http_status = 429

    def __init__(self, action: str, reset_time: int, now: int | None = None) -> None:
        if now is None:
            now = _now_ms()
        retry_after = max(0, math.ceil((reset_time - now) / 1000))
        super().__init__(
            f"Rate limit exceeded for {action}. Try again in {retry_after} seconds.",
            details={"action": action, "reset_time": reset_time, "retry_after": retry_after},
        )
        self.retry_after = retry_after


class PersistenceError(CardGuardError):
    """Durable store unavailable or a write failed. Internal only."""

    code = "PERSISTENCE_ERROR"
    http_status = 500

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            f"Persistence failure during {operation}: {reason}",
            details={"operation": operation, "reason": reason},
        )
