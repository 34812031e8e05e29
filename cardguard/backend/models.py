"""
backend/models.py

Shared dataclasses for the security monitor.
Defining them here locks the contracts between the store, the analyzer,
the rate limiter and the API serializers.

EventType      - closed set of security event kinds
RiskLevel      - 4-level ordered enum (LOW < MEDIUM < HIGH < CRITICAL)
*Details       - typed payload per EventType, unknown keys kept in `extensions`
SecurityEvent  - immutable log entry stamped by the EventStore
RateLimitCounter - fixed-window counter for one (action, subject) pair
SecurityStats  - rollup returned by EventStore.stats()
"""

from __future__ import annotations

import secrets
import string
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Union


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class EventType(str, Enum):
    LOGIN_ATTEMPT       = "LOGIN_ATTEMPT"
    PAYMENT_ATTEMPT     = "PAYMENT_ATTEMPT"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    RATE_LIMIT_HIT      = "RATE_LIMIT_HIT"


class RiskLevel(str, Enum):
    LOW      = "LOW"
    MEDIUM   = "MEDIUM"
    HIGH     = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self.value]

    # str.__lt__ would compare alphabetically
    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank


_RISK_RANK = {"LOW": 1, "MEDIUM": 2, "HIGH": 3, "CRITICAL": 4}


# ---------------------------------------------------------------------------
# Details - one class per EventType
# ---------------------------------------------------------------------------

# Callers (and the stored JSON of older clients) use camelCase keys.
_KEY_ALIASES: dict[str, str] = {
    "currentCount": "current_count",
    "deviceCount": "device_count",
}


@dataclass(frozen=True, slots=True)
class _BaseDetails:
    """
    Common behaviour for typed details.

    Known keys become attributes; anything else lands in `extensions`
    so arbitrary client data is never mixed with the fields rules read.
    `extensions` is exposed as a read-only mapping over a private copy.
    """

    event_type: ClassVar[EventType]

    def __post_init__(self) -> None:
        object.__setattr__(self, "extensions", MappingProxyType(dict(self.extensions)))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None):
        known = {f.name for f in fields(cls)} - {"extensions"}
        values: dict[str, Any] = {}
        extensions: dict[str, Any] = {}
        for key, value in (raw or {}).items():
            name = _KEY_ALIASES.get(key, key)
            if name in known:
                values[name] = value
            else:
                extensions[key] = value
        return cls(**values, extensions=extensions)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            if f.name == "extensions":
                continue
            value = getattr(self, f.name)
            if value is not None:
                out[f.name] = value
        out.update(getattr(self, "extensions"))
        return out


@dataclass(frozen=True, slots=True)
class LoginAttemptDetails(_BaseDetails):
    event_type: ClassVar[EventType] = EventType.LOGIN_ATTEMPT

    success: bool | None = None
    action: str | None = None
    """E.g. 'LOGIN' | 'LOGOUT'."""

    method: str | None = None
    """E.g. 'PASSWORD' | 'BIOMETRIC'."""

    extensions: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PaymentAttemptDetails(_BaseDetails):
    event_type: ClassVar[EventType] = EventType.PAYMENT_ATTEMPT

    amount: float | None = None
    method: str | None = None
    """One of: 'NFC' | 'QR_CODE'."""

    success: bool | None = None
    extensions: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SuspiciousActivityDetails(_BaseDetails):
    event_type: ClassVar[EventType] = EventType.SUSPICIOUS_ACTIVITY

    pattern: str | None = None
    """E.g. 'MULTIPLE_FAILED_LOGINS' | 'RAPID_PAYMENT_ATTEMPTS' | 'MULTIPLE_DEVICES'."""

    count: int | None = None
    device_count: int | None = None
    action: str | None = None
    """Set for client-reported activity such as 'NFC_TOGGLE'."""

    extensions: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RateLimitHitDetails(_BaseDetails):
    event_type: ClassVar[EventType] = EventType.RATE_LIMIT_HIT

    action: str = ""
    limit: int = 0
    current_count: int = 0
    extensions: Mapping[str, Any] = field(default_factory=dict)


EventDetails = Union[
    LoginAttemptDetails,
    PaymentAttemptDetails,
    SuspiciousActivityDetails,
    RateLimitHitDetails,
]

_DETAILS_BY_TYPE: dict[EventType, type] = {
    EventType.LOGIN_ATTEMPT: LoginAttemptDetails,
    EventType.PAYMENT_ATTEMPT: PaymentAttemptDetails,
    EventType.SUSPICIOUS_ACTIVITY: SuspiciousActivityDetails,
    EventType.RATE_LIMIT_HIT: RateLimitHitDetails,
}


def parse_details(event_type: EventType | str, raw: Mapping[str, Any] | EventDetails | None) -> EventDetails:
    """Build the typed details for `event_type` from a plain mapping."""
    details_cls = _DETAILS_BY_TYPE[EventType(event_type)]
    if isinstance(raw, details_cls):
        return raw
    if isinstance(raw, _BaseDetails):
        raise TypeError(
            f"{type(raw).__name__} cannot be used for {EventType(event_type).value} events"
        )
    if raw is not None and not isinstance(raw, Mapping):
        raise TypeError(f"details must be a mapping, got {type(raw).__name__}")
    return details_cls.from_mapping(raw)


# ---------------------------------------------------------------------------
# SecurityEvent
# ---------------------------------------------------------------------------

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_event_id(timestamp_ms: int) -> str:
    """'SEC_<ms>_<9 random base36 chars>' - unique, not used for ordering."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"SEC_{timestamp_ms}_{suffix}"


@dataclass(frozen=True, slots=True)
class SecurityEvent:
    """One entry of the append-only security log. Never mutated once stored."""

    event_id: str
    timestamp: int
    """Milliseconds since epoch, stamped by the EventStore."""

    event_type: EventType
    details: EventDetails
    risk_level: RiskLevel = RiskLevel.LOW
    subject_id: str | None = None
    """Acting principal (user id / e-mail). None for anonymous or system events."""

    device_info: str = "unknown"
    """Opaque client description (user agent). Never parsed."""

    ip_address: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp,
            "event_type": self.event_type.value,
            "subject_id": self.subject_id,
            "device_info": self.device_info,
            "ip_address": self.ip_address,
            "details": self.details.to_dict(),
            "risk_level": self.risk_level.value,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "SecurityEvent":
        event_type = EventType(d["event_type"])
        return cls(
            event_id=d["event_id"],
            timestamp=int(d["timestamp"]),
            event_type=event_type,
            details=parse_details(event_type, d.get("details") or {}),
            risk_level=RiskLevel(d.get("risk_level", "LOW")),
            subject_id=d.get("subject_id"),
            device_info=d.get("device_info") or "unknown",
            ip_address=d.get("ip_address"),
        )

    def __repr__(self) -> str:
        return (
            f"SecurityEvent({self.event_type.value} {self.risk_level.value} "
            f"subject={self.subject_id!r} ts={self.timestamp})"
        )


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

def rate_limit_key(action: str, subject_id: str) -> str:
    return f"{action}:{subject_id}"


@dataclass(slots=True)
class RateLimitCounter:
    """Fixed-window counter. Replaced, not incremented, once `window_end` passes."""

    action: str
    subject_id: str
    count: int
    window_end: int
    """Absolute ms timestamp at which the window resets."""

    @property
    def key(self) -> str:
        return rate_limit_key(self.action, self.subject_id)

    def expired(self, now_ms: int) -> bool:
        return now_ms > self.window_end


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class SecurityStats:
    """Rollup over events with timestamp > since."""

    total: int
    by_type: dict[str, int]
    by_risk: dict[str, int]
    since: int
    lookback_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_type": dict(self.by_type),
            "by_risk": dict(self.by_risk),
            "since": self.since,
            "lookback_ms": self.lookback_ms,
        }
