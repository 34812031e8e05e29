"""
api/serializers.py

Pydantic request/response models for the security API.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from ..models import EventType, RiskLevel, SecurityEvent, SecurityStats


class EventResponse(BaseModel):
    event_id: str
    timestamp: int
    event_type: EventType
    subject_id: str | None = None
    device_info: str
    ip_address: str | None = None
    details: dict[str, Any] = {}
    risk_level: RiskLevel

    @classmethod
    def from_event(cls, event: SecurityEvent) -> "EventResponse":
        return cls(**event.to_dict())


class EventCreateRequest(BaseModel):
    event_type: EventType
    details: dict[str, Any] = {}
    subject_id: str | None = None
    risk_level: RiskLevel = RiskLevel.LOW
    device_info: str | None = None
    """Falls back to the request's User-Agent header."""


class RateLimitRequest(BaseModel):
    action: str = Field(min_length=1)
    subject_id: str = Field(min_length=1)
    limit: int = Field(ge=1)
    window_ms: int = Field(ge=1)


class StatsResponse(BaseModel):
    total: int
    by_type: dict[str, int]
    by_risk: dict[str, int]
    since: int
    lookback_ms: int

    @classmethod
    def from_stats(cls, stats: SecurityStats) -> "StatsResponse":
        return cls(**stats.to_dict())


class RiskLevelCounts(BaseModel):
    low: int = 0
    medium: int = 0
    high: int = 0
    critical: int = 0


class DashboardResponse(BaseModel):
    total_events: int
    login_attempts: int
    payment_attempts: int
    suspicious_activities: int
    rate_limit_hits: int
    risk_levels: RiskLevelCounts


class ErrorResponse(BaseModel):
    code: str
    message: str
    timestamp: int
    details: dict[str, Any] = {}
