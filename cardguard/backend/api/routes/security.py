"""
api/routes/security.py

GET  /api/security/events      - recent events, optionally for one subject
POST /api/security/events      - log an event (login flow, payment flow, NFC toggle)
GET  /api/security/stats       - rollup over a lookback window
GET  /api/security/dashboard   - 24 h dashboard summary
GET  /api/security/export      - admin export (newest first)
POST /api/security/rate-limit  - consume one slot, 429 when exhausted
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Query, Request, Response

from ...monitor import SecurityMonitor
from ..serializers import (
    DashboardResponse,
    EventCreateRequest,
    EventResponse,
    RateLimitRequest,
    StatsResponse,
)

router = APIRouter(prefix="/security", tags=["security"])


def get_monitor(request: Request) -> SecurityMonitor:
    """FastAPI dependency - the monitor is attached to app.state by create_app()."""
    return request.app.state.monitor


@router.get("/events", response_model=list[EventResponse])
async def list_events(
    subject_id: Annotated[str | None, Query()]            = None,
    limit:      Annotated[int,        Query(ge=1, le=1000)] = 100,
    monitor:    SecurityMonitor = Depends(get_monitor),
) -> list[EventResponse]:
    """Return recent events, newest first."""
    events = monitor.get_security_events(subject_id, limit)
    return [EventResponse.from_event(e) for e in events]


@router.post("/events", response_model=EventResponse, status_code=201)
async def log_event(
    body: EventCreateRequest,
    request: Request,
    user_agent: Annotated[str | None, Header()] = None,
    monitor: SecurityMonitor = Depends(get_monitor),
) -> EventResponse:
    """Append one event. Derived events from the analyzer are logged as well."""
    event = monitor.log_security_event(
        body.event_type,
        body.details,
        body.subject_id,
        body.risk_level,
        device_info=body.device_info or user_agent,
        ip_address=request.client.host if request.client else None,
    )
    return EventResponse.from_event(event)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    lookback_ms: Annotated[int | None, Query(ge=1)] = None,
    monitor: SecurityMonitor = Depends(get_monitor),
) -> StatsResponse:
    return StatsResponse.from_stats(monitor.get_security_stats(lookback_ms))


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    monitor: SecurityMonitor = Depends(get_monitor),
) -> DashboardResponse:
    return DashboardResponse(**monitor.dashboard_summary())


@router.get("/export", response_model=list[EventResponse])
async def export_events(
    limit: Annotated[int | None, Query(ge=1)] = None,
    monitor: SecurityMonitor = Depends(get_monitor),
) -> list[EventResponse]:
    """Every retained event for the admin export. CSV rendering is the client's job."""
    return [EventResponse(**d) for d in monitor.export_events(limit)]


@router.post("/rate-limit", status_code=204)
async def check_rate_limit(
    body: RateLimitRequest,
    user_agent: Annotated[str | None, Header()] = None,
    monitor: SecurityMonitor = Depends(get_monitor),
) -> Response:
    """Consume one slot. RateLimitExceededError is turned into a 429 by the app."""
    monitor.check_rate_limit(
        body.action, body.subject_id, body.limit, body.window_ms, device_info=user_agent
    )
    return Response(status_code=204)
