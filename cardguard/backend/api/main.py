"""
api/main.py

FastAPI application factory.

The SecurityMonitor is passed in explicitly and stored on app.state;
routes reach it through the get_monitor dependency. CardGuardError
subclasses become JSON error bodies with the status their class declares.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import settings
from ..exceptions import CardGuardError, RateLimitExceededError
from ..monitor import SecurityMonitor
from .routes import security as security_router

logger = logging.getLogger(__name__)


def create_app(
    monitor: SecurityMonitor,
    cors_origins: list[str] | None = None,
    on_shutdown=None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("FastAPI startup")
        yield
        logger.info("FastAPI shutdown")
        if on_shutdown is not None:
            on_shutdown()

    app = FastAPI(
        title="CardGuard - Payment Security Monitor",
        version="1.0.0",
        description="Security event log, anomaly detection and rate limiting",
        lifespan=lifespan,
    )
    app.state.monitor = monitor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins if cors_origins is not None else settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(security_router.router, prefix="/api")

    @app.exception_handler(CardGuardError)
    async def cardguard_error(request: Request, exc: CardGuardError) -> JSONResponse:
        if not exc.user_facing:
            logger.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
        headers = None
        if isinstance(exc, RateLimitExceededError):
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict(), headers=headers)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", **monitor.health()}

    return app
