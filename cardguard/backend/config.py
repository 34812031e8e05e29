"""
backend/config.py

Application configuration via Pydantic Settings.
All values can be overridden with environment variables or a .env file.

Quick start - create a .env file in your project root:
    DB_PATH=data/security.db
    EVENT_RETENTION_MAX=1000
    API_PORT=8000
    CORS_ORIGINS=http://localhost:3000,http://localhost:5173
"""

from __future__ import annotations

from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Storage
    DB_PATH: str = "data/security.db"
    EVENT_RETENTION_MAX: int = 1_000

    # Anomaly analysis
    ANALYSIS_WINDOW_SECONDS: int = 30 * 60
    FAILED_LOGIN_THRESHOLD: int = 3      # fires at >= threshold
    PAYMENT_FLOOD_THRESHOLD: int = 10    # fires above threshold
    DEVICE_FANOUT_THRESHOLD: int = 3     # fires above threshold

    # Queries
    STATS_LOOKBACK_SECONDS: int = 24 * 60 * 60
    DEFAULT_QUERY_LIMIT: int = 100
    DEFAULT_DEVICE_INFO: str = "unknown"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    CORS_ORIGINS: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_origins(cls, v):
        if isinstance(v, str):
            import json as _json
            v = v.strip()
            if v.startswith("["):
                try:
                    return _json.loads(v)
                except ValueError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


settings = Settings()
