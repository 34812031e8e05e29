"""
tests/test_config.py

Tests for config.py - Pydantic Settings validation and defaults.
"""

from __future__ import annotations

from cardguard.backend.config import Settings


class TestSettingsDefaults:

    def test_default_db_path(self):
        s = Settings()
        assert s.DB_PATH == "data/security.db"

    def test_default_retention(self):
        s = Settings()
        assert s.EVENT_RETENTION_MAX == 1_000

    def test_default_analysis_window(self):
        s = Settings()
        assert s.ANALYSIS_WINDOW_SECONDS == 1800

    def test_default_thresholds(self):
        s = Settings()
        assert s.FAILED_LOGIN_THRESHOLD == 3
        assert s.PAYMENT_FLOOD_THRESHOLD == 10
        assert s.DEVICE_FANOUT_THRESHOLD == 3

    def test_default_stats_lookback(self):
        s = Settings()
        assert s.STATS_LOOKBACK_SECONDS == 86_400

    def test_default_api(self):
        s = Settings()
        assert s.API_HOST == "0.0.0.0"
        assert s.API_PORT == 8000

    def test_default_log_level(self):
        s = Settings()
        assert s.LOG_LEVEL == "INFO"


class TestSettingsOverrides:

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("EVENT_RETENTION_MAX", "50")
        monkeypatch.setenv("API_PORT", "9000")
        s = Settings()
        assert s.EVENT_RETENTION_MAX == 50
        assert s.API_PORT == 9000

    def test_env_is_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("failed_login_threshold", "5")
        s = Settings()
        assert s.FAILED_LOGIN_THRESHOLD == 5

    def test_cors_origins_comma_separated(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")
        s = Settings()
        assert s.CORS_ORIGINS == ["http://a.test", "http://b.test"]

    def test_cors_origins_json(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", '["http://c.test"]')
        s = Settings()
        assert s.CORS_ORIGINS == ["http://c.test"]

    def test_init_kwargs(self):
        s = Settings(DEVICE_FANOUT_THRESHOLD=1)
        assert s.DEVICE_FANOUT_THRESHOLD == 1
