"""monitor/__init__.py"""
from .monitor import SecurityMonitor, build_monitor
from .rate_limiter import RateLimiter
from .store import EventStore

__all__ = ["EventStore", "RateLimiter", "SecurityMonitor", "build_monitor"]
