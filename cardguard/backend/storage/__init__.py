"""storage/__init__.py"""
from .database import Database
from .repository import EventRepository, RateLimitRepository

__all__ = ["Database", "EventRepository", "RateLimitRepository"]
