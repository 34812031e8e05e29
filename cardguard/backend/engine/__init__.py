"""engine/__init__.py"""
from .engine import AnomalyAnalyzer
from .models import RuleResult

__all__ = ["AnomalyAnalyzer", "RuleResult"]
