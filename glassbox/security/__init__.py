"""
glassbox/security/__init__.py

Input validation and throttling shared by every monitor.
"""

from glassbox.security.rate_limiter import MonitorContext, RateLimiter, TimerRegistry
from glassbox.security import validators

__all__ = [
    "MonitorContext",
    "RateLimiter",
    "TimerRegistry",
    "validators",
]
