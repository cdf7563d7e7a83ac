"""Utility modules for weatherb.

Sub-modules:
- logging: configure_logging() for structlog setup
- backoff: exponential_backoff_ms(), the retry spacing policy
"""

from .backoff import exponential_backoff_ms, exponential_backoff_seconds
from .logging import configure_logging

__all__ = [
    "configure_logging",
    "exponential_backoff_ms",
    "exponential_backoff_seconds",
]
