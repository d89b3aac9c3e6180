"""
Core module for cross-cutting concerns.

This module provides:
- Structured logging configuration
- Request tracing middleware
- Authentication
- Common utilities
"""

from core.logging import bound_context, configure_logging, get_logger
from core.utils import clamp, normalize_string_set, utcnow

__all__ = [
    "bound_context",
    "configure_logging",
    "get_logger",
    "clamp",
    "normalize_string_set",
    "utcnow",
]
