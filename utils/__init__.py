"""
Utilities Module

This module provides common helpers shared across pgpool_ops:
- Exponential backoff policy for connection retries
- Logging configuration

Implements shared functionality used across the package to ensure
consistency, reliability, and maintainability.
"""

from .backoff import BackoffPolicy
from .logging_config import configure_logging

__all__ = [
    'BackoffPolicy',
    'configure_logging',
]
