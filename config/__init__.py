"""
Configuration Module

This module provides centralized configuration management for the PostgreSQL
connection lifecycle:
- Connection target (DSN or discrete host/port/credentials)
- Pool sizing and driver timeouts
- Retry, backoff and circuit breaker tuning
- Logging settings
- Configuration validation and loading from YAML or environment

Implements a flexible, environment-aware configuration system
with sensible defaults and comprehensive validation using Pydantic.
"""

from .settings import (
    PoolOpsSettings,
    ConnectionSettings,
    PoolSettings,
    ResilienceSettings,
    MonitoringSettings,
    load_settings
)

__all__ = [
    'PoolOpsSettings',
    'ConnectionSettings',
    'PoolSettings',
    'ResilienceSettings',
    'MonitoringSettings',
    'load_settings'
]
