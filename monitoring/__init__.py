"""
Monitoring Module

This module provides health reporting for the shared PostgreSQL pool:
- Overall status (healthy, degraded, unavailable)
- Manager stats snapshot (pool size, idle and waiting clients)
- Circuit breaker counters and timing
- Pool query counters
"""

from .health import build_health_report, health_status, HEALTHY, DEGRADED, UNAVAILABLE

__all__ = [
    'build_health_report',
    'health_status',
    'HEALTHY',
    'DEGRADED',
    'UNAVAILABLE',
]
