"""
Connection Management Module

This module owns the lifecycle of the shared PostgreSQL pool:

- Lazy, single-flight initialization with bounded retries and exponential backoff
- Circuit breaker that stops connection storms and schedules its own recovery
- Pool handle that reports connectivity errors back to the manager
- Lifecycle events (connected, connectionFailed, poolError, shutdown)
- Graceful shutdown with a forced-terminate fallback

Expected failures are reported as a ``None`` pool, never as exceptions, so
callers can degrade instead of crashing.
"""

from .connection_manager import ConnectionLifecycleManager
from .connection_pool import ManagedPool
from .circuit_breaker import PoolCircuitBreaker, CircuitBreakerConfig, CircuitState
from .postgres_connector import PostgresConnector, LIVENESS_QUERY
from .lifecycle_events import LifecycleEvent, LifecycleEventBus
from .models import AttemptOutcome, ConnectionAttempt, PoolStats
from .persistence import run_if_available
from .connection_exceptions import (
    ConnectionError,
    ConnectionTimeoutError,
    ServerUnavailableError,
    CircuitOpenError,
    ConnectionInitializationError,
    ConnectionClosedError,
    is_connection_error,
    is_host_unreachable_error,
    is_programming_error
)

__all__ = [
    'ConnectionLifecycleManager',
    'ManagedPool',
    'PoolCircuitBreaker',
    'CircuitBreakerConfig',
    'CircuitState',
    'PostgresConnector',
    'LIVENESS_QUERY',
    'LifecycleEvent',
    'LifecycleEventBus',
    'AttemptOutcome',
    'ConnectionAttempt',
    'PoolStats',
    'run_if_available',
    'ConnectionError',
    'ConnectionTimeoutError',
    'ServerUnavailableError',
    'CircuitOpenError',
    'ConnectionInitializationError',
    'ConnectionClosedError',
    'is_connection_error',
    'is_host_unreachable_error',
    'is_programming_error',
]
