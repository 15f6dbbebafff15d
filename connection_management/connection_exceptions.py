"""
Connection Management Exceptions

This module defines specialized exceptions for PostgreSQL connection management,
together with the helpers that classify driver errors.

Expected failures (refused connections, timeouts, an open circuit) never leave
the lifecycle manager as exceptions; they are used internally to drive retries
and are reported to callers as a ``None`` pool plus lifecycle events.
"""

import asyncio
import socket

import asyncpg

from pgpool_ops_exceptions import ConfigurationError, ConnectionError as BaseConnectionError


class ConnectionError(BaseConnectionError):
    """
    Base exception for all connection-related errors.

    Allows applications to catch all connection errors uniformly while still
    providing access to specific error details.
    """
    pass


class ConnectionTimeoutError(ConnectionError):
    """Raised when a connection attempt or liveness query times out."""
    pass


class ServerUnavailableError(ConnectionError):
    """
    Raised when the PostgreSQL server is unavailable.

    Distinguishes server-side availability problems from client-side misuse.
    """
    pass


class CircuitOpenError(ServerUnavailableError):
    """
    Raised when the circuit breaker short-circuits an attempt.

    No network I/O has been performed when this is raised.
    """
    pass


class ConnectionInitializationError(ConnectionError):
    """Raised when a freshly opened pool fails its liveness query."""
    pass


class ConnectionClosedError(ConnectionError):
    """Raised when a pool handle is used after it has been closed."""
    pass


# Errors that belong to the caller, not to the database. They are never retried.
PROGRAMMING_ERRORS = (
    ConfigurationError,
    ValueError,
    TypeError,
    AttributeError,
)

# Message fragments for the "connection refused" and "host not found" classes
HOST_UNREACHABLE_MESSAGES = (
    "connection refused",
    "could not connect to server",
    "name or service not known",
    "nodename nor servname provided",
    "could not translate host name",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated with hostname",
)


def is_programming_error(error: BaseException) -> bool:
    """Check if an error is a caller mistake rather than a runtime condition."""
    return isinstance(error, PROGRAMMING_ERRORS)


def is_host_unreachable_error(error: BaseException) -> bool:
    """
    Check if an error means the server cannot be reached at all.

    Covers refused connections and failed host name resolution. A pool that
    reports one of these is considered dead and gets reconnected.
    """
    if isinstance(error, (ConnectionRefusedError, socket.gaierror)):
        return True
    error_msg = str(error).lower()
    return any(msg in error_msg for msg in HOST_UNREACHABLE_MESSAGES)


def is_connection_error(error: BaseException) -> bool:
    """Check if an error comes from connectivity rather than from SQL."""
    if isinstance(error, (OSError, asyncio.TimeoutError, ConnectionError)):
        return True
    if isinstance(error, (asyncpg.PostgresConnectionError, asyncpg.InterfaceError)):
        return True
    return is_host_unreachable_error(error)
