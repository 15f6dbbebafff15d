"""
PgPool Operations Exceptions

This module defines custom exceptions for the pgpool_ops package
to provide clear error handling and reporting.
"""

class PoolOpsError(Exception):
    """Base exception for all pgpool_ops errors"""
    pass


class ConnectionError(PoolOpsError):
    """Raised when connection to the PostgreSQL server fails"""
    pass


class ConfigurationError(PoolOpsError):
    """Raised when configuration is invalid or missing"""
    pass


class OperationTimeoutError(PoolOpsError):
    """Raised when an operation times out"""
    pass
