"""
PgPool_Ops - PostgreSQL Connection Lifecycle Management

A production-ready toolkit for owning a shared PostgreSQL connection pool in
long-running async services. It establishes the pool with bounded retries,
protects the database with a circuit breaker, hands the pool out only while it
is healthy, and recovers on its own once the database comes back.

Designed so that an unavailable database degrades persistence instead of
crashing the process.
"""

__version__ = "0.1.0"
__author__ = "RhythmX"
