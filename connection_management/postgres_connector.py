"""
PostgreSQL Connector - Low-Level Connection Primitive

This module knows how to open an asyncpg pool from settings, how to prove the
pool is usable with a liveness query, and how to throw away a pool that
failed that check. It holds no state about retries or health; the lifecycle
manager drives it.
"""

import asyncio
import logging
from typing import Any, Dict

import asyncpg

from config import PoolOpsSettings
from connection_management.connection_exceptions import ConnectionInitializationError

logger = logging.getLogger(__name__)

LIVENESS_QUERY = "SELECT 1"


class PostgresConnector:
    """
    Opens, checks and discards asyncpg pools.

    Client churn inside a live pool (connections being opened and closed by
    asyncpg) is logged here for observability; it never changes lifecycle
    state.
    """

    def __init__(self, name: str = "postgres"):
        self.name = name

    def build_pool_kwargs(self, settings: PoolOpsSettings) -> Dict[str, Any]:
        """
        Translate settings into ``asyncpg.create_pool`` keyword arguments.

        Args:
            settings: Complete settings; only the connection and pool groups are read

        Returns:
            Dict of keyword arguments for asyncpg.create_pool
        """
        connection = settings.connection
        pool = settings.pool

        server_settings = {
            "statement_timeout": str(int(pool.statement_timeout * 1000)),
        }
        if pool.keep_alive:
            server_settings["tcp_keepalives_idle"] = str(int(pool.keep_alive_delay))

        kwargs: Dict[str, Any] = {
            "min_size": pool.min_size,
            "max_size": pool.max_size,
            "max_queries": pool.max_queries,
            "max_inactive_connection_lifetime": pool.idle_timeout,
            "timeout": pool.connection_timeout,
            "command_timeout": pool.query_timeout,
            "server_settings": server_settings,
            "init": self._on_connection_init,
        }

        if connection.dsn:
            kwargs["dsn"] = connection.dsn
        else:
            kwargs.update(
                host=connection.host,
                port=connection.port,
                user=connection.user,
                password=connection.password.get_secret_value() or None,
                database=connection.database,
            )
        if connection.ssl:
            kwargs["ssl"] = "require"
        return kwargs

    async def open(self, settings: PoolOpsSettings) -> asyncpg.Pool:
        """
        Create a pool. With min_size > 0 this already opens real connections.

        Raises:
            Whatever the driver raises: OSError subclasses for refused
            connections and unknown hosts, asyncio.TimeoutError, asyncpg errors.
        """
        logger.debug(f"Opening PostgreSQL pool to {settings.connection.describe_target()}")
        return await asyncpg.create_pool(**self.build_pool_kwargs(settings))

    async def check_liveness(self, pool: asyncpg.Pool, timeout: float) -> None:
        """
        Run the liveness query on a freshly opened pool.

        Raises:
            ConnectionInitializationError: If the query returns something unexpected
        """
        value = await pool.fetchval(LIVENESS_QUERY, timeout=timeout)
        if value != 1:
            raise ConnectionInitializationError(f"Liveness query returned {value!r}")

    async def discard(self, pool: asyncpg.Pool, timeout: float = 5.0) -> None:
        """Close a pool that never went into service."""
        try:
            await asyncio.wait_for(pool.close(), timeout=timeout)
        except Exception as e:
            logger.warning(f"Graceful close of discarded pool failed ({e}); terminating")
            pool.terminate()

    async def _on_connection_init(self, conn: asyncpg.Connection) -> None:
        logger.debug(f"[{self.name}] Client connected (backend pid {conn.get_server_pid()})")
        conn.add_termination_listener(self._on_connection_terminated)

    def _on_connection_terminated(self, conn: asyncpg.Connection) -> None:
        logger.debug(f"[{self.name}] Client removed (backend pid {conn.get_server_pid()})")
