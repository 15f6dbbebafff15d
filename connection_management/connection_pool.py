"""
Managed PostgreSQL Pool

This module provides the pool handle that the lifecycle manager hands out.
It wraps the driver pool, keeps usage counters, and reports connectivity
errors back to the manager so a dead server is noticed the moment a caller
trips over it.
"""

import time
import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
from contextlib import asynccontextmanager

from .connection_exceptions import ConnectionClosedError, is_connection_error

logger = logging.getLogger(__name__)


class ManagedPool:
    """
    Pool handle owned by the lifecycle manager.

    Callers get it from ``ConnectionLifecycleManager.get_pool()`` and must not
    keep it across failures: after a reconnection the manager hands out a new
    handle and the old one is closed.

    Example:
        >>> pool = await manager.get_pool()
        >>> if pool is not None:
        ...     rows = await pool.fetch("SELECT id FROM jobs WHERE state = $1", "queued")
    """

    def __init__(
        self,
        pool: Any,
        name: str = "postgres",
        on_error: Optional[Callable[["ManagedPool", BaseException], None]] = None,
    ):
        """
        Wrap a driver pool.

        Args:
            pool: The asyncpg pool (or anything with the same interface)
            name: Name used in log lines
            on_error: Called with (handle, error) for every connectivity error seen
        """
        self._pool = pool
        self.name = name
        self._on_error = on_error
        self._closed = False
        self._waiting = 0
        self._created_at = time.monotonic()

        self._metrics = {
            "queries_total": 0,
            "query_errors": 0,
            "connection_errors": 0,
            "total_query_time_ms": 0.0,
            "last_error": None,
        }

    @property
    def raw_pool(self) -> Any:
        """The underlying driver pool."""
        return self._pool

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def waiting_clients(self) -> int:
        """Callers currently waiting for a connection."""
        return self._waiting

    def size(self) -> int:
        return 0 if self._closed else self._pool.get_size()

    def idle_size(self) -> int:
        return 0 if self._closed else self._pool.get_idle_size()

    def max_size(self) -> int:
        return self._pool.get_max_size()

    def _report(self, error: BaseException) -> None:
        if not is_connection_error(error):
            return
        self._metrics["connection_errors"] += 1
        self._metrics["last_error"] = str(error)
        if self._on_error is not None:
            self._on_error(self, error)

    @asynccontextmanager
    async def acquire(self, timeout: Optional[float] = None) -> AsyncIterator[Any]:
        """
        Borrow a connection for the duration of the block.

        Raises:
            ConnectionClosedError: If this handle has been closed
        """
        if self._closed:
            raise ConnectionClosedError(f"Pool '{self.name}' is closed")

        self._waiting += 1
        try:
            conn = await self._pool.acquire(timeout=timeout)
        except Exception as e:
            self._report(e)
            raise
        finally:
            self._waiting -= 1

        try:
            yield conn
        except Exception as e:
            self._report(e)
            raise
        finally:
            await self._pool.release(conn)

    async def _run(self, method: str, query: str, args: tuple, timeout: Optional[float]) -> Any:
        start = time.perf_counter()
        try:
            async with self.acquire() as conn:
                result = await getattr(conn, method)(query, *args, timeout=timeout)
        except Exception as e:
            self._metrics["query_errors"] += 1
            self._metrics["last_error"] = str(e)
            raise
        finally:
            self._metrics["queries_total"] += 1
            self._metrics["total_query_time_ms"] += (time.perf_counter() - start) * 1000
        return result

    async def execute(self, query: str, *args: Any, timeout: Optional[float] = None) -> str:
        """Execute a statement and return the status string."""
        return await self._run("execute", query, args, timeout)

    async def fetch(self, query: str, *args: Any, timeout: Optional[float] = None) -> List[Any]:
        """Execute a query and fetch all rows."""
        return await self._run("fetch", query, args, timeout)

    async def fetchrow(self, query: str, *args: Any, timeout: Optional[float] = None) -> Optional[Any]:
        """Execute a query and fetch the first row."""
        return await self._run("fetchrow", query, args, timeout)

    async def fetchval(self, query: str, *args: Any, timeout: Optional[float] = None) -> Any:
        """Execute a query and fetch the first column of the first row."""
        return await self._run("fetchval", query, args, timeout)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Any]:
        """Borrow a connection and run the block inside a transaction."""
        async with self.acquire() as conn:
            async with conn.transaction():
                yield conn

    def get_metrics(self) -> Dict[str, Any]:
        """Usage counters for monitoring."""
        queries = self._metrics["queries_total"]
        return {
            "name": self.name,
            "closed": self._closed,
            "size": self.size(),
            "idle": self.idle_size(),
            "waiting": self._waiting,
            "queries_total": queries,
            "query_errors": self._metrics["query_errors"],
            "connection_errors": self._metrics["connection_errors"],
            "average_query_time_ms": (
                self._metrics["total_query_time_ms"] / queries if queries else 0.0
            ),
            "last_error": self._metrics["last_error"],
            "age_seconds": time.monotonic() - self._created_at,
        }

    async def close(self, timeout: float = 10.0) -> None:
        """
        Close every connection of the pool.

        Waits up to ``timeout`` for borrowed connections to come back, then
        terminates the pool. Idempotent.
        """
        if self._closed:
            return
        self._closed = True

        try:
            await asyncio.wait_for(self._pool.close(), timeout=timeout)
            logger.info(f"Pool '{self.name}' closed")
        except asyncio.TimeoutError:
            logger.warning(
                f"Pool '{self.name}' did not close within {timeout}s, terminating "
                f"({self._waiting} waiting clients)"
            )
            self._pool.terminate()
        except asyncio.CancelledError:
            logger.warning(f"Close of pool '{self.name}' was cancelled, terminating")
            self._pool.terminate()
            raise
        except Exception as e:
            logger.warning(f"Error closing pool '{self.name}': {e}; terminating")
            self._pool.terminate()

    def terminate(self) -> None:
        """Close every connection immediately, without waiting for borrowers."""
        self._closed = True
        self._pool.terminate()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"ManagedPool(name='{self.name}', state={state}, waiting={self._waiting})"
