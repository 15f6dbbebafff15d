"""
Shared fixtures: in-memory stand-ins for the asyncpg pool and the connector.

No test talks to a real database.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, List, Optional

import pytest

from config import PoolOpsSettings
from connection_management.connection_exceptions import ConnectionInitializationError


class FakeConnection:
    """Connection double; ``error`` is raised from every query when set."""

    def __init__(self, pool: "FakeRawPool"):
        self.pool = pool
        self.error: Optional[BaseException] = None
        self.queries: List[tuple] = []

    async def _query(self, method: str, query: str, args: tuple, timeout: Optional[float]) -> Any:
        self.queries.append((method, query, args, timeout))
        if self.error is not None:
            raise self.error
        return self.pool.results.get(query)

    async def execute(self, query, *args, timeout=None):
        return await self._query("execute", query, args, timeout)

    async def fetch(self, query, *args, timeout=None):
        return await self._query("fetch", query, args, timeout)

    async def fetchrow(self, query, *args, timeout=None):
        return await self._query("fetchrow", query, args, timeout)

    async def fetchval(self, query, *args, timeout=None):
        return await self._query("fetchval", query, args, timeout)

    @asynccontextmanager
    async def transaction(self):
        self.pool.transactions += 1
        yield


class FakeRawPool:
    """Implements the subset of asyncpg.Pool the package uses."""

    def __init__(self, size: int = 2, max_size: int = 10, liveness_value: Any = 1):
        self.size = size
        self.idle = size
        self.max = max_size
        self.liveness_value = liveness_value
        self.results = {}
        self.connection = FakeConnection(self)
        self.acquire_error: Optional[BaseException] = None
        self.acquire_gate: Optional[asyncio.Event] = None
        self.close_delay = 0.0
        self.close_error: Optional[BaseException] = None
        self.closed = False
        self.terminated = False
        self.acquired = 0
        self.released = 0
        self.transactions = 0

    def get_size(self):
        return self.size

    def get_idle_size(self):
        return self.idle

    def get_max_size(self):
        return self.max

    async def acquire(self, timeout=None):
        if self.acquire_gate is not None:
            await self.acquire_gate.wait()
        if self.acquire_error is not None:
            raise self.acquire_error
        self.acquired += 1
        self.idle = max(0, self.idle - 1)
        return self.connection

    async def release(self, conn):
        self.released += 1
        self.idle = min(self.size, self.idle + 1)

    async def close(self):
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        if self.close_error is not None:
            raise self.close_error
        self.closed = True

    def terminate(self):
        self.terminated = True

    async def fetchval(self, query, *args, timeout=None):
        return self.liveness_value


class FakeConnector:
    """
    Connector double driven by a script of outcomes.

    Each ``open`` call pops the next outcome: an exception instance is raised,
    anything else means success with a fresh FakeRawPool. When the script is
    exhausted ``default`` is used.
    """

    def __init__(self, outcomes: Optional[List[Any]] = None, default: Any = None):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.open_calls = 0
        self.pools: List[FakeRawPool] = []
        self.discarded: List[FakeRawPool] = []
        self.gate: Optional[asyncio.Event] = None

    async def open(self, settings):
        self.open_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        pool = outcome if isinstance(outcome, FakeRawPool) else FakeRawPool()
        self.pools.append(pool)
        return pool

    async def check_liveness(self, pool, timeout):
        value = await pool.fetchval("SELECT 1", timeout=timeout)
        if value != 1:
            raise ConnectionInitializationError(f"Liveness query returned {value!r}")

    async def discard(self, pool, timeout=5.0):
        self.discarded.append(pool)
        await pool.close()


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def refused(message: str = "connect call failed: Connection refused") -> ConnectionRefusedError:
    return ConnectionRefusedError(111, message)


@pytest.fixture
def settings() -> PoolOpsSettings:
    return PoolOpsSettings(
        connection={"host": "db.internal", "port": 5432, "user": "svc", "password": "secret", "database": "app"},
        resilience={
            "max_retries": 3,
            "base_delay": 1.0,
            "max_delay": 30.0,
            "circuit_breaker_threshold": 5,
            "circuit_breaker_cooldown": 60.0,
            "shutdown_timeout": 0.5,
        },
    )


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()
