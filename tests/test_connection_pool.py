"""
Tests for the managed pool handle.

Tests cover:
1. Query helpers and usage counters
2. Error reporting (connectivity errors only) back to the owner
3. Waiting-client tracking
4. Graceful close with terminate fallback
"""

import asyncio

import asyncpg
import pytest

from connection_management import ConnectionClosedError, ManagedPool

from conftest import FakeRawPool, refused


class TestQueries:
    """Tests for the query helpers."""

    @pytest.mark.asyncio
    async def test_fetchval_releases_connection(self):
        raw = FakeRawPool()
        raw.results["SELECT count(*) FROM jobs"] = 3
        pool = ManagedPool(raw)

        assert await pool.fetchval("SELECT count(*) FROM jobs") == 3
        assert raw.acquired == 1
        assert raw.released == 1
        assert pool.get_metrics()["queries_total"] == 1

    @pytest.mark.asyncio
    async def test_arguments_and_timeout_forwarded(self):
        raw = FakeRawPool()
        pool = ManagedPool(raw)

        await pool.execute("DELETE FROM jobs WHERE id = $1", 7, timeout=2.0)

        assert raw.connection.queries == [("execute", "DELETE FROM jobs WHERE id = $1", (7,), 2.0)]

    @pytest.mark.asyncio
    async def test_transaction(self):
        raw = FakeRawPool()
        pool = ManagedPool(raw)

        async with pool.transaction() as conn:
            await conn.execute("INSERT INTO jobs VALUES ($1)", 1)

        assert raw.transactions == 1
        assert raw.released == 1

    @pytest.mark.asyncio
    async def test_sql_error_not_reported(self):
        raw = FakeRawPool()
        raw.connection.error = asyncpg.UndefinedTableError("relation \"jobs\" does not exist")
        reported = []
        pool = ManagedPool(raw, on_error=lambda handle, error: reported.append(error))

        with pytest.raises(asyncpg.UndefinedTableError):
            await pool.fetch("SELECT * FROM jobs")

        assert reported == []
        metrics = pool.get_metrics()
        assert metrics["query_errors"] == 1
        assert metrics["connection_errors"] == 0
        assert raw.released == 1


class TestErrorReporting:
    """Tests for connectivity error reporting."""

    @pytest.mark.asyncio
    async def test_acquire_error_reported(self):
        raw = FakeRawPool()
        raw.acquire_error = refused()
        reported = []
        pool = ManagedPool(raw, on_error=lambda handle, error: reported.append((handle, error)))

        with pytest.raises(ConnectionRefusedError):
            await pool.fetchval("SELECT 1")

        assert reported == [(pool, raw.acquire_error)]
        assert pool.get_metrics()["connection_errors"] == 1

    @pytest.mark.asyncio
    async def test_error_inside_block_reported(self):
        raw = FakeRawPool()
        reported = []
        pool = ManagedPool(raw, on_error=lambda handle, error: reported.append(error))

        with pytest.raises(asyncpg.ConnectionDoesNotExistError):
            async with pool.acquire():
                raise asyncpg.ConnectionDoesNotExistError("connection was closed in the middle of operation")

        assert len(reported) == 1
        assert raw.released == 1


class TestWaitingClients:
    """Tests for waiting-client tracking."""

    @pytest.mark.asyncio
    async def test_waiting_counter(self):
        raw = FakeRawPool()
        raw.acquire_gate = asyncio.Event()
        pool = ManagedPool(raw)

        task = asyncio.ensure_future(pool.fetchval("SELECT 1"))
        await asyncio.sleep(0)
        assert pool.waiting_clients == 1

        raw.acquire_gate.set()
        await task
        assert pool.waiting_clients == 0


class TestClose:
    """Tests for closing the handle."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        raw = FakeRawPool()
        pool = ManagedPool(raw)

        await pool.close()
        await pool.close()

        assert raw.closed
        assert not raw.terminated
        assert pool.size() == 0

    @pytest.mark.asyncio
    async def test_use_after_close(self):
        pool = ManagedPool(FakeRawPool())
        await pool.close()

        with pytest.raises(ConnectionClosedError):
            await pool.fetchval("SELECT 1")

    @pytest.mark.asyncio
    async def test_slow_close_terminates(self):
        raw = FakeRawPool()
        raw.close_delay = 1.0
        pool = ManagedPool(raw)

        await pool.close(timeout=0.01)

        assert raw.terminated

    @pytest.mark.asyncio
    async def test_cancelled_close_terminates(self):
        raw = FakeRawPool()
        raw.close_delay = 1.0
        pool = ManagedPool(raw)

        task = asyncio.ensure_future(pool.close(timeout=5.0))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert raw.terminated
        assert pool.closed

    def test_terminate(self):
        raw = FakeRawPool()
        pool = ManagedPool(raw)

        pool.terminate()

        assert raw.terminated
        assert pool.closed

    @pytest.mark.asyncio
    async def test_failing_close_terminates(self):
        raw = FakeRawPool()
        raw.close_error = asyncpg.InterfaceError("pool is closing")
        pool = ManagedPool(raw)

        await pool.close()

        assert raw.terminated
