"""
PostgreSQL Connection Lifecycle Manager

This module provides the single owner of the shared PostgreSQL pool. It
establishes the pool with bounded retries and exponential backoff, isolates
repeated failures behind a circuit breaker, hands the pool out only while it
is healthy, and reconnects on its own after the database comes back.

Expected failures never raise: callers get ``None`` from ``initialize()`` and
``get_pool()`` and must treat that as "database temporarily unavailable".
"""

import time
import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from pydantic import ValidationError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from config import PoolOpsSettings, load_settings
from connection_management.circuit_breaker import PoolCircuitBreaker, CircuitBreakerConfig
from connection_management.connection_pool import ManagedPool
from connection_management.postgres_connector import PostgresConnector
from connection_management.lifecycle_events import LifecycleEvent, LifecycleEventBus
from connection_management.models import AttemptOutcome, ConnectionAttempt, PoolStats
from connection_management.connection_exceptions import (
    CircuitOpenError,
    is_host_unreachable_error,
    is_programming_error
)
from pgpool_ops_exceptions import ConfigurationError
from utils.backoff import BackoffPolicy

logger = logging.getLogger(__name__)


class ConnectionLifecycleManager:
    """
    Owner of the shared PostgreSQL pool.

    Construct one per process at the entry point and pass it to every
    collaborator; there is no module-level instance.

    Lifecycle events (see ``LifecycleEvent``), with the payload handed to
    subscribers:
    - connected(pool): a pool passed its liveness query
    - connectionFailed(error): an initialization cycle gave up; error may be None
    - poolError(error): the live pool reported a connectivity error
    - shutdown(): the pool was torn down

    Example:
        >>> manager = ConnectionLifecycleManager(load_settings())
        >>> pool = await manager.initialize()
        >>> if pool is None:
        ...     logger.warning("Database unavailable, running degraded")
        >>> ...
        >>> await manager.shutdown()
    """

    def __init__(
        self,
        settings: Optional[Union[PoolOpsSettings, Mapping]] = None,
        connector: Optional[PostgresConnector] = None,
        event_bus: Optional[LifecycleEventBus] = None,
        name: str = "postgres",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the manager without touching the network.

        Args:
            settings: PoolOpsSettings or a mapping of the same shape. If None,
                     settings are loaded from the environment.
            connector: Connection primitive; PostgresConnector by default
            event_bus: Bus lifecycle events are published on
            name: Name used in logs, metrics and the circuit breaker
            sleep: Coroutine used for backoff delays

        Raises:
            ConfigurationError: If the supplied settings are malformed
        """
        self.name = name
        self._connector = connector or PostgresConnector(name)
        self.events = event_bus or LifecycleEventBus()
        self._sleep = sleep

        self._settings: PoolOpsSettings = (
            self._coerce_settings(settings) if settings is not None else load_settings()
        )
        self._breaker = PoolCircuitBreaker(self._breaker_config(self._settings), name=name)
        self._breaker.add_half_open_listener(self._on_circuit_half_open)
        self._backoff = self._backoff_policy(self._settings)

        self._pool: Optional[ManagedPool] = None
        # Replaced pools whose graceful close is still running
        self._retiring: Set[ManagedPool] = set()
        self._connected = False
        self._closed = False
        self._registered_systems: Dict[str, float] = {}
        self._last_attempt: Optional[ConnectionAttempt] = None

        self._init_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._recovery_task: Optional[asyncio.Task] = None

        logger.info(
            f"ConnectionLifecycleManager '{name}' created for "
            f"{self._settings.connection.describe_target()}"
        )

    @staticmethod
    def _coerce_settings(config: Any) -> PoolOpsSettings:
        if isinstance(config, PoolOpsSettings):
            return config
        if isinstance(config, Mapping):
            try:
                return PoolOpsSettings(**config)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid pool configuration: {e}") from e
        raise ConfigurationError(
            f"Unsupported configuration type {type(config).__name__}; "
            "expected PoolOpsSettings or a mapping"
        )

    @staticmethod
    def _breaker_config(settings: PoolOpsSettings) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=settings.resilience.circuit_breaker_threshold,
            recovery_timeout=settings.resilience.circuit_breaker_cooldown,
        )

    @staticmethod
    def _backoff_policy(settings: PoolOpsSettings) -> BackoffPolicy:
        return BackoffPolicy(
            base_delay=settings.resilience.base_delay,
            max_delay=settings.resilience.max_delay,
        )

    def _apply_settings(self, settings: PoolOpsSettings) -> None:
        self._settings = settings
        self._breaker.config = self._breaker_config(settings)
        self._backoff = self._backoff_policy(settings)

    @property
    def settings(self) -> PoolOpsSettings:
        return self._settings

    @property
    def circuit_breaker(self) -> PoolCircuitBreaker:
        return self._breaker

    @property
    def backoff(self) -> BackoffPolicy:
        return self._backoff

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def current_pool(self) -> Optional[ManagedPool]:
        """The live pool, without triggering initialization."""
        return self._pool if self._connected else None

    async def initialize(
        self, config: Optional[Union[PoolOpsSettings, Mapping]] = None
    ) -> Optional[ManagedPool]:
        """
        Establish the shared pool.

        Runs up to ``max_retries`` sequential attempts with exponential backoff.
        Concurrent callers share the in-flight attempt cycle instead of starting
        their own.

        Args:
            config: Replacement settings. If None, the current settings are used.

        Returns:
            The live pool, or None if every attempt failed or the circuit is open

        Raises:
            ConfigurationError: If ``config`` is malformed
        """
        if config is not None:
            self._apply_settings(self._coerce_settings(config))
        self._closed = False

        if self._connected and self._pool is not None:
            return self._pool

        if self._init_task is None or self._init_task.done():
            self._init_task = asyncio.ensure_future(self._connect_with_retry())
        task = self._init_task

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled() and self._closed:
                # shutdown() cancelled the cycle under us
                return None
            raise

    async def get_pool(self) -> Optional[ManagedPool]:
        """
        Get the shared pool if the database is healthy.

        Initializes lazily when there is no healthy pool and the circuit is not
        open. Never returns a pool that has been shut down.

        Returns:
            The live pool, or None when the database is unavailable. Callers must
            degrade (skip persistence, log a warning) on None.
        """
        if self._closed:
            return None
        if not (self._connected and self._pool is not None):
            if self._breaker.is_open():
                return None
            await self.initialize()
        return self._pool if self._connected else None

    def is_available(self) -> bool:
        """True iff a pool is connected and the circuit breaker is not open."""
        return self._connected and self._pool is not None and not self._breaker.is_open()

    def register_system(self, name: str) -> None:
        """Record a caller that depends on the pool. Observability only."""
        if name not in self._registered_systems:
            self._registered_systems[name] = time.time()
            logger.info(f"System '{name}' registered with connection manager '{self.name}'")

    @property
    def registered_systems(self) -> List[str]:
        return list(self._registered_systems)

    def get_stats(self) -> PoolStats:
        """Point-in-time snapshot for health and metrics endpoints."""
        pool = self.current_pool
        return PoolStats(
            connected=self._connected,
            circuit_open=self._breaker.is_open(),
            circuit_state=self._breaker.get_state(),
            total_connections=pool.size() if pool else 0,
            idle_connections=pool.idle_size() if pool else 0,
            waiting_clients=pool.waiting_clients if pool else 0,
            failure_count=self._breaker.failure_count,
            registered_systems=self.registered_systems,
            last_attempt=self._last_attempt,
        )

    async def _connect_with_retry(self) -> Optional[ManagedPool]:
        """Run one attempt cycle. Only programming errors escape."""
        resilience = self._settings.resilience
        retrying = AsyncRetrying(
            stop=stop_after_attempt(resilience.max_retries),
            wait=self._backoff.wait_strategy(),
            retry=retry_if_exception(self._should_retry),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self._attempt_connection(attempt.retry_state.attempt_number)
        except CircuitOpenError as e:
            logger.warning(f"Connection to '{self.name}' skipped: {e}")
            self.events.emit(LifecycleEvent.CONNECTION_FAILED, e)
            return None
        except Exception as e:
            if is_programming_error(e):
                raise
            logger.error(
                f"Could not connect to {self._settings.connection.describe_target()} "
                f"(failure count {self._breaker.failure_count}, circuit {self._breaker.get_state()}): {e}"
            )
            self.events.emit(LifecycleEvent.CONNECTION_FAILED, e)
            return None
        return None

    def _should_retry(self, error: BaseException) -> bool:
        if not isinstance(error, Exception):
            # Cancellation
            return False
        if is_programming_error(error) or isinstance(error, CircuitOpenError):
            return False
        # An attempt that just opened the circuit ends the cycle without sleeping
        return not self._breaker.is_open() and not self._closed

    def _log_retry(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Retrying connection to '{self.name}' in {delay:.2f}s "
            f"(attempt {retry_state.attempt_number + 1}/{self._settings.resilience.max_retries})"
        )

    async def _attempt_connection(self, attempt_number: int) -> Optional[ManagedPool]:
        """One breaker-guarded attempt: open the pool and run the liveness query."""
        started = time.time()
        try:
            await self._breaker.before_attempt()
        except CircuitOpenError as e:
            self._last_attempt = ConnectionAttempt(
                attempt_number, started, AttemptOutcome.SHORT_CIRCUITED, str(e)
            )
            raise

        clock = time.perf_counter()
        raw_pool = None
        try:
            raw_pool = await self._connector.open(self._settings)
            await self._connector.check_liveness(raw_pool, self._settings.resilience.liveness_timeout)
        except asyncio.CancelledError:
            if raw_pool is not None:
                raw_pool.terminate()
            raise
        except Exception as e:
            if raw_pool is not None:
                await self._connector.discard(raw_pool)
            if is_programming_error(e):
                await self._breaker.cancel_attempt()
                raise
            await self._breaker.record_failure()
            self._last_attempt = ConnectionAttempt(
                attempt_number, started, AttemptOutcome.FAILURE,
                f"{type(e).__name__}: {e}", (time.perf_counter() - clock) * 1000,
            )
            logger.warning(
                f"Connection attempt {attempt_number}/{self._settings.resilience.max_retries} "
                f"to {self._settings.connection.describe_target()} failed: {type(e).__name__}: {e}"
            )
            raise

        await self._breaker.record_success()
        if self._closed:
            await self._connector.discard(raw_pool)
            return None

        pool = ManagedPool(raw_pool, name=self.name, on_error=self._handle_pool_error)
        stale, self._pool = self._pool, pool
        self._connected = True
        if stale is not None:
            await self._retire(stale)
        self._last_attempt = ConnectionAttempt(
            attempt_number, started, AttemptOutcome.SUCCESS, None, (time.perf_counter() - clock) * 1000
        )
        logger.info(
            f"Connected to {self._settings.connection.describe_target()} "
            f"on attempt {attempt_number} (pool max size {self._settings.pool.max_size})"
        )
        self.events.emit(LifecycleEvent.CONNECTED, pool)
        return pool

    def _handle_pool_error(self, pool: ManagedPool, error: BaseException) -> None:
        """Pool-level error hook attached to every handle this manager creates."""
        if pool is not self._pool:
            logger.debug(f"Ignoring error from replaced pool handle: {error}")
            return

        logger.warning(f"Pool error on '{self.name}': {type(error).__name__}: {error}")
        self.events.emit(LifecycleEvent.POOL_ERROR, error)

        if self._closed or not self._connected or not is_host_unreachable_error(error):
            return

        self._connected = False
        logger.error(f"Database for '{self.name}' is unreachable, marking connection as down")
        if self._settings.resilience.auto_reconnect and (
            self._reconnect_task is None or self._reconnect_task.done()
        ):
            self._reconnect_task = self._spawn(self._reconnect(), "reconnect")

    async def _reconnect(self) -> None:
        stale, self._pool = self._pool, None
        if stale is not None:
            await self._retire(stale)
        if self._closed:
            return
        pool = await self.initialize()
        if pool is None:
            logger.error(f"Background reconnection of '{self.name}' failed; get_pool() will retry")

    async def _retire(self, pool: ManagedPool) -> None:
        """Close a replaced pool; shutdown() terminates it if this is interrupted."""
        self._retiring.add(pool)
        try:
            await pool.close(timeout=self._settings.resilience.shutdown_timeout)
        finally:
            self._retiring.discard(pool)

    def _on_circuit_half_open(self) -> None:
        if self._closed or self._connected:
            return
        if self._init_task is not None and not self._init_task.done():
            return
        logger.info(f"Circuit for '{self.name}' is half-open, scheduling a recovery attempt")
        self._recovery_task = self._spawn(self.initialize(), "recovery")

    def _spawn(self, coro: Awaitable[Any], label: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)

        def _log_failure(finished: asyncio.Task) -> None:
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(
                    f"Background {label} task for '{self.name}' failed",
                    exc_info=finished.exception(),
                )

        task.add_done_callback(_log_failure)
        return task

    async def shutdown(self) -> None:
        """
        Close the pool and stop all background activity.

        Idempotent; safe to call when never connected. In-flight queries on
        the old pool may fail with a closed-pool error.
        """
        if self._closed and self._pool is None and not self._retiring:
            logger.debug(f"ConnectionLifecycleManager '{self.name}' already shut down")
            return
        self._closed = True

        current = asyncio.current_task()
        pending = [
            task for task in (self._init_task, self._reconnect_task, self._recovery_task)
            if task is not None and not task.done() and task is not current
        ]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._init_task = self._reconnect_task = self._recovery_task = None

        for stale in list(self._retiring):
            logger.warning(f"Terminating replaced pool of '{self.name}' that was still closing")
            stale.terminate()
        self._retiring.clear()

        self._breaker.shutdown()
        pool, self._pool = self._pool, None
        self._connected = False
        if pool is not None:
            await pool.close(timeout=self._settings.resilience.shutdown_timeout)

        logger.info(f"ConnectionLifecycleManager '{self.name}' shut down")
        self.events.emit(LifecycleEvent.SHUTDOWN)

    async def __aenter__(self) -> "ConnectionLifecycleManager":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    def __repr__(self) -> str:
        return (
            f"ConnectionLifecycleManager(name='{self.name}', connected={self._connected}, "
            f"circuit={self._breaker.get_state()})"
        )
