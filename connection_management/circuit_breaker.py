"""
PostgreSQL Connection Circuit Breaker

This module provides the circuit breaker guarding connection establishment.
It stops connection attempts after repeated failures so that a struggling
database is not hit by retry storms, and it schedules its own recovery: once
the cooldown elapses the circuit moves to half-open and listeners are told a
single trial attempt may run.

State machine:
    CLOSED    -> OPEN       consecutive failures >= failure_threshold
    OPEN      -> HALF_OPEN  cooldown timer fires
    HALF_OPEN -> CLOSED     trial attempt succeeds
    HALF_OPEN -> OPEN       trial attempt fails (cooldown restarts)
"""

import time
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass

from .connection_exceptions import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    - CLOSED: Normal operation, connection attempts are allowed
    - OPEN: Attempts are short-circuited until the cooldown elapses
    - HALF_OPEN: One trial attempt is allowed to test recovery
    """
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitBreakerConfig:
    """
    Configuration for the connection circuit breaker.

    The defaults open the circuit after five consecutive failed connection
    attempts and keep it open for a minute.
    """
    failure_threshold: int = 5          # Consecutive failures before opening
    recovery_timeout: float = 60.0      # Seconds the circuit stays open
    max_half_open_attempts: int = 1     # Concurrent trial attempts in half-open


class PoolCircuitBreaker:
    """
    Circuit breaker for PostgreSQL connection establishment.

    The breaker does not wrap calls itself; the lifecycle manager asks it for
    permission before every attempt and reports each outcome:

        await breaker.before_attempt()      # raises CircuitOpenError
        try:
            pool = await open_pool()
        except Exception:
            await breaker.record_failure()
            raise
        await breaker.record_success()

    The failure counter counts consecutive failures since the last success.
    It is not reset when the circuit opens, only by a success or by reset().
    """

    def __init__(self, config: Optional[CircuitBreakerConfig] = None, name: str = "postgres"):
        """
        Initialize the circuit breaker.

        Args:
            config: Circuit breaker configuration. If None, uses defaults
            name: Circuit breaker name for logging and metrics identification
        """
        self.config = config or CircuitBreakerConfig()
        self.name = name

        self._validate_config()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._opened_at = 0.0
        self._lock = asyncio.Lock()

        self._half_open_attempts = 0
        self._cooldown_handle: Optional[asyncio.TimerHandle] = None
        self._half_open_listeners: List[Callable[[], Any]] = []

        # Metrics for monitoring
        self._total_attempts = 0
        self._total_failures = 0
        self._total_short_circuits = 0
        self._state_change_count = 0
        self._last_state_change = time.monotonic()

        logger.info(
            f"PoolCircuitBreaker '{self.name}' initialized: "
            f"failure_threshold={self.config.failure_threshold}, "
            f"recovery_timeout={self.config.recovery_timeout}s"
        )

    def _validate_config(self):
        """Validate configuration parameters."""
        if self.config.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.config.recovery_timeout <= 0:
            raise ValueError("recovery_timeout must be positive")
        if self.config.max_half_open_attempts < 1:
            raise ValueError("max_half_open_attempts must be at least 1")

    def add_half_open_listener(self, callback: Callable[[], Any]) -> None:
        """Register a callback invoked whenever the circuit becomes half-open."""
        self._half_open_listeners.append(callback)

    def remove_half_open_listener(self, callback: Callable[[], Any]) -> None:
        """Remove a previously registered half-open callback."""
        if callback in self._half_open_listeners:
            self._half_open_listeners.remove(callback)

    async def before_attempt(self) -> None:
        """
        Ask permission for one connection attempt.

        - CLOSED: always allowed
        - OPEN: allowed only if the cooldown has elapsed (moves to HALF_OPEN)
        - HALF_OPEN: allowed while fewer than max_half_open_attempts trials run

        Raises:
            CircuitOpenError: If the attempt must not touch the network
        """
        async with self._lock:
            if self._state == CircuitState.OPEN:
                elapsed = time.monotonic() - self._opened_at
                if elapsed >= self.config.recovery_timeout:
                    # Timer has not run yet; move on without waiting for it
                    self._transition_to_half_open()
                else:
                    self._total_short_circuits += 1
                    remaining = self.config.recovery_timeout - elapsed
                    raise CircuitOpenError(
                        f"Circuit '{self.name}' is open. Retry in {remaining:.1f} seconds."
                    )

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_attempts >= self.config.max_half_open_attempts:
                    self._total_short_circuits += 1
                    raise CircuitOpenError(
                        f"Circuit '{self.name}' recovery trial already in progress."
                    )
                self._half_open_attempts += 1

            self._total_attempts += 1

    async def record_success(self) -> None:
        """
        Report a successful connection attempt.

        Resets the failure counter; a successful half-open trial closes the circuit.
        """
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info(f"Circuit '{self.name}': Recovery trial succeeded, closing circuit")
                self._transition_to_closed()
            elif self._failure_count > 0:
                logger.debug(f"Circuit '{self.name}': Resetting failure count after success")
            self._failure_count = 0

    async def record_failure(self) -> None:
        """
        Report a failed connection attempt.

        - CLOSED: count the failure, open the circuit at the threshold
        - HALF_OPEN: reopen immediately (recovery failed)
        """
        async with self._lock:
            self._last_failure_time = time.monotonic()
            self._failure_count += 1
            self._total_failures += 1

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(f"Circuit '{self.name}': Recovery trial failed, reopening circuit")
                self._transition_to_open()
            elif self._state == CircuitState.CLOSED:
                logger.debug(
                    f"Circuit '{self.name}': Failure {self._failure_count}/"
                    f"{self.config.failure_threshold}"
                )
                if self._failure_count >= self.config.failure_threshold:
                    logger.warning(
                        f"Circuit '{self.name}': Failure threshold reached "
                        f"({self._failure_count} consecutive failures), opening circuit"
                    )
                    self._transition_to_open()

    async def cancel_attempt(self) -> None:
        """Release a permitted attempt that ended without a reportable outcome."""
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_attempts > 0:
                self._half_open_attempts -= 1

    def _transition_to_open(self):
        """Open the circuit and (re)start the cooldown timer."""
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        self._half_open_attempts = 0
        self._state_change_count += 1
        self._last_state_change = self._opened_at
        self._schedule_cooldown()

    def _transition_to_half_open(self):
        """Move to half-open and tell listeners a trial may run."""
        self._cancel_cooldown()
        self._state = CircuitState.HALF_OPEN
        self._half_open_attempts = 0
        self._state_change_count += 1
        self._last_state_change = time.monotonic()
        logger.info(f"Circuit '{self.name}': Cooldown elapsed, transitioning to half-open")

        for listener in list(self._half_open_listeners):
            try:
                listener()
            except Exception:
                logger.exception(f"Circuit '{self.name}': Half-open listener failed")

    def _transition_to_closed(self):
        """Close the circuit after a successful recovery."""
        self._cancel_cooldown()
        self._state = CircuitState.CLOSED
        self._half_open_attempts = 0
        self._state_change_count += 1
        self._last_state_change = time.monotonic()

    def _schedule_cooldown(self):
        self._cancel_cooldown()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: before_attempt() performs the transition lazily
            return
        self._cooldown_handle = loop.call_later(self.config.recovery_timeout, self._on_cooldown_elapsed)

    def _cancel_cooldown(self):
        if self._cooldown_handle is not None:
            self._cooldown_handle.cancel()
            self._cooldown_handle = None

    def _on_cooldown_elapsed(self):
        self._cooldown_handle = None
        if self._state == CircuitState.OPEN:
            self._transition_to_half_open()

    def is_open(self) -> bool:
        """Check if the circuit is open (failing fast)."""
        return self._state == CircuitState.OPEN

    def is_half_open(self) -> bool:
        """Check if the circuit is half-open (testing recovery)."""
        return self._state == CircuitState.HALF_OPEN

    def is_closed(self) -> bool:
        """Check if the circuit is closed (normal operation)."""
        return self._state == CircuitState.CLOSED

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures since the last success."""
        return self._failure_count

    def get_state(self) -> str:
        """Get the current circuit state as string."""
        return self._state.value

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get circuit breaker metrics for monitoring.

        Returns:
            Dict containing configuration, counters and timing information
        """
        current_time = time.monotonic()

        time_since_last_failure = None
        if self._last_failure_time > 0:
            time_since_last_failure = current_time - self._last_failure_time

        cooldown_remaining = None
        if self._state == CircuitState.OPEN:
            cooldown_remaining = max(0.0, self.config.recovery_timeout - (current_time - self._opened_at))

        return {
            "name": self.name,
            "state": self._state.value,
            "configuration": {
                "failure_threshold": self.config.failure_threshold,
                "recovery_timeout": self.config.recovery_timeout,
                "max_half_open_attempts": self.config.max_half_open_attempts,
            },
            "counters": {
                "failure_count": self._failure_count,
                "total_attempts": self._total_attempts,
                "total_failures": self._total_failures,
                "total_short_circuits": self._total_short_circuits,
                "state_change_count": self._state_change_count,
            },
            "timing": {
                "time_since_last_failure": time_since_last_failure,
                "time_since_state_change": current_time - self._last_state_change,
                "cooldown_remaining": cooldown_remaining,
            },
        }

    async def reset(self) -> None:
        """
        Reset circuit breaker to closed state.

        Useful for manual recovery after maintenance and for tests.
        """
        async with self._lock:
            self._reset_state()
            logger.warning(f"Circuit '{self.name}': Manually reset to closed state")

    def shutdown(self) -> None:
        """Cancel the cooldown timer and return to a pristine closed state."""
        self._reset_state()

    def _reset_state(self):
        self._cancel_cooldown()
        if self._state != CircuitState.CLOSED:
            self._state_change_count += 1
            self._last_state_change = time.monotonic()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_attempts = 0
        self._last_failure_time = 0.0

    def __str__(self) -> str:
        return f"PoolCircuitBreaker(name='{self.name}', state={self._state.value})"

    def __repr__(self) -> str:
        return (
            f"PoolCircuitBreaker(name='{self.name}', state={self._state.value}, "
            f"failures={self._failure_count}/{self.config.failure_threshold}, "
            f"attempts={self._total_attempts})"
        )
