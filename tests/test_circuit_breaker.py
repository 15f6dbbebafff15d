"""
Tests for the connection circuit breaker.

Tests cover:
1. State transitions (CLOSED -> OPEN -> HALF_OPEN -> CLOSED / OPEN)
2. Short-circuiting while open and during a running half-open trial
3. Cooldown timer and half-open listeners
4. Metrics, reset and shutdown
"""

import asyncio

import pytest

from connection_management import (
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
    PoolCircuitBreaker,
)


def make_breaker(threshold: int = 3, cooldown: float = 60.0) -> PoolCircuitBreaker:
    return PoolCircuitBreaker(CircuitBreakerConfig(failure_threshold=threshold, recovery_timeout=cooldown), name="test")


async def fail(breaker: PoolCircuitBreaker, times: int) -> None:
    for _ in range(times):
        await breaker.before_attempt()
        await breaker.record_failure()


class TestCircuitState:
    """Tests for CircuitState enum."""

    def test_state_values(self):
        assert CircuitState.CLOSED.value == "closed"
        assert CircuitState.OPEN.value == "open"
        assert CircuitState.HALF_OPEN.value == "half-open"


class TestConfiguration:
    """Tests for configuration validation."""

    def test_defaults(self):
        breaker = PoolCircuitBreaker()
        assert breaker.config.failure_threshold == 5
        assert breaker.config.recovery_timeout == 60.0
        assert breaker.is_closed()

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            PoolCircuitBreaker(CircuitBreakerConfig(failure_threshold=0))

    def test_zero_recovery_timeout_rejected(self):
        """An instant cooldown would turn every opening into an immediate retry."""
        with pytest.raises(ValueError):
            PoolCircuitBreaker(CircuitBreakerConfig(recovery_timeout=0))
        with pytest.raises(ValueError):
            PoolCircuitBreaker(CircuitBreakerConfig(recovery_timeout=-1.0))


class TestStateTransitions:
    """Tests for circuit breaker state transitions."""

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self):
        breaker = make_breaker(threshold=3)

        await fail(breaker, 2)
        assert breaker.is_closed()
        assert breaker.failure_count == 2

        await fail(breaker, 1)
        assert breaker.is_open()
        assert breaker.get_state() == "open"
        breaker.shutdown()

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        breaker = make_breaker(threshold=3)
        await fail(breaker, 2)

        await breaker.before_attempt()
        await breaker.record_success()

        assert breaker.failure_count == 0
        assert breaker.is_closed()

    @pytest.mark.asyncio
    async def test_open_short_circuits(self):
        breaker = make_breaker(threshold=1)
        await fail(breaker, 1)

        with pytest.raises(CircuitOpenError):
            await breaker.before_attempt()

        metrics = breaker.get_metrics()
        assert metrics["counters"]["total_short_circuits"] == 1
        assert metrics["counters"]["total_attempts"] == 1
        assert metrics["timing"]["cooldown_remaining"] > 0
        breaker.shutdown()

    @pytest.mark.asyncio
    async def test_timer_moves_to_half_open_and_notifies(self):
        breaker = make_breaker(threshold=1, cooldown=0.05)
        notified = []
        breaker.add_half_open_listener(lambda: notified.append(breaker.state))

        await fail(breaker, 1)
        await asyncio.sleep(0.15)

        assert breaker.is_half_open()
        assert notified == [CircuitState.HALF_OPEN]

    @pytest.mark.asyncio
    async def test_half_open_allows_single_trial(self):
        breaker = make_breaker(threshold=1, cooldown=0.01)
        await fail(breaker, 1)
        await asyncio.sleep(0.05)

        await breaker.before_attempt()
        with pytest.raises(CircuitOpenError):
            await breaker.before_attempt()

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self):
        breaker = make_breaker(threshold=1, cooldown=0.01)
        await fail(breaker, 1)
        await asyncio.sleep(0.05)

        await breaker.before_attempt()
        await breaker.record_success()

        assert breaker.is_closed()
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        breaker = make_breaker(threshold=1, cooldown=0.01)
        await fail(breaker, 1)
        await asyncio.sleep(0.05)

        await breaker.before_attempt()
        await breaker.record_failure()

        assert breaker.is_open()
        assert breaker.failure_count == 2
        breaker.shutdown()

    @pytest.mark.asyncio
    async def test_cancelled_trial_frees_slot(self):
        breaker = make_breaker(threshold=1, cooldown=0.01)
        await fail(breaker, 1)
        await asyncio.sleep(0.05)

        await breaker.before_attempt()
        await breaker.cancel_attempt()
        await breaker.before_attempt()
        assert breaker.is_half_open()

    @pytest.mark.asyncio
    async def test_elapsed_cooldown_without_timer(self):
        """A lapsed cooldown is honoured even if the timer has not fired yet."""
        breaker = make_breaker(threshold=1, cooldown=60.0)
        await fail(breaker, 1)
        breaker._opened_at -= 61.0

        await breaker.before_attempt()
        assert breaker.is_half_open()


class TestListenersAndShutdown:
    """Tests for listener failures, reset and shutdown."""

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self):
        breaker = make_breaker(threshold=1, cooldown=0.01)
        calls = []

        def broken():
            raise RuntimeError("boom")

        breaker.add_half_open_listener(broken)
        breaker.add_half_open_listener(lambda: calls.append("ok"))
        await fail(breaker, 1)
        await asyncio.sleep(0.05)

        assert calls == ["ok"]

    @pytest.mark.asyncio
    async def test_shutdown_cancels_timer(self):
        breaker = make_breaker(threshold=1, cooldown=0.02)
        notified = []
        breaker.add_half_open_listener(lambda: notified.append(True))
        await fail(breaker, 1)

        breaker.shutdown()
        await asyncio.sleep(0.06)

        assert breaker.is_closed()
        assert notified == []

    @pytest.mark.asyncio
    async def test_reset(self):
        breaker = make_breaker(threshold=1)
        await fail(breaker, 1)

        await breaker.reset()

        assert breaker.is_closed()
        assert breaker.failure_count == 0
