"""
Lifecycle Events

Observer hooks for the connection lifecycle. Subscribers are informed when a
pool becomes available, when an initialization cycle gives up, when the live
pool reports a connectivity error and when the manager shuts down.

Events are notifications only; nothing in the lifecycle waits for, or depends
on, what a subscriber does with them.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class LifecycleEvent(str, Enum):
    """Names of the lifecycle signals."""
    CONNECTED = "connected"
    CONNECTION_FAILED = "connectionFailed"
    POOL_ERROR = "poolError"
    SHUTDOWN = "shutdown"


class LifecycleEventBus:
    """
    In-process publish/subscribe for lifecycle events.

    Callbacks may be plain functions or coroutine functions. Coroutines are
    scheduled on the running loop rather than awaited, so a slow subscriber
    cannot stall a reconnection. A subscriber that raises is logged and the
    remaining subscribers still run.

    Example:
        >>> bus = LifecycleEventBus()
        >>> bus.subscribe(LifecycleEvent.POOL_ERROR, lambda error: print(error))
    """

    def __init__(self):
        self._subscribers: Dict[LifecycleEvent, List[Callable[..., Any]]] = {
            event: [] for event in LifecycleEvent
        }
        self._pending: set = set()

    def subscribe(self, event: LifecycleEvent, callback: Callable[..., Any]) -> None:
        """Register a callback for one event."""
        self._subscribers[LifecycleEvent(event)].append(callback)

    def unsubscribe(self, event: LifecycleEvent, callback: Callable[..., Any]) -> None:
        """Remove a subscriber. Unknown callbacks are ignored."""
        subscribers = self._subscribers[LifecycleEvent(event)]
        if callback in subscribers:
            subscribers.remove(callback)

    def subscriber_count(self, event: LifecycleEvent) -> int:
        return len(self._subscribers[LifecycleEvent(event)])

    def emit(self, event: LifecycleEvent, *args: Any) -> None:
        """
        Notify every subscriber of ``event``.

        Args:
            event: The lifecycle event being published
            *args: Payload handed to each callback (the error for POOL_ERROR)
        """
        event = LifecycleEvent(event)
        logger.debug(f"Emitting lifecycle event '{event.value}' to {self.subscriber_count(event)} subscriber(s)")

        for callback in list(self._subscribers[event]):
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_subscriber_done)
            except Exception:
                logger.exception(f"Subscriber for lifecycle event '{event.value}' failed")

    def _on_subscriber_done(self, task: "asyncio.Future") -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Async subscriber for lifecycle event failed",
                exc_info=task.exception(),
            )

    async def drain(self) -> None:
        """Wait for scheduled coroutine subscribers to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
