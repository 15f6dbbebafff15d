"""
Helpers for code that persists through the shared pool.

Persistence is best effort: when the database is unavailable the operation is
skipped with a warning and the caller carries on with a default result.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .connection_pool import ManagedPool

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_if_available(
    manager: Any,
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    description: str = "database operation",
    default: Optional[T] = None,
) -> Optional[T]:
    """
    Run ``operation(pool, *args)`` if the database is available.

    Args:
        manager: The ConnectionLifecycleManager owning the pool
        operation: Coroutine function taking the pool as first argument
        *args: Extra positional arguments for the operation
        description: Human readable name used in the skip warning
        default: Value returned when the operation is skipped

    Returns:
        The operation's result, or ``default`` when no pool is available

    Example:
        >>> async def save_job(pool, job_id, state):
        ...     await pool.execute("UPDATE jobs SET state = $2 WHERE id = $1", job_id, state)
        >>> await run_if_available(manager, save_job, 42, "done", description="save job state")
    """
    pool: Optional[ManagedPool] = await manager.get_pool()
    if pool is None:
        logger.warning(f"Database unavailable, skipping {description}")
        return default
    return await operation(pool, *args)
