"""
Health report for the shared PostgreSQL pool.

Combines the manager's stats snapshot, circuit breaker metrics and pool usage
counters into one dict suitable for a health or metrics endpoint.
"""

import time
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNAVAILABLE = "unavailable"


def health_status(stats) -> str:
    """
    Classify a PoolStats snapshot.

    - unavailable: no connected pool, or the circuit is open
    - degraded: connected but saturated (no idle connection and callers waiting),
      or the circuit is still testing recovery
    - healthy: everything else
    """
    if not stats.connected or stats.circuit_open:
        return UNAVAILABLE
    if stats.circuit_state != "closed":
        return DEGRADED
    if stats.idle_connections == 0 and stats.waiting_clients > 0:
        return DEGRADED
    return HEALTHY


def build_health_report(manager) -> Dict[str, Any]:
    """
    Build a health report for a ConnectionLifecycleManager.

    Never touches the network and never raises for an unavailable database.

    Returns:
        Dict with keys status, timestamp, target, stats, circuit_breaker and pool
    """
    stats = manager.get_stats()
    status = health_status(stats)

    pool = manager.current_pool
    report = {
        "status": status,
        "timestamp": time.time(),
        "target": manager.settings.connection.describe_target(),
        "stats": stats.to_dict(),
        "circuit_breaker": manager.circuit_breaker.get_metrics(),
        "pool": pool.get_metrics() if pool is not None else None,
    }

    if status != HEALTHY:
        logger.debug(f"Health report for '{manager.name}': {status}")
    return report
