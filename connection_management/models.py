"""
Value objects describing connection attempts and pool state snapshots.
"""

from enum import Enum
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


class AttemptOutcome(str, Enum):
    """Result of a single connection attempt."""
    SUCCESS = "success"
    FAILURE = "failure"
    SHORT_CIRCUITED = "short_circuited"


@dataclass(frozen=True)
class ConnectionAttempt:
    """
    Record of one connection attempt.

    Only the most recent record is kept by the manager; it exists for logs
    and for the ``last_attempt`` field of the stats snapshot.
    """
    attempt_number: int
    timestamp: float
    outcome: AttemptOutcome
    error: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


@dataclass(frozen=True)
class PoolStats:
    """Point-in-time snapshot for health and metrics endpoints."""
    connected: bool
    circuit_open: bool
    circuit_state: str
    total_connections: int = 0
    idle_connections: int = 0
    waiting_clients: int = 0
    failure_count: int = 0
    registered_systems: List[str] = field(default_factory=list)
    last_attempt: Optional[ConnectionAttempt] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "circuit_open": self.circuit_open,
            "circuit_state": self.circuit_state,
            "total_connections": self.total_connections,
            "idle_connections": self.idle_connections,
            "waiting_clients": self.waiting_clients,
            "failure_count": self.failure_count,
            "registered_systems": list(self.registered_systems),
            "last_attempt": self.last_attempt.to_dict() if self.last_attempt else None,
        }
