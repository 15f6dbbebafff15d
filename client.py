"""
PgPool Ops Client

This module provides the process-level entry point: it loads settings,
configures logging, owns the ConnectionLifecycleManager and hands it to the
subsystems that persist through the shared pool.
"""

from typing import Optional, Union
import logging
from pathlib import Path

from config import PoolOpsSettings, load_settings
from connection_management import ConnectionLifecycleManager, ManagedPool, LifecycleEventBus
from pgpool_ops_exceptions import ConfigurationError
from utils import configure_logging

# Logger setup
logger = logging.getLogger(__name__)


class PoolOpsClient:
    """
    Main client interface for the shared PostgreSQL pool.

    Construct once at process start, pass ``register(name)`` results to the
    subsystems that need the database, and close it on shutdown.

    Example:
        >>> async with PoolOpsClient("config.yaml") as client:
        ...     jobs = JobStore(client.register("job-store"))
        ...     await jobs.run()
    """

    def __init__(
        self,
        config: Optional[Union[PoolOpsSettings, str, Path]] = None,
        event_bus: Optional[LifecycleEventBus] = None,
        setup_logging: bool = True,
    ):
        """
        Initialize the client without connecting.

        Args:
            config: Either a PoolOpsSettings object or a path to a config YAML file.
                   If None, settings come from the environment and defaults.
            event_bus: Bus for lifecycle events; a fresh one by default
            setup_logging: Apply the monitoring settings to the root logger

        Raises:
            ConfigurationError: If the configuration type is not supported
        """
        if config is None:
            self.config = load_settings()
        elif isinstance(config, (str, Path)):
            self.config = load_settings(str(config))
        elif isinstance(config, PoolOpsSettings):
            self.config = config
        else:
            raise ConfigurationError("Invalid configuration type. Expected PoolOpsSettings, str, Path, or None.")

        if setup_logging:
            configure_logging(self.config.monitoring)

        self.manager = ConnectionLifecycleManager(self.config, event_bus=event_bus)
        logger.info("PoolOpsClient initialized")

    @property
    def events(self) -> LifecycleEventBus:
        return self.manager.events

    async def start(self) -> Optional[ManagedPool]:
        """
        Establish the pool.

        Returns None when the database is unavailable; the process keeps
        running and later ``get_pool()`` calls retry.
        """
        pool = await self.manager.initialize()
        if pool is None:
            logger.warning("Starting without database; persistence is disabled until it recovers")
        return pool

    def register(self, name: str) -> ConnectionLifecycleManager:
        """Record a dependent subsystem and return the manager to inject into it."""
        self.manager.register_system(name)
        return self.manager

    async def close(self) -> None:
        """Close the client and release all resources"""
        await self.manager.shutdown()
        logger.info("PoolOpsClient closed")

    async def __aenter__(self) -> "PoolOpsClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
