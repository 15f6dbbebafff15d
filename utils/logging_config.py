"""
Logging configuration for pgpool_ops.

Every module logs through ``logging.getLogger(__name__)``; this helper only
decides level and format for the process and keeps the driver quiet.
"""

import logging
from typing import Optional

from config import MonitoringSettings


def configure_logging(settings: Optional[MonitoringSettings] = None, force: bool = False) -> None:
    """
    Apply the configured level and format to the root logger.

    Args:
        settings: Monitoring settings. If None, defaults are used.
        force: Replace handlers that are already installed on the root logger.
    """
    settings = settings or MonitoringSettings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format=settings.log_format,
        force=force,
    )

    # asyncpg logs every connection at DEBUG, which drowns lifecycle messages
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
