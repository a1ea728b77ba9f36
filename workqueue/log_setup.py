"""
Console logging setup for work queue processes.
"""

import logging
import os
import sys
from typing import Optional


def create_formatter(
    app_name: Optional[str] = None,
    app_env: Optional[str] = None,
) -> logging.Formatter:
    """
    Create a formatter prefixed with the app name and environment.

    Example output:
        2026-01-01 12:00:00,000 - [workqueue/dev] workqueue.repository - INFO - ...
    """
    context_parts = [part for part in (app_name, app_env) if part]
    context_prefix = f"[{'/'.join(context_parts)}] " if context_parts else ""
    return logging.Formatter(
        f"%(asctime)s - {context_prefix}%(name)s - %(levelname)s - %(message)s"
    )


def setup_logging(
    level: int = logging.INFO,
    app_name: Optional[str] = "workqueue",
    app_env: Optional[str] = None,
    force_setup: bool = False,
) -> None:
    """
    Configure the root logger with a stdout handler.

    Calling it again only adjusts the level unless force_setup is set.

    Args:
        level: Logging level
        app_name: Name shown in the log prefix
        app_env: Environment shown in the log prefix, defaults to APP_ENV
        force_setup: Replace existing root handlers
    """
    root_logger = logging.getLogger()
    if root_logger.handlers and not force_setup:
        root_logger.setLevel(level)
        return

    if force_setup:
        root_logger.handlers.clear()

    if app_env is None:
        app_env = os.getenv("APP_ENV")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(create_formatter(app_name=app_name, app_env=app_env))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # amqpstorm is chatty at DEBUG
    logging.getLogger("amqpstorm").setLevel(logging.WARNING)
