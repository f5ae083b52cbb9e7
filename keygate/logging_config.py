"""Logging setup for the keygate process.

Application modules log through ``logging.getLogger(__name__)`` under the
``keygate`` namespace; request tracing and security events go through
structlog. ``configure_logging()`` is called once by the CLI before the
server starts.
"""

import logging
import sys
from typing import Literal

from keygate.settings import get_settings

# Libraries that are chatty at INFO and below
NOISY_LOGGERS = [
    "alembic",
    "alembic.runtime.migration",
    "asyncio",
    "httpcore",
    "httpx",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "testcontainers",
    "urllib3",
]

# Loggers that stay quieter than WARNING
NOISY_LOGGER_LEVELS = {
    "sqlalchemy.pool": logging.ERROR,
}


def suppress_noisy_loggers() -> None:
    """Raise third-party loggers to WARNING (or their listed level)."""
    for name in NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.setLevel(NOISY_LOGGER_LEVELS.get(name, logging.WARNING))
        noisy.handlers.clear()


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
) -> None:
    """Install a single stderr handler at the configured level.

    Args:
        level: Override log level (defaults to settings.log_level)
    """
    log_level = getattr(logging, level or get_settings().log_level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter("%(levelname)s | %(name)s | %(message)s"))

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()
    root.addHandler(handler)

    for name in ("keygate", "keygate.security"):
        logging.getLogger(name).setLevel(log_level)

    suppress_noisy_loggers()
