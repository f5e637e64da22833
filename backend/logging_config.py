"""Centralized logging configuration."""

import logging

from config import settings

# Third-party loggers that are chatty at INFO/DEBUG (SQL echo, HTTP wire logs)
QUIET_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpx",
    "httpcore",
    "urllib3",
    "plaid",
    "anthropic",
)


def setup_logging(level: str | None = None) -> None:
    """Configure root logging once per process.

    Records carry the thread name because batch syncs and background jobs
    run on worker threads (``batch-sync_*``, ``job_*``).

    Args:
        level: Overrides ``settings.LOG_LEVEL`` when given.
    """
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s  %(message)s",
        datefmt="%H:%M:%S",
        level=getattr(logging, (level or settings.LOG_LEVEL).upper()),
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
