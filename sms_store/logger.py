"""Logging setup for sms-store.

Every module logs through `structlog.get_logger(__name__)` with key/value
context (partition, offset, user_id, error, ...). `setup_logging()` is called
once from the FastAPI startup hook and routes those events through the
standard `logging` module, so uvicorn's own log lines and ours end up in the
same stream with the same level.

The pymongo driver logs every command and heartbeat at DEBUG; it is held at
WARNING so LOG_LEVEL=DEBUG stays readable.
"""

from __future__ import annotations

import logging

import structlog

QUIET_LIBRARIES = ("pymongo",)


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: An int level or a name such as "DEBUG". Unknown names fall
            back to INFO.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format="%(message)s")
    logging.getLogger().setLevel(level)
    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
