"""
logging_config.py — Loguru setup for ReplyDesk

One backend for everything: Loguru sinks, with stdlib logging (uvicorn,
SQLAlchemy, httpx) bridged in so third-party records share the format.

Business Rules:
- Services log with `from loguru import logger`, never print() or getLogger()
- app_url on https means production: JSON lines on stdout
- Anything else is development: colored single-line records
- REPLYDESK_LOG_FILE (production only) adds a JSON file sink,
  rotated at 50 MB, kept 7 days
- Chatty libraries are held at WARNING

Called by: replydesk/main.py (lifespan startup)
Depends on: replydesk/config.py (log_level, app_url)
"""

import logging
import os
import sys

from loguru import logger

from .config import settings

DEV_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{message}"
)
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def setup_logging() -> None:
    """(Re)configure sinks from settings. Safe to call more than once."""
    logger.remove()

    level = settings.log_level.upper()
    production = settings.app_url.startswith("https://")

    if production:
        logger.add(sys.stdout, level=level, format="{message}", serialize=True)
        log_file = os.getenv("REPLYDESK_LOG_FILE")
        if log_file:
            logger.add(
                log_file,
                level=level,
                serialize=True,
                rotation="50 MB",
                retention="7 days",
                compression="gz",
            )
    else:
        logger.add(sys.stdout, level=level, format=DEV_FORMAT, colorize=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Logging ready (level={level}, {'json' if production else 'dev'} format)")


class InterceptHandler(logging.Handler):
    """stdlib logging.Handler that re-emits every record through Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so Loguru reports the real caller
        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())
