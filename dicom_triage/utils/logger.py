"""
Logging setup for DICOM Triage.

Every module logs through the loguru ``logger`` exported here. Records from
libraries that use the standard logging module (uvicorn, SQLAlchemy) are
forwarded into the same sinks.
"""

import logging
import sys

from loguru import logger

from ..settings import Settings, settings

DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

FORWARDED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "sqlalchemy")


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru, keeping their origin."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        origin = {"name": record.name, "function": record.funcName, "line": record.lineno}
        logger.patch(lambda r: r.update(origin)).opt(exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(config: Settings) -> None:
    """Replace loguru's sinks with the ones described by ``config``.

    Args:
        config: Settings providing level, format and the optional file sink
    """
    fmt = config.log_format or DEFAULT_FORMAT
    logger.remove()
    logger.add(sys.stderr, level=config.log_level, format=fmt, colorize=True)

    if config.log_to_file:
        log_dir = config.get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "dicom_triage.log",
            level=config.log_level,
            format=fmt,
            rotation=config.log_rotation,
            retention=config.log_retention,
            compression="zip",
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in FORWARDED_LOGGERS:
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [InterceptHandler()]
        stdlib_logger.propagate = False


setup_logging(settings)
