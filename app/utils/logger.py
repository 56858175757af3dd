"""
Process logging (console and daily files) through loguru.

This is operator output only; the per-run sync audit trail lives in the
database (see app.services.sync_logger).
"""
import sys

from loguru import logger

from app.config import get_settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logger():
    settings = get_settings()
    logger.remove()

    logger.add(sys.stdout, colorize=True, format=CONSOLE_FORMAT, level=settings.log_level)

    # Empty log_dir means console only (tests, one-off scripts)
    if not settings.log_dir:
        return logger

    logger.add(
        f"{settings.log_dir}/awb_sync_{{time:YYYY-MM-DD}}.log",
        rotation="00:00",
        retention="30 days",
        compression="zip",
        level="INFO",
        enqueue=True,
    )
    logger.add(
        f"{settings.log_dir}/awb_sync_errors_{{time:YYYY-MM-DD}}.log",
        rotation="00:00",
        retention="90 days",
        level="ERROR",
        enqueue=True,
    )
    return logger


log = setup_logger()
