"""
Logging configuration

Sync code runs under `log.contextualize(trigger=..., dataset=...)` so every
line a run emits, including connector and storage lines, shows which trigger
started it and which dataset it was loading. Lines outside a run show "-".
"""
from loguru import logger
import sys
from adsync.config import get_settings

settings = get_settings()

CONTEXT_DEFAULTS = {"trigger": "-", "dataset": "-"}

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[trigger]}/{extra[dataset]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "trigger={extra[trigger]} dataset={extra[dataset]} | {name}:{function}:{line} - {message}"
)


def setup_logger():
    """Configure sinks; sync context fields default to "-" """
    logger.remove()
    logger.configure(extra=dict(CONTEXT_DEFAULTS))

    logger.add(
        sys.stdout,
        colorize=True,
        format=CONSOLE_FORMAT,
        level=settings.log_level
    )

    # Console only when no log directory is configured (tests, containers)
    if not settings.log_dir:
        return logger

    # Sync activity log
    logger.add(
        f"{settings.log_dir}/adsync_{{time:YYYY-MM-DD}}.log",
        format=FILE_FORMAT,
        rotation="00:00",
        retention="30 days",
        compression="zip",
        level="INFO"
    )

    # Failed runs and rejected reports
    logger.add(
        f"{settings.log_dir}/errors_{{time:YYYY-MM-DD}}.log",
        format=FILE_FORMAT,
        rotation="00:00",
        retention="90 days",
        level="ERROR"
    )

    return logger


log = setup_logger()
