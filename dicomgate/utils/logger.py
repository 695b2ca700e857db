"""
Logging for dicomgate.

Everything goes through loguru: the gateway's own messages and, via
``InterceptHandler``, the standard library loggers of the server, the
database layer and the DIMSE stack.
"""

import inspect
import logging
import sys

from loguru import logger as _logger

from ..settings import Settings, settings


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding loguru level if it exists
        level: str | int
        try:
            level = _logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where the logged message originated
        frame, depth = inspect.currentframe(), 0
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        _logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


# Standard library loggers routed into loguru, with the minimum level each keeps
INTERCEPTED_LOGGERS = {
    "uvicorn": logging.NOTSET,
    "uvicorn.error": logging.NOTSET,
    "fastapi": logging.NOTSET,
    "sqlalchemy": logging.WARNING,
    # pynetdicom logs every PDU at DEBUG
    "pynetdicom": logging.WARNING,
}

DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logging(config: Settings) -> None:
    """
    Configure loguru sinks from ``config``.

    The console always receives logs. With ``log_to_file`` a daily file
    ``dicomgate_<date>.log`` is written to ``log_dir``, rotated by
    ``log_rotation`` and compressed, and files older than ``log_retention``
    are removed.

    Args:
        config: Application settings
    """
    log_format = config.log_format or DEFAULT_FORMAT

    _logger.remove()
    _logger.add(sys.stderr, level=config.log_level, format=log_format, colorize=True)

    if config.log_to_file:
        log_dir = config.get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        _logger.add(
            str(log_dir / "dicomgate_{time:YYYY-MM-DD}.log"),
            level=config.log_level,
            format=log_format,
            rotation=config.log_rotation,
            retention=config.log_retention,
            compression="zip",
            enqueue=True,
            backtrace=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, level in INTERCEPTED_LOGGERS.items():
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [InterceptHandler()]
        stdlib_logger.propagate = False
        stdlib_logger.setLevel(level)


setup_logging(settings)

logger = _logger
