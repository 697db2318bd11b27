"""Centralized logging configuration for dashcache.

Sets up standard Python logging with a console handler and an optional
size-rotated file handler.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Iterable, Optional, Union

DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 3

# Alert webhooks go through requests; its connection pool logs every request at DEBUG
NOISY_LOGGERS = ("urllib3", "filelock")


def resolve_level(level: Union[int, str]) -> int:
    """Accepts logging.INFO or 'INFO'; unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else DEFAULT_LOG_LEVEL


def _attach(root_logger: logging.Logger, handler: logging.Handler, level: int, formatter: logging.Formatter) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def quiet_loggers(names: Iterable[str] = NOISY_LOGGERS, level: int = logging.WARNING) -> None:
    for name in names:
        logging.getLogger(name).setLevel(level)


def setup_logging(
    log_level: Union[int, str] = DEFAULT_LOG_LEVEL,
    log_format: str = DEFAULT_LOG_FORMAT,
    log_file: Optional[str] = None,
) -> None:
    """Configures the root logger for the application.

    Replaces any handlers already on the root logger, so calling it again
    (e.g. after the configuration changed) does not duplicate output.

    Args:
        log_level: The minimum logging level (e.g., logging.DEBUG or 'DEBUG').
        log_format: The format string for log messages.
        log_file: Optional path of a log file, rotated at DEFAULT_MAX_BYTES.
    """
    level = resolve_level(log_level)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(log_format)
    _attach(root_logger, logging.StreamHandler(sys.stdout), level, formatter)

    if log_file:
        try:
            rotating = RotatingFileHandler(
                log_file, maxBytes=DEFAULT_MAX_BYTES, backupCount=DEFAULT_BACKUP_COUNT, encoding='utf-8'
            )
        except OSError as e:
            logging.error(f"Failed to set up file logging to {log_file}: {e}", exc_info=True)
        else:
            _attach(root_logger, rotating, level, formatter)
            logging.info(f"Logging to file: {log_file}")

    if level > logging.DEBUG:
        quiet_loggers()
    logging.debug(f"Logging configured. Level={logging.getLevelName(level)}")
