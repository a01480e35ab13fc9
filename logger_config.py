"""Centralized logging configuration for the reminder engine.

Components log to named files under LOG_DIR ('worker.log', 'dispatch.log',
'deletion.log', ...) and to the console. Several modules may share one file;
they share one rotating handler for it, so rotation happens once.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Dict

from config import settings

FORMAT = '[%(asctime)s] %(levelname)s %(name)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

NOISY_LOGGERS = ('uvicorn', 'uvicorn.access', 'fastapi', 'sqlalchemy', 'httpx', 'httpcore', 'mcp')

os.makedirs(settings.LOG_DIR, exist_ok=True)

_file_handlers: Dict[str, RotatingFileHandler] = {}
_console_handler = logging.StreamHandler()
_console_handler.setFormatter(logging.Formatter(FORMAT, datefmt=DATE_FORMAT))


def _file_handler(log_file: str) -> RotatingFileHandler:
    handler = _file_handlers.get(log_file)
    if handler is None:
        handler = RotatingFileHandler(
            os.path.join(settings.LOG_DIR, log_file),
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding='utf-8'
        )
        handler.setFormatter(logging.Formatter(FORMAT, datefmt=DATE_FORMAT))
        _file_handlers[log_file] = handler
    return handler


def setup_logger(name: str, log_file: str = 'engine.log') -> logging.Logger:
    """Get a component logger writing to LOG_DIR/log_file and the console.

    Args:
        name: Logger name (usually __name__)
        log_file: Log file name (e.g., 'worker.log', 'deletion.log')

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(settings.LOG_LEVEL.upper())
    logger.addHandler(_file_handler(log_file))
    logger.addHandler(_console_handler)
    logger.propagate = False
    return logger


for noisy in NOISY_LOGGERS:
    logging.getLogger(noisy).setLevel(logging.WARNING)
