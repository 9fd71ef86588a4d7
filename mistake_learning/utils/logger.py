import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from mistake_learning.config import Config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3


def _file_handler(path: str) -> logging.Handler:
    """Rotating handler for the shared log file, or a NullHandler if unwritable."""
    log_dir = os.path.dirname(path)
    try:
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS
        )
    except OSError:
        return logging.NullHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logger(name: str, log_file: Optional[str] = None) -> logging.Logger:
    """
    Return the named logger, attaching the rotating file handler on first use.

    Nothing is written to stdout; the CLI renders its own output with rich.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO))
    logger.addHandler(_file_handler(log_file or Config.LOG_FILE))
    return logger
