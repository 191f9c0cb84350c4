import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from app.platform.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _log_file_path() -> str:
    log_dir = settings.LOG_DIR or os.path.join(os.getcwd(), "logs")
    os.makedirs(log_dir, exist_ok=True)
    return os.path.join(log_dir, "tag_audit.log")


def get_logger(name: str, level: Optional[str] = None):
    """
    Creates a logger instance that writes to console AND a rotating file.

    The file lives in LOG_DIR (./logs by default); level defaults to LOG_LEVEL.
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    log_level = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    logger.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = RotatingFileHandler(_log_file_path(), maxBytes=10_000_000, backupCount=5)
    file_handler.setFormatter(formatter)
    file_handler.setLevel(log_level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger
