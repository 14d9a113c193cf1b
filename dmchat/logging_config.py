"""Logging configuration for the chat client."""
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Attach a console handler, plus a rotating file handler when ``log_file`` is given."""
    logger = logging.getLogger("dmchat")
    logger.setLevel(level.upper())
    if not logger.handlers:
        formatter = logging.Formatter(FORMAT, datefmt=DATE_FORMAT)
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        logger.addHandler(stream)
        if log_file:
            handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3)
            handler.setFormatter(formatter)
            logger.addHandler(handler)
    return logger
