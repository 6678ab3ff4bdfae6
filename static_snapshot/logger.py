"""Logging for the snapshot pipeline: console plus a rotating snapshot.log."""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Union

LOGGER_NAME = "static_snapshot"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# httpx logs every request at INFO; batches would drown the snapshot log
NOISY_LOGGERS = ("httpx", "httpcore")


def _level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def setup_logger(log_dir: str = "logs", level: Union[int, str] = logging.INFO,
                 filename: str = "snapshot.log", max_bytes: int = 10 * 1024 * 1024,
                 backup_count: int = 5) -> logging.Logger:
    """Attach handlers once; later calls only adjust the level."""
    level = _level(level)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    os.makedirs(log_dir, exist_ok=True)
    fmt = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers = [
        logging.StreamHandler(),
        RotatingFileHandler(os.path.join(log_dir, filename),
                            maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"),
    ]
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    return logger
