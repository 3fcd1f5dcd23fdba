"""JSON log output for the idhub service."""

import logging
from typing import Union

from pythonjsonlogger import jsonlogger

FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'


def setup_logger(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Send root logger output to stderr as one JSON object per line."""
    logger = logging.getLogger()
    for handler in logger.handlers:
        if isinstance(handler.formatter, jsonlogger.JsonFormatter):
            logger.setLevel(_level(level))
            return logger
    log_handler = logging.StreamHandler()
    formatter = jsonlogger.JsonFormatter(
        FORMAT,
        rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
    )
    log_handler.setFormatter(formatter)
    logger.addHandler(log_handler)
    logger.setLevel(_level(level))
    return logger


def _level(level: Union[int, str]) -> int:
    if isinstance(level, str) and level.isdigit():
        return int(level)
    if isinstance(level, str):
        return logging.getLevelName(level.upper())
    return level
