"""
Centralized logging configuration for the prize pool service
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from . import config


def setup_logging(app_name: str = "prizepool", log_level: Optional[str] = None,
                  log_file: Optional[str] = None) -> logging.Logger:
    """
    Setup logging with a console handler and an optional rotating file handler.

    Args:
        app_name: Logger namespace to configure (module loggers live under it)
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL (defaults to LOG_LEVEL)
        log_file: Optional path to a log file (defaults to LOG_FILE)

    Returns:
        logging.Logger: The configured logger
    """
    log_level = (log_level or config.LOG_LEVEL).upper()
    log_file = log_file or config.LOG_FILE
    numeric_level = getattr(logging, log_level, logging.INFO)

    logger = logging.getLogger(app_name)
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        fmt="[%(asctime)s] %(levelname)-8s [%(name)s.%(funcName)s:%(lineno)d] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    simple_formatter = logging.Formatter(
        fmt="[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(simple_formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        # 10 MB per file, 5 backups
        file_handler = RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(detailed_formatter)
        logger.addHandler(file_handler)
        logger.info(f"File logging enabled: {log_file}")

    logger.propagate = False
    return logger
