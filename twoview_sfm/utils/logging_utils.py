"""
Logger setup shared by the CLI entry points.
"""

from __future__ import annotations

import logging
import os
from typing import Optional


def setup_logger(
    name: str = "twoview_sfm",
    level: int = logging.INFO,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the package logger with a console handler and an optional file handler.

    Args:
        name: Logger name; module loggers below it inherit the handlers.
        level: Logging level for the logger and its handlers.
        log_file: Optional path of a log file to append to.

    Returns:
        The configured logger.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()

    fmt = logging.Formatter(
        "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        fh = logging.FileHandler(log_file)
        fh.setLevel(level)
        fh.setFormatter(fmt)
        logger.addHandler(fh)
    return logger


__all__ = ["setup_logger"]
