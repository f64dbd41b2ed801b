"""
Logging for meshkmeans.

Every module logs through `logging.getLogger(__name__)`, so all records end up
under the `meshkmeans` logger configured here. A K-Means run logs its start,
termination and chosen k at INFO, per-iteration movement at DEBUG, and
reseeding, unreachable faces and k clipping at WARNING.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union

PACKAGE_LOGGER = "meshkmeans"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATEFMT = '%H:%M:%S'

# numba reports every compilation pass at DEBUG
NOISY_LOGGERS = ("numba", "matplotlib")


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown logging level '{level}'.")
    return resolved


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Union[str, os.PathLike]] = None,
    quiet_libraries: bool = True,
) -> logging.Logger:
    """
    Routes the records of every meshkmeans module to stdout and, optionally, a file.

    Previous handlers of the package logger are dropped, so repeated calls
    never duplicate records.

    Args:
        level: Logging level, as a number or a name such as "debug".
        log_file: Optional path of a log file, overwritten on each call.
        quiet_libraries: Keep numba and matplotlib at WARNING while the
            package logs at a lower level.

    Returns:
        The package logger.

    Raises:
        ValueError: `level` is not a logging level name.
    """
    level = _resolve_level(level)
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w', encoding='utf-8'))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if quiet_libraries:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logger.info(f"Logging initialized at {logging.getLevelName(level)}.")
    return logger
