"""Logging configuration"""
import logging
import os
import sys
from typing import Optional

ROOT_LOGGER = "matchscheduler"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# discord.py logs every gateway event at INFO
QUIET_LIBRARIES = ("discord", "urllib3")


def level_from_env(default: int = logging.INFO) -> int:
    """LOG_LEVEL as a logging level; unknown names fall back to the default"""
    name = os.getenv("LOG_LEVEL", "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def _attach_stdout_handler(logger: logging.Logger):
    if logger.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    logger.addHandler(handler)


def setup_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Return a logger for a module

    Module loggers under the package carry no handler of their own; they
    propagate to the package logger, which owns the single stdout handler
    and the level. Any other name (e.g. __main__) gets its own handler.

    Args:
        name: Logger name, usually __name__
        level: Overrides LOG_LEVEL for the package (or the standalone logger)
    """
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        target = logging.getLogger(ROOT_LOGGER)
    else:
        target = logging.getLogger(name)

    if not target.handlers or level is not None:
        target.setLevel(level if level is not None else level_from_env())
    _attach_stdout_handler(target)
    return logging.getLogger(name)


def quiet_libraries(level: int = logging.WARNING):
    """Raise third-party loggers to `level` unless LOG_LEVEL asks for DEBUG"""
    if level_from_env() <= logging.DEBUG:
        return
    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(level)
