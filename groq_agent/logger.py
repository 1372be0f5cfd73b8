"""Logging helpers for groq-agent."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Union

__all__ = ["setup_logger", "get_logger", "default_log_file"]

CONSOLE_FORMAT = "[%(levelname).1s] %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

_QUIET_LIBRARIES = ("litellm", "LiteLLM", "httpx", "httpcore", "urllib3", "primp")

LogTarget = Union[str, Path, bool, None]


def default_log_file() -> Path:
    return Path.home() / ".groq" / "logs" / "agent.log"


def setup_logger(
    name: str = "groq_agent",
    verbose: bool = False,
    log_file: LogTarget = None,
    console: bool = True,
) -> logging.Logger:
    """Configure the package logger and return it.

    ``verbose`` lowers the threshold from WARNING to DEBUG. ``log_file`` is
    ``None``/``True`` for the rotating file under ``~/.groq/logs``, ``False``
    for no file, or an explicit path. ``console=False`` keeps records off
    stderr, which the interactive REPL uses so log lines do not tear the
    live output. Calling it again replaces the previous handlers.
    """
    logger = logging.getLogger(name)
    level = logging.DEBUG if verbose else logging.WARNING

    while logger.handlers:
        old = logger.handlers[0]
        logger.removeHandler(old)
        old.close()
    logger.setLevel(level)
    logger.propagate = False

    if console:
        _attach(logger, logging.StreamHandler(), level, CONSOLE_FORMAT)

    path = _log_path(log_file)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES,
                                       backupCount=LOG_BACKUP_COUNT, encoding="utf-8")
        _attach(logger, rotating, level, FILE_FORMAT)

    for library in _QUIET_LIBRARIES:
        logging.getLogger(library).setLevel(logging.WARNING)
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def _attach(logger: logging.Logger, handler: logging.Handler, level: int, fmt: str) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(handler)


def _log_path(log_file: LogTarget) -> Path | None:
    if log_file is False:
        return None
    if log_file is None or log_file is True:
        return default_log_file()
    return Path(log_file).expanduser()
