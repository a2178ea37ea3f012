"""Logging setup for the agent.

Model output streams to stdout, so diagnostics go to a rotating log file and,
at warning level and above, to stderr.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["setup_logging", "reset_logging", "get_logger", "get_log_path"]

_LOG_DIR_ENV = "ARBITER_LOG_DIR"
_LOG_FILENAME = "arbiter.log"
_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_CONSOLE_FORMAT = "[%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
# Transport libraries log every request at DEBUG.
_THIRD_PARTY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")

_log_path: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the file (and optionally stderr) handlers on the root logger.

    Args:
        level: Root level; the console only shows everything at DEBUG.
        log_dir: Directory for ``arbiter.log``. Defaults to ``$ARBITER_LOG_DIR``
            or ``~/.arbiter/logs``.
        console: Also log to stderr.
        max_bytes: Rotation size of the log file.
        backup_count: Rotated files to keep.
        force: Reconfigure even if logging was already set up.

    Returns:
        Path of the active log file.
    """

    global _log_path
    if _log_path is not None and not force:
        return _log_path

    directory = _log_directory(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / _LOG_FILENAME

    handlers = [_file_handler(path, level, max_bytes=max_bytes, backup_count=backup_count)]
    if console:
        handlers.append(_console_handler(level))
    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)

    library_level = max(level, logging.WARNING)
    for name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    _log_path = path
    return path


def reset_logging() -> None:
    """Forget the configured log file so the next setup call starts fresh."""

    global _log_path
    _log_path = None


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the active log file, or None before :func:`setup_logging`."""

    return _log_path


def _log_directory(log_dir: Path | str | None) -> Path:
    if log_dir:
        return Path(log_dir).expanduser()
    configured = os.environ.get(_LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".arbiter" / "logs"


def _file_handler(path: Path, level: int, *, max_bytes: int, backup_count: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level if level <= logging.DEBUG else logging.WARNING)
    handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    return handler
