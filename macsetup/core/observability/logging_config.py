"""
Logging configuration — one-time setup for the ``macsetup`` CLI.

Every module logs through ``logging.getLogger(__name__)``; this module
only decides where records go and how they look.

Console level, highest precedence first:
    --debug  >  --verbose  >  --quiet  >  MACSETUP_LOG_LEVEL  >  WARNING

``MACSETUP_LOG_FILE`` adds a size-rotated file log, at
``MACSETUP_LOG_FILE_LEVEL`` (defaults to the console level).
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LEVEL_ENV = "MACSETUP_LOG_LEVEL"
FILE_ENV = "MACSETUP_LOG_FILE"
FILE_LEVEL_ENV = "MACSETUP_LOG_FILE_LEVEL"

_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s %(message)s", "%H:%M:%S"),
    logging.WARNING: ("%(message)s", None),
}

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(process)d] %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"
_FILE_MAX_BYTES = 1_000_000
_FILE_BACKUPS = 3


def resolve_level(debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Console level name from CLI flags, then the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get(LEVEL_ENV) or "WARNING"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure the root logger for the whole process.

    Replaces any handlers installed by an earlier call, so invoking the
    CLI repeatedly in one process (tests) does not stack handlers.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional path of a rotating log file.
        log_file_level: Level for the file; defaults to ``level``.
    """
    console_level = _parse_level(level)
    fmt, datefmt = _console_format(console_level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=_FILE_MAX_BYTES, backupCount=_FILE_BACKUPS, encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        root.addHandler(file_handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)
    logging.raiseExceptions = False


def _console_format(level: int) -> tuple[str, str | None]:
    for threshold in (logging.DEBUG, logging.INFO):
        if level <= threshold:
            return _CONSOLE_FORMATS[threshold]
    return _CONSOLE_FORMATS[logging.WARNING]


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value; unknown names mean WARNING."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
