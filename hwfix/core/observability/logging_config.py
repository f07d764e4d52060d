"""
Logging configuration — one setup call from main.py for the whole process.

Modules log through ``logging.getLogger(__name__)`` and never configure
handlers themselves.

Console level, highest precedence first:
    --debug / --verbose / --quiet  >  HWFIX_LOG_LEVEL  >  WARNING

HWFIX_LOG_FILE adds a file handler (HWFIX_LOG_FILE_LEVEL, default: the
console level).
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Console prefixes line up with the CLI's own "ERROR:" / "WARN:" lines
_PREFIXES = {
    logging.CRITICAL: "ERROR: ",
    logging.ERROR: "ERROR: ",
    logging.WARNING: "WARN: ",
}

_FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s:%(lineno)d: %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


class ConsoleFormatter(logging.Formatter):
    """Short records for a terminal.

    WARNING and above get the CLI prefix. INFO adds a timestamp and the
    module path without the ``hwfix.`` prefix. DEBUG also shows the line.
    """

    def __init__(self, level: int):
        super().__init__(datefmt="%H:%M:%S")
        self._level = level

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if record.exc_info and self._level <= logging.DEBUG:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        if self._level > logging.INFO:
            return _PREFIXES.get(record.levelno, "") + message

        name = record.name.removeprefix("hwfix.")
        stamp = self.formatTime(record, self.datefmt)
        if self._level <= logging.DEBUG:
            return f"{stamp} {record.levelname:<7} {name}:{record.lineno}: {message}"
        return f"{stamp} [{name}] {_PREFIXES.get(record.levelno, '')}{message}"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root logger's handlers.

    Args:
        level: Console level name.
        log_file: Optional log file path; parent directories are created.
        log_file_level: Level for the file. Defaults to ``level``.
    """
    console_level = _parse_level(level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(ConsoleFormatter(console_level))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        root.addHandler(handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)
    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value. Unknown or empty names mean WARNING."""
    numeric = getattr(logging, (level or "").upper(), None) if level else None
    return numeric if isinstance(numeric, int) else logging.WARNING
