"""Process-wide log output: one line per record, to a file or the console."""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime

LOGGER_NAME = "dufs"

_LEVEL_NAMES = {
    logging.CRITICAL: "ERROR",
    logging.ERROR: "ERROR",
    logging.WARNING: "WARN",
    logging.INFO: "INFO",
    logging.DEBUG: "DEBUG",
}


class LineFormatter(logging.Formatter):
    """Formats records as `<rfc3339 local time> <LEVEL> - <message>`."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="seconds")
        if stamp.endswith("+00:00"):
            stamp = stamp[: -len("+00:00")] + "Z"
        level = _LEVEL_NAMES.get(record.levelno, record.levelname)
        text = f"{stamp} {level} - {record.getMessage()}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def _below_warning(record: logging.LogRecord) -> bool:
    return record.levelno < logging.WARNING


def init(log_file: str | os.PathLike[str] | None = None) -> logging.Logger:
    """Configure the package logger at INFO level and return it.

    With a file, records are appended to it; otherwise warnings and errors go
    to stderr and the rest to stdout. Raises OSError if the file cannot be opened.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler]
    if log_file is not None:
        try:
            handlers = [logging.FileHandler(log_file, mode="a", encoding="utf-8")]
        except OSError as exc:
            raise OSError(f"Failed to open the log file at '{os.fspath(log_file)}'") from exc
    else:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.addFilter(_below_warning)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        handlers = [stdout_handler, stderr_handler]

    formatter = LineFormatter()
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger