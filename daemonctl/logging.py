"""Diagnostics for a one-shot client whose stdout carries the server response."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from .constants import APP_NAME
from .errors import ConfigError

CONSOLE_FORMAT = f"{APP_NAME}[%(process)d]: %(levelname)s: %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _open_log_file(log_path: Path) -> logging.FileHandler:
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            f"could not open log file {log_path}: {exc.strerror or exc}"
        ) from exc
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def configure_logging(level: str = "WARNING", *, log_path: Optional[Path] = None) -> None:
    """Route diagnostics to stderr and, optionally, to a log file.

    The log file is opened before the existing handlers are replaced, so a
    bad ``log_path`` raises :class:`ConfigError` and leaves logging as it was.
    """

    file_handler = _open_log_file(log_path) if log_path else None

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    root.addHandler(console)
    if file_handler is not None:
        root.addHandler(file_handler)
    root.setLevel(getattr(logging, level.upper(), logging.WARNING))
    logging.captureWarnings(True)
