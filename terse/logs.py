"""Diagnostic logging setup.

stdout carries the hook response and the command output, so diagnostics go
to `<terse home>/terse.log` only. When logging is disabled (or the file
cannot be opened) a NullHandler keeps the `terse` loggers quiet.
"""

import logging
from pathlib import Path
from typing import Optional

from terse.config import TerseConfig, terse_home

__all__ = ["LOG_FILE_NAME", "LOG_FORMAT", "configure_logging", "log_file_path"]

LOG_FILE_NAME = "terse.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def log_file_path() -> Path:
    return terse_home() / LOG_FILE_NAME


def _reset_handlers(root: logging.Logger) -> None:
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


def configure_logging(config: TerseConfig, path: Optional[Path] = None) -> logging.Handler:
    """Attach the file handler (or a NullHandler) to the `terse` logger.

    Args:
        config: Effective configuration (`logging.enabled`, `logging.level`).
        path: Log file override (default `<terse home>/terse.log`).

    Returns:
        The handler that was installed.
    """
    root = logging.getLogger("terse")
    _reset_handlers(root)
    root.propagate = False

    handler: logging.Handler = logging.NullHandler()
    if config.logging.enabled:
        target = path or log_file_path()
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(target, encoding="utf-8")
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
        except OSError:
            handler = logging.NullHandler()

    root.setLevel(_LEVELS.get(config.logging.level.strip().lower(), logging.INFO))
    root.addHandler(handler)
    return handler
