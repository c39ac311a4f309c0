"""Application-wide logging configuration."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from kine import app_paths

_LOG_PATH: Optional[Path] = None

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: int = logging.INFO, log_path: Optional[Path] = None) -> Path:
    """Attach a single file handler to the root logger and return its path.

    ``log_path`` defaults to ``kine.log`` in the application log directory.
    Repeated calls without ``log_path`` keep the first configuration.
    """

    global _LOG_PATH

    if _LOG_PATH is not None and log_path is None:
        return _LOG_PATH

    target = log_path or app_paths.logs_path("kine.log")
    target.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.setLevel(level)
    else:
        root_logger.setLevel(min(root_logger.level, level))

    already_configured = any(
        isinstance(handler, logging.FileHandler)
        and getattr(handler, "baseFilename", None) == str(target)
        for handler in root_logger.handlers
    )
    if not already_configured:
        file_handler = logging.FileHandler(target, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(file_handler)

    _LOG_PATH = target
    root_logger.debug("Logging configured. Writing to %s", target)
    return target


__all__ = ["configure_logging", "LOG_FORMAT"]
