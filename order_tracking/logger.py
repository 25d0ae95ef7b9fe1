"""Logger factory for the tracker."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

ROOT_LOGGER = "order_tracking"
LOG_FILE = "order_tracking.log"
FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None) -> logging.Logger:
    """Attach handlers to the package root logger once."""

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    fmt = logging.Formatter(FORMAT)

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        root.addHandler(stream)

    if log_dir and not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(
            os.path.join(log_dir, LOG_FILE),
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=5,
        )
        handler.setFormatter(fmt)
        root.addHandler(handler)

    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


__all__ = ["configure_logging", "get_logger"]
