"""Logging configuration from LOG_LEVEL / LOG_FILE. Called once at app start-up."""
from __future__ import annotations

import logging
import os
import sys

from callreplay.config import Settings, get_settings

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: Settings | None = None, format: str = DEFAULT_FORMAT) -> logging.Logger:
    """
    Configure the root logger and return it.

    Console handler always; file handler too when LOG_FILE is set.
    Safe to call more than once: handlers are replaced, not stacked.
    """
    settings = settings or get_settings()
    level = getattr(logging, (settings.LOG_LEVEL or "INFO").upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = (settings.LOG_FILE or "").strip()
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(level=level, format=format, handlers=handlers, force=True)
    root = logging.getLogger()
    root.setLevel(level)
    return root
