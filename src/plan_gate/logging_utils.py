"""Logging helpers for gate runs.

Gate output is meant for CI logs: one line per event on stderr, optionally
mirrored to ``LOG_FILE`` so the verdict survives the job.
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

from plan_gate.config import load_settings

_logging_configured = False
_logging_lock = threading.Lock()

_logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    if isinstance(level, int):
        return level
    _logger.warning("Unknown log level %r, using INFO", name)
    return logging.INFO


def configure_logging(level: str | None = None) -> None:
    """Install stderr (and optional file) handlers. ``level`` overrides LOG_LEVEL."""
    global _logging_configured

    settings = load_settings()
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [stream_handler]

    log_file = settings.logging.file
    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", log_file, exc)
        else:
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

    logging.basicConfig(
        level=_resolve_level(level or settings.logging.level),
        handlers=handlers,
        force=True,
    )
    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    if not _logging_configured:
        with _logging_lock:
            if not _logging_configured:
                configure_logging()
    return logging.getLogger(name)
