# src/logging/handlers.py — v1
"""Rotating file handlers for the optional scan log file."""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path

_INTERVALS = {"hourly": "H", "daily": "midnight", "weekly": "W0"}
_UNITS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}


def parse_size(size: str) -> int:
    """``'10MB'`` -> bytes. Units: B, KB, MB, GB (case-insensitive)."""
    match = re.fullmatch(r"(\d+)\s*(B|KB|MB|GB)", size.strip(), re.IGNORECASE)
    if not match:
        raise ValueError(f"Invalid size {size!r}, expected e.g. '10MB'")
    return int(match.group(1)) * _UNITS[match.group(2).upper()]


def create_rotating_handler(
    log_file: str | Path,
    rotation: str = "10MB",
    retention: int = 30,
) -> logging.Handler:
    """Size-based handler for ``rotation`` like ``10MB``; time-based for
    ``hourly``, ``daily`` or ``weekly``. ``retention`` is the backup count.
    """
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    interval = _INTERVALS.get(rotation.strip().lower())
    if interval is not None:
        return TimedRotatingFileHandler(
            filename=str(path), when=interval, backupCount=retention, encoding="utf-8", utc=True,
        )
    return RotatingFileHandler(
        filename=str(path),
        maxBytes=parse_size(rotation),
        backupCount=retention,
        encoding="utf-8",
    )
