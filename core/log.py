from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from core.settings import LOGGING


ROOT_LOGGER = "offline_sync"


def ensure_logger(name: Optional[str] = None, *, path: Optional[Path] = None) -> logging.Logger:
    """Return ``offline_sync`` (or a child) with the rotating file handler attached once."""

    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        log_path = Path(path or LOGGING.path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_path,
            maxBytes=LOGGING.max_bytes,
            backupCount=LOGGING.backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOGGING.format))
        root.addHandler(handler)
        root.setLevel(getattr(logging, LOGGING.level.upper(), logging.INFO))
    if not name:
        return root
    return root.getChild(name)


__all__ = ["ROOT_LOGGER", "ensure_logger"]
