"""Exceptions raised by the offline sync layer."""
from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for sync queue failures."""


class StorageError(SyncError):
    """The key-value store could not be read or written."""


class NetworkError(SyncError):
    """Transport-level failure: DNS, refused connection, reset, timeout."""


class HttpError(SyncError):
    """The server answered with a non-2xx status."""

    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        self.message = message or "Unknown error"
        super().__init__(f"HTTP {status}: {self.message}")


__all__ = ["SyncError", "StorageError", "NetworkError", "HttpError"]
