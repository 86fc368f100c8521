"""Queued mutating API call awaiting replay."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Union


class SyncMethod(str, Enum):
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"

    @property
    def has_body(self) -> bool:
        return self is not SyncMethod.DELETE

    @classmethod
    def parse(cls, value: Union["SyncMethod", str]) -> "SyncMethod":
        if isinstance(value, SyncMethod):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unsupported method: {value}") from None


def new_operation_id(timestamp_ms: int) -> str:
    return f"{timestamp_ms}-{uuid.uuid4().hex[:12]}"


@dataclass
class SyncOperation:
    id: str
    endpoint: str
    method: SyncMethod
    data: Any
    timestamp: int
    retry_count: int = 0
    synced: bool = False

    def abandoned(self, max_retry_attempts: int) -> bool:
        """True when the operation was completed by giving up rather than succeeding."""

        return self.synced and self.retry_count > max_retry_attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "endpoint": self.endpoint,
            "method": self.method.value,
            "data": self.data,
            "timestamp": self.timestamp,
            "retryCount": self.retry_count,
            "synced": self.synced,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SyncOperation":
        return cls(
            id=str(payload["id"]),
            endpoint=str(payload["endpoint"]),
            method=SyncMethod.parse(payload["method"]),
            data=payload.get("data"),
            timestamp=int(payload.get("timestamp") or 0),
            retry_count=int(payload.get("retryCount") or 0),
            synced=bool(payload.get("synced", False)),
        )


__all__ = ["SyncMethod", "SyncOperation", "new_operation_id"]
