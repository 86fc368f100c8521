from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class CacheItem:
    data: Any
    timestamp: int
    expires_at: Optional[int] = None

    def expired(self, now: int) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"data": self.data, "timestamp": self.timestamp}
        if self.expires_at is not None:
            payload["expiresAt"] = self.expires_at
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CacheItem":
        expires_at = payload.get("expiresAt")
        return cls(
            data=payload.get("data"),
            timestamp=int(payload.get("timestamp") or 0),
            expires_at=int(expires_at) if expires_at is not None else None,
        )


__all__ = ["CacheItem"]
