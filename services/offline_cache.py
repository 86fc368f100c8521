"""TTL cache for API responses kept in the key-value store."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from core.errors import StorageError
from core.settings import CACHE, STORAGE_KEYS
from datetime_utils import now_ms
from models.cache_item import CacheItem
from storage.kv_store import KeyValueStore


logger = logging.getLogger("offline_sync.cache")


@dataclass
class MaintenanceReport:
    items_removed: int = 0
    bytes_freed: int = 0
    items_kept: int = 0


@dataclass
class CacheSummary:
    total_items: int = 0
    total_size_bytes: int = 0
    oldest_item: Optional[int] = None
    newest_item: Optional[int] = None
    endpoints: List[str] = field(default_factory=list)


def _size(raw: str) -> int:
    return len(raw.encode("utf-8"))


DEFAULT_CACHE_PRIORITY = 50

# First match wins; every fragment must appear in the endpoint.
_PRIORITY_RULES = (
    (("/api/users/", "/profile"), 100),
    (("/api/users/", "/appointments"), 90),
    (("/api/services",), 80),
    (("/api/salons",), 70),
    (("/api/config",), 95),
)


def cache_priority(endpoint: str) -> int:
    """Rank how important it is to keep ``endpoint`` cached (higher is more important)."""

    for fragments, priority in _PRIORITY_RULES:
        if all(fragment in endpoint for fragment in fragments):
            return priority
    return DEFAULT_CACHE_PRIORITY


class OfflineCache:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        prefix: str = STORAGE_KEYS.cache_prefix,
        default_ttl_ms: int = CACHE.default_ttl_ms,
    ) -> None:
        self.store = store
        self.prefix = prefix
        self.default_ttl_ms = default_ttl_ms

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def _cache_keys(self) -> List[str]:
        return [key for key in await self.store.keys() if key.startswith(self.prefix)]

    # ----- single items -----
    async def cache_data(self, key: str, data: Any, ttl_ms: Optional[int] = None) -> None:
        """Store ``data``; a non-positive ``ttl_ms`` keeps it until removed."""

        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        timestamp = now_ms()
        item = CacheItem(
            data=data,
            timestamp=timestamp,
            expires_at=timestamp + ttl if ttl > 0 else None,
        )
        await self.store.set(self._key(key), json.dumps(item.to_dict()))

    async def retrieve(self, key: str) -> Any:
        try:
            raw = await self.store.get(self._key(key))
            if not raw:
                return None
            item = CacheItem.from_dict(json.loads(raw))
            if item.expired(now_ms()):
                await self.store.remove(self._key(key))
                return None
            return item.data
        except (StorageError, ValueError, TypeError, AttributeError) as exc:
            logger.error("Error retrieving cached data for key %s: %s", key, exc)
            return None

    async def remove(self, key: str) -> bool:
        try:
            await self.store.remove(self._key(key))
        except StorageError as exc:
            logger.error("Error removing cached data for key %s: %s", key, exc)
            return False
        return True

    async def clear(self) -> int:
        keys = await self._cache_keys()
        if keys:
            await self.store.multi_remove(keys)
        return len(keys)

    # ----- maintenance -----
    async def perform_maintenance(self) -> MaintenanceReport:
        report = MaintenanceReport()
        now = now_ms()
        try:
            keys = await self._cache_keys()
        except StorageError as exc:
            logger.error("Error performing cache maintenance: %s", exc)
            return report

        for key in keys:
            raw = await self.store.get(key)
            if not raw:
                continue
            try:
                item = CacheItem.from_dict(json.loads(raw))
            except (ValueError, TypeError, AttributeError) as exc:
                logger.warning("Dropping unreadable cache item %s: %s", key, exc)
                item = None
            if item is None or item.expired(now):
                await self.store.remove(key)
                report.items_removed += 1
                report.bytes_freed += _size(raw)
            else:
                report.items_kept += 1

        logger.info(
            "Cache maintenance completed: %d items removed, %d bytes freed, %d items kept",
            report.items_removed,
            report.bytes_freed,
            report.items_kept,
        )
        return report

    async def estimate_size(self) -> int:
        total = 0
        try:
            for key in await self._cache_keys():
                raw = await self.store.get(key)
                if raw:
                    total += _size(raw)
        except StorageError as exc:
            logger.error("Error estimating cache size: %s", exc)
            return 0
        return total

    async def summary(self) -> CacheSummary:
        result = CacheSummary()
        try:
            keys = await self._cache_keys()
            for key in keys:
                raw = await self.store.get(key)
                if not raw:
                    continue
                result.total_items += 1
                result.total_size_bytes += _size(raw)

                parts = key[len(self.prefix):].split(":")
                endpoint = parts[1] if len(parts) > 1 else ""
                if endpoint and endpoint not in result.endpoints:
                    result.endpoints.append(endpoint)

                try:
                    timestamp = CacheItem.from_dict(json.loads(raw)).timestamp
                except (ValueError, TypeError, AttributeError):
                    continue
                if not timestamp:
                    continue
                if result.oldest_item is None or timestamp < result.oldest_item:
                    result.oldest_item = timestamp
                if result.newest_item is None or timestamp > result.newest_item:
                    result.newest_item = timestamp
        except StorageError as exc:
            logger.error("Error building cache summary: %s", exc)
            return CacheSummary()
        return result


__all__ = ["CacheSummary", "DEFAULT_CACHE_PRIORITY", "MaintenanceReport", "OfflineCache", "cache_priority"]
