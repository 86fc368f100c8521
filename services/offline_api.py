"""Offline-aware request helpers built on the cache and the sync queue."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.errors import HttpError, NetworkError, StorageError
from core.settings import CACHE, SYNC, CacheSettings, SyncSettings
from models.sync_operation import SyncMethod
from services.auth import AuthProvider
from services.connectivity import ReachabilityOracle
from services.http_transport import HttpRequest, Transport, build_url
from services.offline_cache import OfflineCache
from services.sync_queue import SyncQueue


logger = logging.getLogger("offline_sync.api")


@dataclass
class FetchResult:
    data: Any = None
    from_cache: bool = False
    error: Optional[str] = None


@dataclass
class ResourceResult:
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PreloadResult:
    success: bool
    cached_resources: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def cache_key(method: str, endpoint: str, body: Any = None) -> str:
    return f"{method}:{endpoint}:{json.dumps(body) if body else ''}"


class OfflineApiClient:
    def __init__(
        self,
        queue: SyncQueue,
        cache: OfflineCache,
        transport: Transport,
        oracle: ReachabilityOracle,
        *,
        auth: Optional[AuthProvider] = None,
        settings: SyncSettings = SYNC,
        cache_settings: CacheSettings = CACHE,
    ) -> None:
        self.queue = queue
        self.cache = cache
        self.transport = transport
        self.oracle = oracle
        self.auth = auth
        self.settings = settings
        self.cache_settings = cache_settings

    async def fetch(
        self,
        endpoint: str,
        method: str = "GET",
        *,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        cache_ttl_ms: Optional[int] = None,
        force_refresh: bool = False,
        offline_data: Any = None,
        high_priority: bool = False,
    ) -> FetchResult:
        method = method.upper()
        try:
            key = cache_key(method, endpoint, body)
        except (TypeError, ValueError) as exc:
            logger.error("Cannot fetch %s: body is not JSON serializable: %s", endpoint, exc)
            return FetchResult(data=offline_data, from_cache=False, error=str(exc))
        ttl = self.cache_settings.default_ttl_ms if cache_ttl_ms is None else cache_ttl_ms

        try:
            online = await self.oracle.is_online()
        except Exception as exc:
            logger.error("Error checking network status: %s", exc)
            online = False

        if not online:
            logger.info("Device is offline, using cached data for %s", endpoint)
            cached = await self.cache.retrieve(key)
            data = cached if cached is not None else offline_data
            error = None if data is not None else "Offline with no cached data"
            return FetchResult(data=data, from_cache=True, error=error)

        if not force_refresh and method == "GET":
            cached = await self.cache.retrieve(key)
            if cached is not None:
                return FetchResult(data=cached, from_cache=True)

        try:
            request_headers = {"Content-Type": "application/json"}
            if self.auth is not None:
                header = await self.auth.authorization_header()
                if header:
                    request_headers["Authorization"] = header
            request_headers.update(headers or {})
            response = await self.transport.send(
                HttpRequest(
                    url=build_url(self.settings.server_base_url, endpoint),
                    method=method,
                    headers=request_headers,
                    body=json.dumps(body) if body is not None else None,
                ),
                self.settings.request_timeout_sec,
            )
            if not response.ok:
                raise HttpError(response.status, response.error_message())
            data = response.json()
            if method == "GET":
                multiplier = self.cache_settings.high_priority_multiplier if high_priority else 1
                await self.cache.cache_data(key, data, ttl * multiplier)
            return FetchResult(data=data, from_cache=False)
        except (HttpError, NetworkError, StorageError) as exc:
            logger.error("Error fetching %s: %s", endpoint, exc)
            return await self._fallback(key, exc, offline_data)
        except Exception as exc:
            logger.exception("Fetching %s crashed: %s", endpoint, exc)
            return await self._fallback(key, exc, offline_data)

    async def _fallback(self, key: str, exc: Exception, offline_data: Any) -> FetchResult:
        cached = await self.cache.retrieve(key)
        if cached is not None:
            return FetchResult(data=cached, from_cache=True, error=str(exc))
        return FetchResult(data=offline_data, from_cache=False, error=str(exc))

    # ----- queued mutations -----
    async def create_resource_offline(self, endpoint: str, data: Any, temp_id: Optional[str] = None) -> ResourceResult:
        try:
            op_id = await self.queue.enqueue(endpoint, SyncMethod.POST, data)
        except (StorageError, ValueError) as exc:
            logger.error("Error creating resource offline for %s: %s", endpoint, exc)
            return ResourceResult(success=False, id=temp_id, error=str(exc))
        return ResourceResult(success=True, id=temp_id or op_id)

    async def update_resource_offline(self, endpoint: str, data: Any) -> ResourceResult:
        try:
            op_id = await self.queue.enqueue(endpoint, SyncMethod.PUT, data)
        except (StorageError, ValueError) as exc:
            logger.error("Error updating resource offline for %s: %s", endpoint, exc)
            return ResourceResult(success=False, error=str(exc))
        return ResourceResult(success=True, id=op_id)

    async def delete_resource_offline(self, endpoint: str) -> ResourceResult:
        try:
            op_id = await self.queue.enqueue(endpoint, SyncMethod.DELETE, {})
        except (StorageError, ValueError) as exc:
            logger.error("Error deleting resource offline for %s: %s", endpoint, exc)
            return ResourceResult(success=False, error=str(exc))
        return ResourceResult(success=True, id=op_id)

    # ----- preload -----
    async def preload_offline_data(self, user_id: str) -> PreloadResult:
        logger.info("Starting preload of offline data for user %s", user_id)
        result = PreloadResult(success=True)
        targets = [
            (template.format(user_id=user_id), self.cache_settings.default_ttl_ms)
            for template in self.cache_settings.preload_endpoints
        ]
        targets.append((self.cache_settings.config_endpoint, self.cache_settings.config_ttl_ms))

        for endpoint, ttl in targets:
            fetched = await self.fetch(endpoint, cache_ttl_ms=ttl, force_refresh=True)
            if fetched.data is not None and fetched.error is None:
                result.cached_resources.append(endpoint)
            else:
                result.errors.append(endpoint)

        result.success = not result.errors
        logger.info("Preloaded %d resources for offline use", len(result.cached_resources))
        return result


__all__ = ["FetchResult", "OfflineApiClient", "PreloadResult", "ResourceResult", "cache_key"]
