"""Reachability oracle and change notifications for the sync queue.

``ConnectivityMonitor.is_online`` runs a TCP connect probe against the API
host. ``start`` launches a polling loop that fires the registered callbacks
whenever the online/offline state flips and, when a store is supplied, records
every probe under the ``connection_status`` key.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol
from urllib.parse import urlparse

from core.errors import StorageError
from core.settings import CONNECTIVITY, STORAGE_KEYS, ConnectivitySettings
from datetime_utils import now_ms
from storage.kv_store import KeyValueStore


logger = logging.getLogger("offline_sync.connectivity")


class NetworkType(str, Enum):
    UNKNOWN = "unknown"
    NONE = "none"


@dataclass
class ConnectionStatus:
    online: bool = False
    network_type: NetworkType = NetworkType.UNKNOWN
    latency_ms: float = 0.0
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isConnected": self.online,
            "isInternetReachable": self.online,
            "type": self.network_type.value,
            "latencyMs": round(self.latency_ms, 1),
            "timestamp": self.timestamp,
        }


ReachabilityCallback = Callable[[ConnectionStatus], Any]


class ReachabilityOracle(Protocol):
    async def is_online(self) -> bool: ...


class StaticReachability:
    """Oracle with a fixed answer; flip ``online`` to simulate transitions."""

    def __init__(self, online: bool = True):
        self.online = online
        self.calls = 0

    async def is_online(self) -> bool:
        self.calls += 1
        return self.online


class ConnectivityMonitor:
    def __init__(
        self,
        probe_host: str = "",
        probe_port: int = 443,
        *,
        settings: ConnectivitySettings = CONNECTIVITY,
        store: Optional[KeyValueStore] = None,
        status_key: str = STORAGE_KEYS.connection_status,
    ) -> None:
        self._probe_host = probe_host
        self._probe_port = probe_port
        self.settings = settings
        self.store = store
        self.status_key = status_key

        self._status = ConnectionStatus()
        self._was_online: Optional[bool] = None
        self._callbacks: List[ReachabilityCallback] = []
        self._task: Optional[asyncio.Task] = None
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Configuration
    def set_probe_from_url(self, url: str) -> None:
        """Extract host:port from the API base URL for probing."""

        parsed = urlparse(url)
        if not parsed.netloc:
            # "api.example.com" parses as a bare path
            parsed = urlparse(f"https://{url}")
        self._probe_host = parsed.hostname or ""
        self._probe_port = parsed.port or (443 if parsed.scheme == "https" else 80)
        if not self._probe_host:
            logger.warning("No probe host in %r; connectivity will be assumed online", url)

    def on_reachability_change(self, callback: ReachabilityCallback) -> Callable[[], None]:
        """Register ``callback`` for online/offline transitions; returns an unsubscribe function."""

        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Queries
    @property
    def status(self) -> ConnectionStatus:
        return self._status

    async def is_online(self) -> bool:
        latency = await self._measure_latency()
        return latency >= 0

    async def probe(self) -> ConnectionStatus:
        """Single probe cycle: measure, record, and notify on transition."""

        latency = await self._measure_latency()
        online = latency >= 0
        status = ConnectionStatus(
            online=online,
            network_type=NetworkType.UNKNOWN if online else NetworkType.NONE,
            latency_ms=latency if online else 0.0,
        )
        self._status = status
        await self._record(status)

        if online != self._was_online:
            previous = self._was_online
            self._was_online = online
            if previous is not None or online:
                logger.info("Connectivity changed: %s", "online" if online else "offline")
                self._notify(status)
        return status

    # ------------------------------------------------------------------
    # Lifecycle
    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info("ConnectivityMonitor started (interval=%.0fs)", self.settings.check_interval_sec)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _monitor_loop(self) -> None:
        while True:
            try:
                await self.probe()
            except StorageError as exc:
                logger.warning("Could not record connection status: %s", exc)
            await asyncio.sleep(self.settings.check_interval_sec)

    # ------------------------------------------------------------------
    # Helpers
    async def _measure_latency(self) -> float:
        """TCP connect to the probe target. Returns RTT in ms, or -1 if unreachable."""

        if not self._probe_host:
            return 0.0
        start = time.monotonic()
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self._probe_host, self._probe_port),
                timeout=self.settings.probe_timeout_sec,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            logger.debug("Probe %s:%s failed: %s", self._probe_host, self._probe_port, exc)
            return -1.0
        elapsed = (time.monotonic() - start) * 1000
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return elapsed

    async def _record(self, status: ConnectionStatus) -> None:
        if self.store is None:
            return
        await self.store.set(self.status_key, json.dumps(status.to_dict()))

    def _notify(self, status: ConnectionStatus) -> None:
        for cb in list(self._callbacks):
            try:
                result = cb(status)
            except Exception as exc:
                logger.warning("Connectivity callback failed: %s", exc)
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)


__all__ = [
    "ConnectionStatus",
    "ConnectivityMonitor",
    "NetworkType",
    "ReachabilityCallback",
    "ReachabilityOracle",
    "StaticReachability",
]
