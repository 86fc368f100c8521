"""Durable queue of mutating API calls replayed when the device is online."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from core.errors import HttpError, NetworkError, StorageError
from core.log import ensure_logger
from core.settings import STORAGE_KEYS, SYNC, StorageKeys, SyncSettings
from datetime_utils import now_ms
from models.sync_operation import SyncMethod, SyncOperation, new_operation_id
from services.auth import AuthProvider
from services.connectivity import ConnectionStatus, ReachabilityOracle
from services.http_transport import HttpRequest, Transport, build_url
from storage.kv_store import KeyValueStore


@dataclass
class DrainResult:
    success: int = 0
    failed: int = 0
    remaining: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"success": self.success, "failed": self.failed, "remaining": self.remaining}


class ReplayOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABANDONED = "abandoned"
    SKIPPED = "skipped"


class SyncQueue:
    """Ordered log of pending mutations persisted under a single store key.

    Every read-modify-write of the queue document runs under one in-process
    lock; the lock is never held while a request is in flight.
    """

    def __init__(
        self,
        store: KeyValueStore,
        oracle: ReachabilityOracle,
        transport: Transport,
        *,
        auth: Optional[AuthProvider] = None,
        settings: SyncSettings = SYNC,
        keys: StorageKeys = STORAGE_KEYS,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.transport = transport
        self.auth = auth
        self.settings = settings
        self.keys = keys
        self.logger = ensure_logger("queue")

        self._lock = asyncio.Lock()
        self._in_flight: Set[str] = set()
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    async def enqueue(self, endpoint: str, method: SyncMethod | str, data: Any = None) -> str:
        if not isinstance(endpoint, str) or not endpoint.strip():
            raise ValueError("endpoint must be a non-empty string")
        sync_method = SyncMethod.parse(method)
        try:
            json.dumps(data)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"payload is not JSON serializable: {exc}") from exc

        async with self._lock:
            queue = await self._load()
            taken = {op.id for op in queue}
            timestamp = now_ms()
            op_id = new_operation_id(timestamp)
            while op_id in taken:
                op_id = new_operation_id(timestamp)
            operation = SyncOperation(
                id=op_id,
                endpoint=endpoint,
                method=sync_method,
                data=data,
                timestamp=timestamp,
            )
            queue.append(operation)
            await self._save(queue)
        self.logger.info("Queued %s %s as %s", sync_method.value, endpoint, op_id)

        if await self._is_online():
            self._spawn(self._replay_operation(operation))
        return op_id

    async def drain_queue(self) -> DrainResult:
        if not await self._is_online():
            self.logger.info("Cannot sync: device is offline")
            return DrainResult()

        try:
            queue = await self._load()
        except StorageError as exc:
            self.logger.error("Could not read sync queue: %s", exc)
            return DrainResult()
        if not queue:
            return DrainResult()

        result = DrainResult()
        for operation in [op for op in queue if not op.synced]:
            try:
                outcome = await self._replay_operation(operation)
            except StorageError as exc:
                self.logger.error("Sync operation %s (%s) crashed: %s", operation.id, operation.endpoint, exc)
                outcome = ReplayOutcome.FAILED
            if outcome is ReplayOutcome.SUCCEEDED:
                result.success += 1
            elif outcome is not ReplayOutcome.SKIPPED:
                result.failed += 1

        try:
            await self.store.set(self.keys.last_sync, str(now_ms()))
        except StorageError as exc:
            self.logger.warning("Could not record last sync timestamp: %s", exc)

        result.remaining = len(await self.list_pending())
        self.logger.info(
            "Drain finished: %d synced, %d failed, %d remaining",
            result.success,
            result.failed,
            result.remaining,
        )
        return result

    async def cleanup_queue(self) -> int:
        async with self._lock:
            queue = await self._load()
            pending = [op for op in queue if not op.synced]
            removed = len(queue) - len(pending)
            if removed:
                await self._save(pending)
        self.logger.info("Cleaned sync queue: removed %d completed operations", removed)
        return removed

    async def list_pending(self) -> List[SyncOperation]:
        try:
            queue = await self._load()
        except StorageError as exc:
            self.logger.error("Could not read pending operations: %s", exc)
            return []
        return [op for op in queue if not op.synced]

    async def list_all(self) -> List[SyncOperation]:
        return await self._load()

    async def get_last_sync_timestamp(self) -> Optional[int]:
        try:
            raw = await self.store.get(self.keys.last_sync)
        except StorageError as exc:
            self.logger.error("Could not read last sync timestamp: %s", exc)
            return None
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def watch(self, monitor) -> Callable[[], None]:
        """Drain whenever ``monitor`` reports that the device came back online."""

        def _on_change(status: ConnectionStatus) -> None:
            if status.online and self.settings.drain_on_reconnect:
                self._spawn(self.drain_queue())

        return monitor.on_reachability_change(_on_change)

    async def wait_background(self) -> None:
        """Wait for replays and drains started in the background."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Replay
    async def _replay_operation(self, operation: SyncOperation) -> ReplayOutcome:
        if operation.id in self._in_flight:
            return ReplayOutcome.SKIPPED
        self._in_flight.add(operation.id)
        try:
            return await self._attempt(operation.id)
        finally:
            self._in_flight.discard(operation.id)

    async def _attempt(self, op_id: str) -> ReplayOutcome:
        current = await self._find(op_id)
        if current is None or current.synced:
            return ReplayOutcome.SKIPPED

        if current.retry_count >= self.settings.max_retry_attempts:
            self.logger.warning(
                "Sync operation %s (%s) exceeded %d retry attempts; abandoning",
                current.id,
                current.endpoint,
                self.settings.max_retry_attempts,
            )
            await self._mark_attempt(op_id, synced=True)
            return ReplayOutcome.ABANDONED

        if not await self._is_online():
            return ReplayOutcome.FAILED

        try:
            response = await asyncio.wait_for(
                self.transport.send(await self._build_request(current), self.settings.request_timeout_sec),
                timeout=self.settings.request_timeout_sec,
            )
            if not response.ok:
                raise HttpError(response.status, response.error_message())
        except asyncio.TimeoutError:
            self.logger.error(
                "Sync operation %s (%s) timed out after %ss (retry %d)",
                current.id,
                current.endpoint,
                self.settings.request_timeout_sec,
                current.retry_count,
            )
        except (HttpError, NetworkError) as exc:
            self.logger.error(
                "Sync operation %s (%s) failed: %s (retry %d)",
                current.id,
                current.endpoint,
                exc,
                current.retry_count,
            )
        except Exception as exc:
            self.logger.exception(
                "Sync operation %s (%s) crashed: %s (retry %d)",
                current.id,
                current.endpoint,
                exc,
                current.retry_count,
            )
        else:
            await self._mark_attempt(op_id, synced=True)
            self.logger.info("Sync operation %s (%s) synced", current.id, current.endpoint)
            return ReplayOutcome.SUCCEEDED

        await self._mark_attempt(op_id, synced=False)
        return ReplayOutcome.FAILED

    async def _build_request(self, operation: SyncOperation) -> HttpRequest:
        headers = {"Content-Type": "application/json"}
        if self.auth is not None:
            header = await self.auth.authorization_header()
            if header:
                headers["Authorization"] = header
        body = json.dumps(operation.data) if operation.method.has_body else None
        return HttpRequest(
            url=build_url(self.settings.server_base_url, operation.endpoint),
            method=operation.method.value,
            headers=headers,
            body=body,
        )

    async def _mark_attempt(self, op_id: str, *, synced: bool) -> Optional[SyncOperation]:
        async with self._lock:
            queue = await self._load()
            updated = None
            for op in queue:
                if op.id == op_id:
                    op.retry_count += 1
                    op.synced = op.synced or synced
                    updated = op
                    break
            if updated is None:
                return None
            await self._save(queue)
            return updated

    # ------------------------------------------------------------------
    # Helpers
    async def _is_online(self) -> bool:
        try:
            return bool(await self.oracle.is_online())
        except Exception as exc:
            self.logger.error("Error checking network status: %s", exc)
            return False

    async def _find(self, op_id: str) -> Optional[SyncOperation]:
        for op in await self._load():
            if op.id == op_id:
                return op
        return None

    async def _load(self) -> List[SyncOperation]:
        raw = await self.store.get(self.keys.sync_queue)
        if not raw:
            return []
        try:
            payload = json.loads(raw)
            return [SyncOperation.from_dict(item) for item in payload]
        except (TypeError, ValueError, KeyError) as exc:
            raise StorageError(f"corrupt sync queue document: {exc}") from exc

    async def _save(self, queue: List[SyncOperation]) -> None:
        await self.store.set(self.keys.sync_queue, json.dumps([op.to_dict() for op in queue]))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Background sync task failed: %s", exc)


__all__ = ["DrainResult", "ReplayOutcome", "SyncQueue"]
