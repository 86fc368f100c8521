"""Inspect and replay the offline sync queue from the command line."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from core.errors import StorageError
from core.log import ensure_logger
from core.settings import LOGGING
from datetime_utils import format_epoch_ms
from services.auth import StoredTokenAuth
from services.connectivity import ConnectivityMonitor, StaticReachability
from services.http_transport import HttpxTransport
from services.sync_queue import SyncQueue
from storage.config import resolve_sync_settings
from storage.db import init_db
from storage.kv_store import JsonFileKeyValueStore, SqliteKeyValueStore


def build_queue(*, offline: bool = False, store_kind: str = "sqlite") -> SyncQueue:
    settings = resolve_sync_settings()
    if store_kind == "json":
        store = JsonFileKeyValueStore()
    else:
        init_db()
        store = SqliteKeyValueStore()
    if offline:
        oracle = StaticReachability(False)
    else:
        oracle = ConnectivityMonitor(store=store)
        oracle.set_probe_from_url(settings.server_base_url)
    return SyncQueue(
        store,
        oracle,
        HttpxTransport(timeout=settings.request_timeout_sec),
        auth=StoredTokenAuth(store),
        settings=settings,
    )


async def _status(queue: SyncQueue) -> int:
    operations = await queue.list_all()
    pending = [op for op in operations if not op.synced]
    abandoned = [op for op in operations if op.abandoned(queue.settings.max_retry_attempts)]
    print(f"Server:     {queue.settings.server_base_url}")
    print(f"Queued:     {len(operations)}")
    print(f"Pending:    {len(pending)}")
    print(f"Abandoned:  {len(abandoned)}")
    print(f"Last sync:  {format_epoch_ms(await queue.get_last_sync_timestamp()) or 'never'}")
    return 0


async def _pending(queue: SyncQueue) -> int:
    for op in await queue.list_pending():
        print(f"{op.id}  {op.method.value:<6} {op.endpoint}  retries={op.retry_count}  queued={format_epoch_ms(op.timestamp)}")
    return 0


async def _drain(queue: SyncQueue) -> int:
    result = await queue.drain_queue()
    print(json.dumps(result.to_dict()))
    return 0


async def _cleanup(queue: SyncQueue) -> int:
    removed = await queue.cleanup_queue()
    print(f"Removed {removed} completed operations.")
    return 0


async def _enqueue(queue: SyncQueue, endpoint: str, method: str, data: Optional[str]) -> int:
    try:
        payload = json.loads(data) if data else None
        op_id = await queue.enqueue(endpoint, method, payload)
    except ValueError as exc:
        print(f"Invalid request: {exc}", file=sys.stderr)
        return 2
    await queue.wait_background()
    print(op_id)
    return 0


async def run(args: argparse.Namespace) -> int:
    queue = build_queue(offline=args.offline, store_kind=args.store)
    if args.command == "status":
        return await _status(queue)
    if args.command == "pending":
        return await _pending(queue)
    if args.command == "drain":
        return await _drain(queue)
    if args.command == "cleanup":
        return await _cleanup(queue)
    return await _enqueue(queue, args.endpoint, args.method, args.data)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__ or "")
    parser.add_argument(
        "--log",
        type=Path,
        default=LOGGING.path,
        help="Path to a log file (default: %(default)s)",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Treat the device as offline; nothing is sent",
    )
    parser.add_argument(
        "--store",
        choices=["sqlite", "json"],
        default="sqlite",
        help="Key-value backend holding the queue (default: %(default)s)",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show queue counters and the last sync time")
    sub.add_parser("pending", help="List operations still waiting to be sent")
    sub.add_parser("drain", help="Replay pending operations now")
    sub.add_parser("cleanup", help="Drop completed operations")
    enqueue = sub.add_parser("enqueue", help="Queue a mutating request")
    enqueue.add_argument("endpoint")
    enqueue.add_argument("method", choices=["POST", "PUT", "PATCH", "DELETE"], type=str.upper)
    enqueue.add_argument("--data", help="JSON payload")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = ensure_logger(path=args.log)
    try:
        return asyncio.run(run(args))
    except StorageError as exc:
        logger.error("Storage failure: %s", exc)
        print(f"Storage failure: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
