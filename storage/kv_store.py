"""Asynchronous key-value persistence used by the sync queue and offline cache."""
from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from core.errors import StorageError
from core.settings import KV_FILE_PATH
from datetime_utils import utc_now
from models.kv_entry import KeyValueEntry
from storage.db import get_session


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def keys(self) -> List[str]: ...

    async def multi_remove(self, keys: Iterable[str]) -> None: ...


class SqliteKeyValueStore:
    """Key-value rows in the ``keyvalueentry`` table.

    SQLAlchemy sessions are blocking, so every call is pushed to a worker
    thread with :func:`asyncio.to_thread`. Database errors surface as
    :class:`StorageError`.
    """

    def __init__(self, session_factory: Callable[[], Session] = get_session):
        self._session_factory = session_factory

    async def get(self, key: str) -> Optional[str]:
        return await self._run(self._get, key)

    async def set(self, key: str, value: str) -> None:
        await self._run(self._set, key, value)

    async def remove(self, key: str) -> None:
        await self._run(self._remove, [key])

    async def keys(self) -> List[str]:
        return await self._run(self._keys)

    async def multi_remove(self, keys: Iterable[str]) -> None:
        await self._run(self._remove, list(keys))

    # ------------------------------------------------------------------
    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc

    def _get(self, key: str) -> Optional[str]:
        with self._session_factory() as session:
            row = session.get(KeyValueEntry, key)
            return row.value if row else None

    def _set(self, key: str, value: str) -> None:
        with self._session_factory() as session:
            row = session.get(KeyValueEntry, key)
            if row is None:
                row = KeyValueEntry(key=key, value=value)
            else:
                row.value = value
                row.updated_at = utc_now()
            session.add(row)
            session.commit()

    def _remove(self, keys: List[str]) -> None:
        if not keys:
            return
        with self._session_factory() as session:
            for key in keys:
                row = session.get(KeyValueEntry, key)
                if row is not None:
                    session.delete(row)
            session.commit()

    def _keys(self) -> List[str]:
        with self._session_factory() as session:
            return list(session.exec(select(KeyValueEntry.key).order_by(KeyValueEntry.key)))


class JsonFileKeyValueStore:
    """All keys in one JSON object on disk, rewritten atomically on change."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path or KV_FILE_PATH)
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        data = await self._guarded(self._load)
        value = data.get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            data = await self._guarded(self._load)
            data[key] = value
            await self._guarded(self._save, data)

    async def remove(self, key: str) -> None:
        await self.multi_remove([key])

    async def keys(self) -> List[str]:
        data = await self._guarded(self._load)
        return sorted(data)

    async def multi_remove(self, keys: Iterable[str]) -> None:
        async with self._lock:
            data = await self._guarded(self._load)
            changed = False
            for key in keys:
                if data.pop(key, None) is not None:
                    changed = True
            if changed:
                await self._guarded(self._save, data)

    # ------------------------------------------------------------------
    async def _guarded(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except OSError as exc:
            raise StorageError(f"{self.path}: {exc}") from exc

    def _load(self) -> Dict[str, str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StorageError(f"{self.path}: corrupt key-value document: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"{self.path}: expected a JSON object, got {type(data).__name__}")
        return data

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, self.path)
        finally:
            if tmp.exists():
                try:
                    tmp.unlink()
                except OSError:
                    pass


__all__ = ["KeyValueStore", "SqliteKeyValueStore", "JsonFileKeyValueStore"]
