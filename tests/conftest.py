from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import asyncio
from typing import Callable, Dict, List, Optional, Union

import pytest

from core.errors import StorageError
from core.log import ensure_logger
from core.settings import SyncSettings
from services.connectivity import StaticReachability
from services.http_transport import HttpRequest, HttpResponse
from services.sync_queue import SyncQueue


class FakeStore:
    """In-memory stand-in for the key-value store."""

    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(data or {})
        self.fail_reads = False
        self.fail_writes = False
        self.writes = 0

    async def get(self, key: str) -> Optional[str]:
        if self.fail_reads:
            raise StorageError("read failed")
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise StorageError("write failed")
        self.writes += 1
        self.data[key] = value

    async def remove(self, key: str) -> None:
        if self.fail_writes:
            raise StorageError("write failed")
        self.data.pop(key, None)

    async def keys(self) -> List[str]:
        if self.fail_reads:
            raise StorageError("read failed")
        return sorted(self.data)

    async def multi_remove(self, keys) -> None:
        for key in list(keys):
            await self.remove(key)


Reply = Union[int, HttpResponse, Exception]


class FakeTransport:
    """Records requests and answers from a script (status code, response or exception)."""

    def __init__(self, *replies: Reply, default: Reply = 200, delay: float = 0.0):
        self.replies: List[Reply] = list(replies)
        self.default = default
        self.delay = delay
        self.requests: List[HttpRequest] = []
        self.gate: Optional[asyncio.Event] = None
        self.handler: Optional[Callable[[HttpRequest], Reply]] = None

    async def send(self, request: HttpRequest, timeout: Optional[float] = None) -> HttpResponse:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.handler is not None:
            reply = self.handler(request)
        else:
            reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, HttpResponse):
            return reply
        return HttpResponse(status=reply, body=b'{"ok": true}')


@pytest.fixture(autouse=True, scope="session")
def sync_log(tmp_path_factory):
    """Attach the rotating log handler to a temporary file for the whole run."""

    root = ensure_logger(path=tmp_path_factory.mktemp("logs") / "sync.log")
    handlers = list(root.handlers)
    yield handlers[0].baseFilename
    for handler in handlers:
        root.removeHandler(handler)
        handler.close()


@pytest.fixture()
def store():
    return FakeStore()


@pytest.fixture()
def oracle():
    return StaticReachability(online=False)


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def settings():
    return SyncSettings(server_base_url="https://api.test", max_retry_attempts=5, request_timeout_sec=1.0)


@pytest.fixture()
def queue(store, oracle, transport, settings):
    return SyncQueue(store, oracle, transport, settings=settings)
