from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import httpx

from core.errors import NetworkError
from core.settings import SYNC


@dataclass
class HttpRequest:
    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None


@dataclass
class HttpResponse:
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        if not self.body:
            return None
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None

    def error_message(self) -> str:
        payload = self.json()
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        return "Unknown error"


class Transport(Protocol):
    async def send(self, request: HttpRequest, timeout: Optional[float] = None) -> HttpResponse: ...


def build_url(base_url: str, endpoint: str) -> str:
    if not base_url:
        return endpoint
    if not endpoint:
        return base_url
    return f"{base_url.rstrip('/')}/{endpoint.lstrip('/')}"


class HttpxTransport:
    """Fetch-style transport over :class:`httpx.AsyncClient`.

    A client passed in by the caller is reused and left open; otherwise a
    short-lived client is created per request.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = SYNC.request_timeout_sec):
        self._client = client
        self.timeout = timeout

    async def send(self, request: HttpRequest, timeout: Optional[float] = None) -> HttpResponse:
        limit = timeout if timeout is not None else self.timeout
        try:
            if self._client is not None:
                response = await self._request(self._client, request, limit)
            else:
                async with httpx.AsyncClient(timeout=limit) as client:
                    response = await self._request(client, request, limit)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"{request.method} {request.url} timed out after {limit}s") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"{request.method} {request.url} failed: {exc}") from exc
        return HttpResponse(
            status=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )

    @staticmethod
    async def _request(client: httpx.AsyncClient, request: HttpRequest, timeout: float) -> httpx.Response:
        return await client.request(
            request.method,
            request.url,
            headers=request.headers,
            content=request.body.encode("utf-8") if request.body is not None else None,
            timeout=timeout,
        )


__all__ = ["HttpRequest", "HttpResponse", "HttpxTransport", "Transport", "build_url"]
