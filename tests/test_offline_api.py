import json

import pytest

from core.errors import NetworkError
from core.settings import CacheSettings
from services.connectivity import StaticReachability
from services.http_transport import HttpResponse
from services.offline_api import OfflineApiClient, cache_key
from services.offline_cache import OfflineCache


CACHE_SETTINGS = CacheSettings(
    default_ttl_ms=1000,
    config_ttl_ms=5000,
    preload_endpoints=("/api/users/{user_id}/profile", "/api/services/featured"),
)


def _json(payload, status=200):
    return HttpResponse(status=status, body=json.dumps(payload).encode("utf-8"))


@pytest.fixture()
def cache(store):
    return OfflineCache(store, default_ttl_ms=CACHE_SETTINGS.default_ttl_ms)


@pytest.fixture()
def online():
    return StaticReachability(online=True)


@pytest.fixture()
def client(queue, cache, transport, online, settings):
    return OfflineApiClient(queue, cache, transport, online, settings=settings, cache_settings=CACHE_SETTINGS)


def test_cache_key_includes_method_endpoint_and_body():
    assert cache_key("GET", "/api/config") == "GET:/api/config:"
    assert cache_key("POST", "/api/search", {"q": "spa"}) == 'POST:/api/search:{"q": "spa"}'


@pytest.mark.asyncio
async def test_get_fetches_then_serves_from_cache(client, transport):
    transport.default = _json({"name": "Ada"})

    first = await client.fetch("/api/users/1/profile")
    second = await client.fetch("/api/users/1/profile")

    assert first.data == {"name": "Ada"} and first.from_cache is False
    assert second.data == {"name": "Ada"} and second.from_cache is True
    assert len(transport.requests) == 1
    assert transport.requests[0].url == "https://api.test/api/users/1/profile"


@pytest.mark.asyncio
async def test_force_refresh_bypasses_cache(client, transport):
    transport.replies = [_json({"v": 1}), _json({"v": 2})]

    await client.fetch("/api/config")
    refreshed = await client.fetch("/api/config", force_refresh=True)

    assert refreshed.data == {"v": 2}
    assert refreshed.from_cache is False
    assert len(transport.requests) == 2


@pytest.mark.asyncio
async def test_offline_fetch_uses_cache_or_fallback(client, cache, online, transport):
    online.online = False

    missing = await client.fetch("/api/config")
    assert missing.data is None
    assert missing.error == "Offline with no cached data"

    fallback = await client.fetch("/api/config", offline_data={"theme": "light"})
    assert fallback.data == {"theme": "light"}
    assert fallback.error is None

    await cache.cache_data(cache_key("GET", "/api/config"), {"theme": "dark"})
    cached = await client.fetch("/api/config")
    assert cached.data == {"theme": "dark"}
    assert cached.from_cache is True
    assert transport.requests == []


@pytest.mark.asyncio
async def test_failed_fetch_falls_back_to_stale_cache(client, cache, transport):
    await cache.cache_data(cache_key("GET", "/api/config"), {"theme": "dark"})
    transport.default = _json({"message": "maintenance"}, status=503)

    result = await client.fetch("/api/config", force_refresh=True)

    assert result.data == {"theme": "dark"}
    assert result.from_cache is True
    assert "503" in result.error and "maintenance" in result.error


@pytest.mark.asyncio
async def test_failed_fetch_without_cache_returns_offline_data(client, transport):
    transport.default = NetworkError("no route")

    result = await client.fetch("/api/config", offline_data=[])

    assert result.data == []
    assert result.from_cache is False
    assert result.error == "no route"


@pytest.mark.asyncio
async def test_high_priority_doubles_ttl(client, store, transport):
    transport.default = _json({"ok": True})

    await client.fetch("/api/a", cache_ttl_ms=100, high_priority=True)

    item = json.loads(store.data["@vibewell/cache/GET:/api/a:"])
    assert item["expiresAt"] - item["timestamp"] == 200


@pytest.mark.asyncio
async def test_mutating_fetch_is_not_cached(client, store, transport):
    transport.default = _json({"id": "b1"}, status=201)

    result = await client.fetch("/api/bookings", "post", body={"serviceId": "s1"})

    assert result.data == {"id": "b1"}
    assert transport.requests[0].method == "POST"
    assert json.loads(transport.requests[0].body) == {"serviceId": "s1"}
    assert not any(key.startswith("@vibewell/cache/") for key in store.data)


@pytest.mark.asyncio
async def test_offline_mutations_are_queued(client, queue):
    created = await client.create_resource_offline("/api/bookings", {"serviceId": "s1"}, temp_id="tmp-1")
    updated = await client.update_resource_offline("/api/bookings/1", {"note": "late"})
    deleted = await client.delete_resource_offline("/api/bookings/2")

    assert created.success and created.id == "tmp-1"
    assert updated.success and updated.id
    assert deleted.success and deleted.id

    pending = await queue.list_pending()
    assert [(op.method.value, op.endpoint) for op in pending] == [
        ("POST", "/api/bookings"),
        ("PUT", "/api/bookings/1"),
        ("DELETE", "/api/bookings/2"),
    ]
    assert pending[2].data == {}


@pytest.mark.asyncio
async def test_offline_mutation_reports_storage_failure(client, store):
    store.fail_writes = True

    result = await client.create_resource_offline("/api/bookings", {"serviceId": "s1"}, temp_id="tmp-1")

    assert result.success is False
    assert result.id == "tmp-1"
    assert "write failed" in result.error


@pytest.mark.asyncio
async def test_preload_caches_each_resource(client, store, transport):
    transport.handler = lambda request: _json({"url": request.url})

    result = await client.preload_offline_data("u1")

    assert result.success is True
    assert result.cached_resources == ["/api/users/u1/profile", "/api/services/featured", "/api/config"]
    assert result.errors == []
    config = json.loads(store.data["@vibewell/cache/GET:/api/config:"])
    assert config["expiresAt"] - config["timestamp"] == 5000


@pytest.mark.asyncio
async def test_preload_reports_failed_endpoints(client, transport):
    def handler(request):
        if request.url.endswith("/featured"):
            return 500
        return _json({"ok": True})

    transport.handler = handler

    result = await client.preload_offline_data("u1")

    assert result.success is False
    assert result.errors == ["/api/services/featured"]
    assert "/api/config" in result.cached_resources


@pytest.mark.asyncio
async def test_unexpected_transport_exception_falls_back_to_cache(client, cache, transport):
    await cache.cache_data(cache_key("GET", "/api/config"), {"theme": "dark"})
    transport.default = RuntimeError("driver bug")

    result = await client.fetch("/api/config", force_refresh=True)

    assert result.data == {"theme": "dark"}
    assert result.from_cache is True
    assert result.error == "driver bug"


@pytest.mark.asyncio
async def test_unserializable_body_returns_offline_data(client, transport):
    result = await client.fetch("/api/x", "POST", body={"when": object()}, offline_data="fallback")

    assert result.data == "fallback"
    assert result.from_cache is False
    assert "not JSON serializable" in result.error
    assert transport.requests == []
