"""Service manager lifecycle and request helpers."""

import pytest
from starlette.requests import Request

from shortlink.dependencies import ServiceManager, client_ip_from
from shortlink.models import Link


def _request(headers: dict[str, str], client: tuple[str, int] | None = ("10.1.2.3", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/abc",
        "headers": [(name.lower().encode(), value.encode()) for name, value in headers.items()],
        "client": client,
    }
    return Request(scope)


def test_client_ip_prefers_first_forwarded_hop() -> None:
    request = _request({"X-Forwarded-For": "203.0.113.7, 198.51.100.1"})
    assert client_ip_from(request) == "203.0.113.7"


def test_client_ip_falls_back_to_peer_address() -> None:
    assert client_ip_from(_request({})) == "10.1.2.3"
    assert client_ip_from(_request({"X-Forwarded-For": " "})) == "10.1.2.3"


def test_client_ip_unknown() -> None:
    assert client_ip_from(_request({}, client=None)) is None


@pytest.mark.asyncio
async def test_cleanup_flushes_buffered_clicks(settings, fake_redis, session_factory, store) -> None:
    slow = settings.model_copy(update={"CLICK_FLUSH_INTERVAL_MS": 60_000})
    manager = ServiceManager(settings=slow, cache_client=fake_redis, session_factory=session_factory)
    await manager.initialize()
    await store.create_mapping(Link(short_code="bye", original_url="https://bye.example"))

    for _ in range(4):
        await manager.resolver.resolve("bye")
    await manager.cleanup()

    assert (await store.find_by_key("bye")).clicks == 4
    assert manager.initialized is False
    assert manager.dispatcher.running is False
    assert manager.aggregator.running is False


@pytest.mark.asyncio
async def test_initialize_is_idempotent(manager: ServiceManager) -> None:
    aggregator = manager.aggregator

    await manager.initialize()

    assert manager.aggregator is aggregator


@pytest.mark.asyncio
async def test_warmup_respects_setting(manager: ServiceManager, settings, fake_redis, store) -> None:
    await store.create_mapping(Link(short_code="warm", original_url="https://warm.example"))

    assert await manager.warmup() == 0
    assert await fake_redis.get("url:warm") is None

    manager.settings = settings.model_copy(update={"CACHE_WARMUP_ENABLED": True})

    assert await manager.warmup() == 1
    assert await fake_redis.get("url:warm") == "https://warm.example"
