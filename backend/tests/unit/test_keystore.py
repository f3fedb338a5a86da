"""Unit tests for the key-value store adapters."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from metering.config import Settings
from metering.errors import StoreUnavailable
from metering.keystore import InMemoryKeyStore, KeyStore, RedisKeyStore, build_key_store


def _redis_client(keys: tuple[bytes, ...] = ()) -> MagicMock:
    client = MagicMock()
    client.ping = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.aclose = AsyncMock()

    async def scan_iter(match: str):
        for key in keys:
            yield key

    client.scan_iter = MagicMock(side_effect=scan_iter)
    return client


@pytest.mark.asyncio
async def test_in_memory_store_expires_keys_after_ttl(store: InMemoryKeyStore, clock) -> None:
    """Test that values disappear once their TTL has elapsed."""
    await store.put("usage:voice:user:u1", b"1", ttl_seconds=60)
    await store.put("credits:balance:user:u1", b"2")

    clock.advance(59)
    assert await store.get("usage:voice:user:u1") == b"1"

    clock.advance(1)
    assert await store.get("usage:voice:user:u1") is None
    assert await store.get("credits:balance:user:u1") == b"2"
    assert await store.list("usage:") == []


@pytest.mark.asyncio
async def test_in_memory_store_lists_by_prefix(store: InMemoryKeyStore) -> None:
    """Test prefix listing returns sorted live keys only."""
    await store.put("quota:voice:user:u1:202501", b"{}")
    await store.put("quota:voice:user:u1:202412", b"{}")
    await store.put("quota:voice:user:u10:202501", b"{}")
    await store.put("usage:voice:user:u1", b"{}")

    keys = await store.list("quota:voice:user:u1")

    assert keys == [
        "quota:voice:user:u1:202412",
        "quota:voice:user:u1:202501",
        "quota:voice:user:u10:202501",
    ]

    await store.delete("quota:voice:user:u1:202412")
    assert await store.get("quota:voice:user:u1:202412") is None


def test_adapters_satisfy_protocol(store: InMemoryKeyStore) -> None:
    assert isinstance(store, KeyStore)
    assert isinstance(RedisKeyStore("redis://localhost:6379/0"), KeyStore)


@pytest.mark.asyncio
async def test_redis_store_without_url_is_unavailable() -> None:
    """Test that an absent binding raises instead of connecting."""
    adapter = RedisKeyStore(None)

    with pytest.raises(StoreUnavailable) as exc_info:
        await adapter.get("usage:voice:user:u1")

    assert exc_info.value.operation == "connect"


@pytest.mark.asyncio
async def test_redis_store_put_sets_expiry() -> None:
    """Test that TTLs are passed to Redis as whole seconds."""
    client = _redis_client()
    adapter = RedisKeyStore("redis://localhost:6379/0")

    with patch("metering.keystore.redis.from_url", return_value=client):
        await adapter.put("usage:voice:user:u1", b'{"count":1}', ttl_seconds=86400)
        await adapter.put("credits:balance:user:u1", b'{"totalTenths":10}')

    client.set.assert_any_await("usage:voice:user:u1", b'{"count":1}', ex=86400)
    client.set.assert_any_await("credits:balance:user:u1", b'{"totalTenths":10}')
    client.ping.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_store_list_escapes_glob_characters() -> None:
    """Test that prefixes are matched literally."""
    client = _redis_client(keys=(b"usage:voice:user:a*b:2", b"usage:voice:user:a*b:1"))
    adapter = RedisKeyStore("redis://localhost:6379/0")

    with patch("metering.keystore.redis.from_url", return_value=client):
        keys = await adapter.list("usage:voice:user:a*b")

    assert keys == ["usage:voice:user:a*b:1", "usage:voice:user:a*b:2"]
    assert client.scan_iter.call_args.kwargs["match"] == "usage:voice:user:a\\*b*"


@pytest.mark.asyncio
async def test_redis_errors_become_store_unavailable() -> None:
    """Test that connection failures surface as StoreUnavailable."""
    client = _redis_client()
    client.get = AsyncMock(side_effect=RedisConnectionError("connection refused"))
    adapter = RedisKeyStore("redis://localhost:6379/0")

    with patch("metering.keystore.redis.from_url", return_value=client):
        with pytest.raises(StoreUnavailable) as exc_info:
            await adapter.get("usage:voice:user:u1")

    assert exc_info.value.operation == "get"


def test_build_key_store_without_url_returns_none(test_settings: Settings) -> None:
    assert build_key_store(test_settings) is None


def test_build_key_store_with_url() -> None:
    config = Settings(redis_url="redis://cache:6379/2", store_socket_timeout=1.5)

    adapter = build_key_store(config)

    assert isinstance(adapter, RedisKeyStore)
    assert adapter.url == "redis://cache:6379/2"
    assert adapter.socket_timeout == 1.5
