# tests/services/test_cache_service.py
"""
Unit tests for the cache backends.

Uses mock-first approach to test without requiring a real Redis instance.
"""
import asyncio
import logging

import pytest
from unittest.mock import AsyncMock, patch

from src.core.exceptions import ConfigurationError
from src.services.cache_service import (
    MemoryCache,
    RedisCache,
    RedisConfig,
    create_cache,
)


@pytest.fixture
def mock_config():
    """Create a test configuration"""
    return RedisConfig(url="redis://localhost:6379/0", operation_timeout=0.2)


@pytest.fixture
def mock_redis_client():
    """Create a mock Redis client"""
    client = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.setex = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.aclose = AsyncMock()
    return client


@pytest.fixture
async def redis_cache(mock_config, mock_redis_client):
    """Create a Redis cache with mocked client"""
    cache = RedisCache(mock_config)
    with patch('src.services.cache_service.redis.from_url', return_value=mock_redis_client):
        await cache.connect()
    return cache


class TestRedisCacheLifecycle:

    async def test_connect(self, mock_config, mock_redis_client):
        cache = RedisCache(mock_config)
        assert not cache.is_connected()

        with patch('src.services.cache_service.redis.from_url', return_value=mock_redis_client) as from_url:
            await cache.connect()

        assert cache.is_connected()
        mock_redis_client.ping.assert_called_once()
        assert from_url.call_args.kwargs["decode_responses"] is False

    async def test_connect_is_idempotent(self, redis_cache, mock_redis_client):
        with patch('src.services.cache_service.redis.from_url') as from_url:
            await redis_cache.connect()

        from_url.assert_not_called()
        mock_redis_client.ping.assert_called_once()

    async def test_invalid_url_is_a_configuration_error(self):
        cache = RedisCache(RedisConfig(url="not-a-redis-url"))
        with patch('src.services.cache_service.redis.from_url', side_effect=ValueError("bad scheme")):
            with pytest.raises(ConfigurationError):
                await cache.connect()

    async def test_unreachable_at_startup_is_retried_later(self, mock_config, mock_redis_client):
        mock_redis_client.ping.side_effect = [ConnectionError("Connection refused"), True]
        mock_redis_client.get.return_value = b'{"telegram_id": 1}'

        cache = RedisCache(mock_config)
        with patch('src.services.cache_service.redis.from_url', return_value=mock_redis_client):
            await cache.connect()
        assert not cache.is_connected()

        # Server came back: the same client is used, no restart needed
        assert await cache.get("session:1") == b'{"telegram_id": 1}'
        mock_redis_client.get.assert_called_once_with("session:1")
        assert cache.is_connected()

        health = await cache.health_check()
        assert health["status"] == "connected"

    async def test_outage_fails_only_calls_made_while_down(self, redis_cache, mock_redis_client):
        mock_redis_client.setex.side_effect = [ConnectionError("down"), True]

        assert await redis_cache.set("k", b"v", 10) is False
        assert not redis_cache.is_connected()
        assert await redis_cache.set("k", b"v", 10) is True
        assert redis_cache.is_connected()

    async def test_shutdown_closes_client(self, redis_cache, mock_redis_client):
        await redis_cache.shutdown()

        mock_redis_client.aclose.assert_called_once()
        assert not redis_cache.is_connected()
        assert await redis_cache.get("k") is None

    async def test_create_cache_without_url(self):
        assert await create_cache(None) is None

    async def test_create_cache_with_url(self, mock_redis_client):
        with patch('src.services.cache_service.redis.from_url', return_value=mock_redis_client):
            cache = await create_cache("redis://localhost:6379/0", timeout=1.5)

        assert cache.is_connected()
        assert cache.config.operation_timeout == 1.5

    async def test_create_cache_with_server_down(self, mock_redis_client):
        mock_redis_client.ping.side_effect = ConnectionError("Connection refused")
        with patch('src.services.cache_service.redis.from_url', return_value=mock_redis_client):
            cache = await create_cache("redis://localhost:6379/0")

        assert cache is not None
        assert not cache.is_connected()


class TestRedisCacheOperations:

    async def test_get_bytes(self, redis_cache, mock_redis_client):
        mock_redis_client.get.return_value = b'{"telegram_id": 1}'

        assert await redis_cache.get("session:1") == b'{"telegram_id": 1}'
        mock_redis_client.get.assert_called_once_with("session:1")

    async def test_get_str_is_encoded(self, redis_cache, mock_redis_client):
        mock_redis_client.get.return_value = "plain"
        assert await redis_cache.get("k") == b"plain"

    async def test_get_miss(self, redis_cache):
        assert await redis_cache.get("missing") is None

    async def test_set_with_ttl(self, redis_cache, mock_redis_client):
        assert await redis_cache.set("session:1", b"data", 3600) is True
        mock_redis_client.setex.assert_called_once_with("session:1", 3600, b"data")

    async def test_set_without_ttl(self, redis_cache, mock_redis_client):
        assert await redis_cache.set("k", b"data", 0) is True
        mock_redis_client.set.assert_called_once_with("k", b"data")

    async def test_delete(self, redis_cache, mock_redis_client):
        assert await redis_cache.delete("k") is True
        mock_redis_client.delete.assert_called_once_with("k")

    async def test_get_error_is_reported_as_miss(self, redis_cache, mock_redis_client, caplog):
        mock_redis_client.get.side_effect = ConnectionError("Connection reset")

        with caplog.at_level(logging.WARNING):
            assert await redis_cache.get("k") is None

        assert any("Connection reset" in r.getMessage() for r in caplog.records)

    async def test_set_error_is_reported_as_failure(self, redis_cache, mock_redis_client):
        mock_redis_client.setex.side_effect = ConnectionError("Connection refused")
        assert await redis_cache.set("k", b"v", 10) is False

    async def test_delete_error_is_reported_as_failure(self, redis_cache, mock_redis_client):
        mock_redis_client.delete.side_effect = OSError("broken pipe")
        assert await redis_cache.delete("k") is False

    async def test_slow_server_times_out(self, redis_cache, mock_redis_client, caplog):
        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        mock_redis_client.get.side_effect = hang

        with caplog.at_level(logging.WARNING):
            result = await asyncio.wait_for(redis_cache.get("k"), timeout=2)

        assert result is None
        assert any("timed out" in r.getMessage() for r in caplog.records)


class TestRedisCacheHealth:

    async def test_connected(self, redis_cache):
        health = await redis_cache.health_check()
        assert health["healthy"] is True
        assert health["status"] == "connected"

    async def test_ping_failure(self, redis_cache, mock_redis_client):
        mock_redis_client.ping.side_effect = ConnectionError("down")
        health = await redis_cache.health_check()

        assert health["healthy"] is False
        assert health["status"] == "error"

    async def test_not_connected(self, mock_config):
        cache = RedisCache(mock_config)
        health = await cache.health_check()

        assert health["status"] == "not_connected"
        assert health["healthy"] is False


class TestMemoryCache:

    async def test_set_get_delete(self, memory_cache):
        assert await memory_cache.set("k", b"v", 10) is True
        assert await memory_cache.get("k") == b"v"
        assert await memory_cache.delete("k") is True
        assert await memory_cache.get("k") is None

    async def test_entry_expires(self, memory_cache, clock):
        await memory_cache.set("k", b"v", 10)

        clock.advance(10)
        assert await memory_cache.get("k") is None
        assert len(memory_cache) == 0

    async def test_zero_ttl_never_expires(self, memory_cache, clock):
        await memory_cache.set("k", b"v", 0)
        clock.advance(10 ** 6)
        assert await memory_cache.get("k") == b"v"

    async def test_purge_expired(self, memory_cache, clock):
        await memory_cache.set("a", b"1", 5)
        await memory_cache.set("b", b"2", 50)

        clock.advance(10)

        assert memory_cache.purge_expired() == 1
        assert len(memory_cache) == 1
        assert await memory_cache.get("b") == b"2"
