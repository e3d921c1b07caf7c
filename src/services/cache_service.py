# src/services/cache_service.py
"""
Key-value cache backends used by the session store.

Two interchangeable implementations of one contract:
- RedisCache: distributed, every call bounded by a timeout
- MemoryCache: in-process dict with best-effort TTL

No method raises. Connection errors, timeouts and protocol errors are
logged and reported as ``None`` (get) or ``False`` (set/delete).
"""
import asyncio
import threading
import time
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Dict, Any, Callable, Tuple, Awaitable

import redis.asyncio as redis

from src.core.exceptions import CacheUnavailable, cache_error, config_error

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class KeyValueCache(ABC):
    """Uniform get/set/delete over a cache backend"""

    backend_name = "cache"

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None on miss or failure"""

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        """Store value with a TTL. Returns False on failure."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove key. Returns False on failure."""


class MemoryCache(KeyValueCache):
    """
    In-process cache.

    Used as the fallback behind RedisCache, or alone when no
    distributed backend is configured. Expired entries are dropped on
    read and by purge_expired().
    """

    backend_name = "memory"

    def __init__(self, clock: Clock = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[bytes]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= now:
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._entries[key] = (value, expires_at)
        return True

    async def delete(self, key: str) -> bool:
        with self._lock:
            self._entries.pop(key, None)
        return True

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [
                key for key, (_, expires_at) in self._entries.items()
                if expires_at is not None and expires_at <= now
            ]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired memory cache entries")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class RedisConfig:
    """Connection settings for the Redis backend"""
    url: str
    operation_timeout: float = 2.0
    socket_timeout: float = 2.0
    max_connections: int = 10
    health_check_interval: int = 30


class RedisCache(KeyValueCache):
    """
    Redis-backed cache.

    The asyncio client pools its connections, connects lazily and is
    safe to share between concurrent tasks. It is built once in
    ``connect()`` and reused for the life of the process: an
    unreachable server only fails the calls made while it is down.
    Each operation is wrapped in ``asyncio.wait_for`` so a hung server
    turns into a failure after ``operation_timeout`` seconds.
    """

    backend_name = "redis"

    def __init__(self, config: RedisConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self._client: Optional[redis.Redis] = None
        self._available: Optional[bool] = None

    async def connect(self) -> None:
        """
        Build the client and ping the server once.

        A failed ping is logged, not raised; the next operation simply
        tries again.

        Raises:
            ConfigurationError: If the URL cannot be parsed
        """
        if self._client is not None:
            return

        try:
            self._client = redis.from_url(
                self.config.url,
                decode_responses=False,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_timeout,
                max_connections=self.config.max_connections,
                health_check_interval=self.config.health_check_interval
            )
        except ValueError as e:
            raise config_error(f"Invalid cache backend URL: {e}", component="cache") from e

        ok, _ = await self._run("ping", "", lambda: self._client.ping())
        if ok:
            self.logger.info("Redis connection successful")
        else:
            self.logger.warning("Redis unreachable at startup, sessions use memory until it recovers")

    async def _run(self, operation: str, key: str, call: Callable[[], Awaitable[Any]]) -> Tuple[bool, Any]:
        """Execute one client call. Returns (ok, result)."""
        if self._client is None:
            return False, None

        try:
            try:
                result = await asyncio.wait_for(call(), timeout=self.config.operation_timeout)
            except asyncio.TimeoutError as e:
                raise cache_error(
                    f"Redis {operation} timed out after {self.config.operation_timeout}s",
                    backend=self.backend_name, operation=operation, key=key
                ) from e
            except Exception as e:
                raise cache_error(
                    f"Redis {operation} failed: {e}",
                    backend=self.backend_name, operation=operation, key=key
                ) from e

        except CacheUnavailable as e:
            self.logger.warning(str(e))
            self._available = False
            return False, None

        if self._available is False:
            self.logger.info("Redis connection restored")
        self._available = True
        return True, result

    async def get(self, key: str) -> Optional[bytes]:
        ok, value = await self._run("get", key, lambda: self._client.get(key))
        if not ok or value is None:
            return None
        if isinstance(value, str):
            return value.encode("utf-8")
        return value

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        if ttl_seconds:
            ok, _ = await self._run("set", key, lambda: self._client.setex(key, ttl_seconds, value))
        else:
            ok, _ = await self._run("set", key, lambda: self._client.set(key, value))
        return ok

    async def delete(self, key: str) -> bool:
        ok, _ = await self._run("delete", key, lambda: self._client.delete(key))
        return ok

    def is_connected(self) -> bool:
        """Whether the most recent operation reached the server"""
        return bool(self._available)

    async def health_check(self) -> Dict[str, Any]:
        if self._client is None:
            return {
                "healthy": False,
                "status": "not_connected",
                "details": {"error": "Client not created"}
            }

        ok, _ = await self._run("ping", "", lambda: self._client.ping())
        if not ok:
            return {
                "healthy": False,
                "status": "error",
                "details": {"error": "ping failed"}
            }
        return {"healthy": True, "status": "connected", "details": {}}

    async def shutdown(self) -> None:
        """Close the connection pool. Errors are logged, never raised."""
        if self._client is None:
            return
        try:
            await self._client.aclose()
            self.logger.info("Redis client closed")
        except Exception as e:
            self.logger.warning(f"Error closing Redis client: {e}")
        finally:
            self._client = None
            self._available = None


async def create_cache(
    url: Optional[str],
    timeout: float = 2.0
) -> Optional[RedisCache]:
    """
    Build the distributed cache selected by configuration.

    Returns:
        A RedisCache (reachable or not), or None when no URL is configured
    """
    if not url:
        logger.info("No cache backend configured - using memory-only sessions")
        return None

    cache = RedisCache(RedisConfig(url=url, operation_timeout=timeout, socket_timeout=timeout))
    await cache.connect()
    return cache
