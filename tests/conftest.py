# tests/conftest.py
"""
Shared fixtures: a controllable clock and in-test cache backends.
"""

import asyncio
from typing import Dict, Optional

import pytest

from src.core.config import Settings
from src.core.security import AuthorizationGate, RateLimiter
from src.core.session_store import SessionStore
from src.core.pipeline import MiddlewarePipeline
from src.services.cache_service import KeyValueCache, MemoryCache

ADMIN_ID = "6650827406"
TRANSPORT_SECRET = "transport-secret"


class FakeClock:
    """Monotonic clock the tests move by hand"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DictCache(KeyValueCache):
    """
    Distributed cache stand-in.

    Yields to the event loop on every call so concurrent tasks
    interleave the way they would around real network I/O.
    ``online = False`` makes every call fail like an unreachable server.
    """

    backend_name = "dict"

    def __init__(self):
        self.data: Dict[str, bytes] = {}
        self.ttls: Dict[str, int] = {}
        self.online = True

    async def get(self, key: str) -> Optional[bytes]:
        await asyncio.sleep(0)
        if not self.online:
            return None
        return self.data.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        await asyncio.sleep(0)
        if not self.online:
            return False
        self.data[key] = value
        self.ttls[key] = ttl_seconds
        return True

    async def delete(self, key: str) -> bool:
        await asyncio.sleep(0)
        if not self.online:
            return False
        self.data.pop(key, None)
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dict_cache():
    return DictCache()


@pytest.fixture
def memory_cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def gate():
    return AuthorizationGate(ADMIN_ID)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        SUPER_ADMIN_ID=ADMIN_ID,
        TRANSPORT_SECRET=TRANSPORT_SECRET,
        LOG_DIR=str(tmp_path / "logs"),
    )


@pytest.fixture
def make_pipeline(gate, clock):
    """Factory for a pipeline over a given cache with a fake clock"""

    def _make(cache: Optional[KeyValueCache] = None, window_ms: int = 60_000, max_requests: int = 30):
        store = SessionStore(cache=cache, fallback=MemoryCache(clock=clock), default_ttl=3600)
        limiter = RateLimiter(window_ms=window_ms, max_requests=max_requests, clock=clock)
        return MiddlewarePipeline(
            rate_limiter=limiter,
            session_store=store,
            gate=gate,
            session_ttl=3600,
        )

    return _make
