# src/core/session_store.py
"""
Per-user session persistence with TTL.

The distributed cache (if configured) is tried first on every call.
When a call fails, that call alone falls through to the in-memory map;
there is no permanent mode switch. A copy in the memory map only exists
while the latest primary write for that user has failed, so it always
wins over the primary value on load.

Callers that load, mutate and save must hold ``lock(user_id)`` around
the whole sequence. Locks are per user, so different users never wait
on each other.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from src.models.session_state import Session
from src.services.cache_service import KeyValueCache, MemoryCache
from src.core.exceptions import SessionError, session_error

logger = logging.getLogger(__name__)

KEY_PREFIX = "session:"


class _UserLock:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.holders = 0


class SessionStore:
    """
    Load/save sessions through a KeyValueCache with memory fallback.

    Args:
        cache: Distributed cache, or None for memory-only mode
        fallback: In-process map used when the cache fails or is absent
        default_ttl: TTL in seconds applied when save() gets none
    """

    def __init__(
        self,
        cache: Optional[KeyValueCache] = None,
        fallback: Optional[MemoryCache] = None,
        default_ttl: int = 3600
    ):
        self._cache = cache
        self._fallback = fallback if fallback is not None else MemoryCache()
        self.default_ttl = default_ttl
        self._locks: Dict[int, _UserLock] = {}

        self._fallback_writes = 0
        self._malformed_payloads = 0
        self._unserializable_saves = 0

    @staticmethod
    def key_for(user_id: int) -> str:
        return f"{KEY_PREFIX}{user_id}"

    @property
    def fallback(self) -> MemoryCache:
        return self._fallback

    @asynccontextmanager
    async def lock(self, user_id: int) -> AsyncIterator[None]:
        """Serialize load -> mutate -> save for one user, in arrival order"""
        entry = self._locks.get(user_id)
        if entry is None:
            entry = self._locks[user_id] = _UserLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[user_id]

    async def load(self, user_id: int) -> Session:
        """Return the stored session, or a new empty one. Never raises."""
        key = self.key_for(user_id)

        primary_raw = None
        if self._cache is not None:
            primary_raw = await self._cache.get(key)

        pending_raw = await self._fallback.get(key)
        if pending_raw is not None:
            session = self._decode(user_id, pending_raw)
            if session is not None:
                if primary_raw is not None:
                    # Primary is reachable again and holds an older copy
                    await self._write_back(key, pending_raw)
                return session

        if primary_raw is not None:
            session = self._decode(user_id, primary_raw)
            if session is not None:
                return session

        logger.debug(f"No session for user {user_id}, starting empty")
        return Session.empty(user_id)

    async def save(self, user_id: int, session: Session, ttl: Optional[int] = None) -> None:
        """Persist session. Degrades to memory silently on cache failure."""
        ttl = ttl or self.default_ttl
        key = self.key_for(user_id)
        try:
            raw = session.model_dump_json().encode("utf-8")
        except (PydanticSerializationError, ValueError, TypeError) as e:
            # The previously stored copy stays in place
            self._unserializable_saves += 1
            error = session_error(f"Session is not serializable, not saved: {e}", user_id=user_id)
            logger.error(str(error))
            return

        if self._cache is not None and await self._cache.set(key, raw, ttl):
            await self._fallback.delete(key)
            return

        if self._cache is not None:
            self._fallback_writes += 1
            logger.warning(f"Cache write failed for user {user_id}, keeping session in memory")
        await self._fallback.set(key, raw, ttl)

    async def delete(self, user_id: int) -> None:
        key = self.key_for(user_id)
        if self._cache is not None:
            await self._cache.delete(key)
        await self._fallback.delete(key)

    async def _write_back(self, key: str, raw: bytes) -> None:
        if await self._cache.set(key, raw, self.default_ttl):
            await self._fallback.delete(key)
            logger.info(f"Restored {key} from memory fallback to cache")

    def _decode(self, user_id: int, raw: bytes) -> Optional[Session]:
        try:
            session = Session.model_validate_json(raw)
            if session.telegram_id != user_id:
                raise session_error(
                    f"Stored session belongs to user {session.telegram_id}",
                    user_id=user_id
                )
            return session
        except (ValidationError, SessionError) as e:
            self._malformed_payloads += 1
            logger.warning(f"Discarding malformed session payload for user {user_id}: {e}")
            return None

    def get_metrics(self) -> Dict[str, int]:
        return {
            "memory_sessions": len(self._fallback),
            "active_locks": len(self._locks),
            "fallback_writes": self._fallback_writes,
            "malformed_payloads": self._malformed_payloads,
            "unserializable_saves": self._unserializable_saves,
        }
