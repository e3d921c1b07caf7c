# src/core/orchestrator.py
"""
Wires the admission control components together.

Everything is constructed once at startup and handed to the HTTP layer
through ``app.state``; nothing here is a module-level singleton.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from src.core.config import Settings, validate_required_settings
from src.core.pipeline import MiddlewarePipeline
from src.core.rate_limit_config import build_api_limiter, build_bot_limiter, build_global_limiter
from src.core.security import AuthorizationGate, RateLimiter
from src.core.session_store import SessionStore
from src.handlers.bot_handlers import register_default_handlers
from src.services.cache_service import MemoryCache, RedisCache, create_cache

logger = logging.getLogger(__name__)


class Orchestrator:
    """Owns the cache, session store, limiters, gate and pipeline"""

    def __init__(
        self,
        settings: Settings,
        cache: Optional[RedisCache] = None,
        fallback: Optional[MemoryCache] = None
    ):
        self.settings = settings
        self.cache = cache
        self.fallback = fallback if fallback is not None else MemoryCache()

        self.session_store = SessionStore(
            cache=cache,
            fallback=self.fallback,
            default_ttl=settings.SESSION_TTL_SECONDS,
        )
        self.global_limiter: RateLimiter = build_global_limiter(settings)
        self.bot_limiter: RateLimiter = build_bot_limiter(settings)
        self.api_limiter: RateLimiter = build_api_limiter(settings)
        self.gate = AuthorizationGate(settings.SUPER_ADMIN_ID)

        self.pipeline = register_default_handlers(MiddlewarePipeline(
            rate_limiter=self.bot_limiter,
            session_store=self.session_store,
            gate=self.gate,
            session_ttl=settings.SESSION_TTL_SECONDS,
        ))

        logger.info(
            f"Orchestrator ready (cache={'redis' if cache else 'memory'}, "
            f"global limit {settings.GLOBAL_RATE_LIMIT_MAX}/{settings.GLOBAL_RATE_LIMIT_WINDOW_MS}ms, "
            f"bot limit {settings.RATE_LIMIT_MAX}/{settings.RATE_LIMIT_WINDOW_MS}ms, "
            f"api limit {settings.API_RATE_LIMIT_MAX}/{settings.API_RATE_LIMIT_WINDOW_MS}ms)"
        )

    def run_maintenance(self) -> Dict[str, int]:
        """Reclaim idle rate windows and expired memory sessions"""
        return {
            "global_windows_swept": self.global_limiter.sweep(),
            "bot_windows_swept": self.bot_limiter.sweep(),
            "api_windows_swept": self.api_limiter.sweep(),
            "memory_sessions_purged": self.fallback.purge_expired(),
        }

    async def maintenance_loop(self, interval: float = 60.0) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                stats = self.run_maintenance()
            except Exception:
                logger.error("Maintenance pass failed", exc_info=True)
                continue
            if any(stats.values()):
                logger.info(f"Maintenance: {stats}")

    async def health_check(self) -> Dict[str, Any]:
        health_status: Dict[str, Any] = {"overall": "healthy", "services": {}}

        if self.cache is None:
            health_status["services"]["cache"] = "memory_only"
        else:
            cache_status = await self.cache.health_check()
            health_status["services"]["cache"] = cache_status["status"]
            if not cache_status.get("healthy"):
                # Sessions degrade to memory, the service keeps running
                health_status["overall"] = "degraded"

        return health_status

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "sessions": self.session_store.get_metrics(),
            "global_rate_limit": self.global_limiter.get_metrics(),
            "bot_rate_limit": self.bot_limiter.get_metrics(),
            "api_rate_limit": self.api_limiter.get_metrics(),
            "authorization": self.gate.get_metrics(),
        }

    async def shutdown(self) -> None:
        if self.cache is not None:
            await self.cache.shutdown()


async def init_orchestrator(settings: Settings) -> Orchestrator:
    """Validate settings, connect the cache and build the orchestrator"""
    validate_required_settings(settings)
    cache = await create_cache(settings.CACHE_BACKEND_URL, timeout=settings.CACHE_TIMEOUT_SECONDS)
    return Orchestrator(settings, cache=cache)
