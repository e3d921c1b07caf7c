"""
Rate limiting configuration for the bot and the HTTP API
"""

from typing import AbstractSet

from fastapi import Request

from src.core.config import Settings
from src.core.security import RateLimiter

# Custom error messages
RATE_LIMIT_MESSAGES = {
    "global": "Rate limit exceeded",
    "bot": "Too many requests. Please wait a moment and try again.",
    "api": "API rate limit exceeded",
}


def get_real_ip(request: Request, trusted_proxies: AbstractSet[str] = frozenset()) -> str:
    """
    Get the real client IP address.

    Proxy headers are only believed when the direct peer is one of
    ``trusted_proxies``; anyone else could simply make them up. The
    forwarded chain is walked from the right and the first address that
    is not a trusted proxy is the client.
    """
    peer = request.client.host if request.client else "unknown"
    if peer not in trusted_proxies:
        return peer

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        hops = [ip.strip() for ip in forwarded_for.split(",") if ip.strip()]
        for ip in reversed(hops):
            if ip not in trusted_proxies:
                return ip
        if hops:
            return hops[0]

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return peer


def build_global_limiter(settings: Settings) -> RateLimiter:
    """Per-ip limiter applied to every route, public ones included"""
    return RateLimiter(
        window_ms=settings.GLOBAL_RATE_LIMIT_WINDOW_MS,
        max_requests=settings.GLOBAL_RATE_LIMIT_MAX,
        name="global",
    )


def build_bot_limiter(settings: Settings) -> RateLimiter:
    """Per-user limiter applied to every inbound bot event"""
    return RateLimiter(
        window_ms=settings.RATE_LIMIT_WINDOW_MS,
        max_requests=settings.RATE_LIMIT_MAX,
        name="bot",
    )


def build_api_limiter(settings: Settings) -> RateLimiter:
    """Per-ip limiter for /api and /admin routes (admin bypass is checked by the caller)"""
    return RateLimiter(
        window_ms=settings.API_RATE_LIMIT_WINDOW_MS,
        max_requests=settings.API_RATE_LIMIT_MAX,
        name="api",
    )


def get_rate_limit_message(scope: str) -> str:
    return RATE_LIMIT_MESSAGES.get(scope, RATE_LIMIT_MESSAGES["bot"])
