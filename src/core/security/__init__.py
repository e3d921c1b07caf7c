"""
Security layer: admission control in front of the business handlers.

- Sliding window rate limiting per caller
- Single-identity super admin authorization with audit trail
"""

from .rate_limiter import RateLimiter
from .authorization import AuthorizationGate, AuditEntry

__all__ = [
    'RateLimiter',
    'AuthorizationGate',
    'AuditEntry',
]
