# src/core/exceptions.py
"""
Core exceptions for the admission control layer.

Only business-meaningful outcomes cross component boundaries:
rate limited, unauthorized, handler failed. Infrastructure problems
(CacheUnavailable) are absorbed by the layer that can degrade.
"""

from typing import Optional, Dict, Any, Union


class BotBaseException(Exception):
    """Base exception for all bot backend errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            details: Optional additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class RateLimitExceeded(BotBaseException):
    """Caller exceeded the sliding window. Soft and recoverable."""

    def __init__(
        self,
        message: str = "Too many requests",
        key: Optional[Any] = None,
        retry_after: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.key = key
        self.retry_after = retry_after

        if key is not None:
            self.details['key'] = str(key)
        if retry_after is not None:
            self.details['retry_after'] = round(retry_after, 3)


class CacheUnavailable(BotBaseException):
    """Cache backend timed out, refused the connection or returned garbage"""

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize cache error.

        Args:
            message: Error description
            backend: Name of the cache backend
            operation: Operation that failed (get/set/delete)
            key: Cache key involved
            details: Additional context
        """
        super().__init__(message, details)
        self.backend = backend
        self.operation = operation
        self.key = key

        if backend:
            self.details['backend'] = backend
        if operation:
            self.details['operation'] = operation
        if key:
            self.details['key'] = key


class Unauthorized(BotBaseException):
    """Caller is not the configured super admin"""

    def __init__(
        self,
        message: str = "Access denied",
        user_id: Optional[Union[int, str]] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.user_id = user_id
        self.action = action

        if user_id is not None:
            self.details['user_id'] = str(user_id)
        if action:
            self.details['action'] = action


class HandlerFailure(BotBaseException):
    """A business handler raised while processing an event"""

    def __init__(
        self,
        message: str,
        event_type: Optional[str] = None,
        user_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize handler failure.

        Args:
            message: Error description
            event_type: Type of the inbound event
            user_id: Caller whose event failed
            details: Additional context (original error, type)
        """
        super().__init__(message, details)
        self.event_type = event_type
        self.user_id = user_id

        if event_type:
            self.details['event_type'] = event_type
        if user_id is not None:
            self.details['user_id'] = user_id


class ConfigurationError(BotBaseException):
    """Errors in system configuration and initialization"""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.component = component

        if component:
            self.details['component'] = component


class SessionError(BotBaseException):
    """Stored session payload could not be decoded"""

    def __init__(
        self,
        message: str,
        user_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.user_id = user_id

        if user_id is not None:
            self.details['user_id'] = user_id


# Convenience functions for creating common errors

def cache_error(message: str, backend: str, operation: str = None, key: str = None) -> CacheUnavailable:
    """Create a cache error with backend context."""
    return CacheUnavailable(message, backend=backend, operation=operation, key=key)


def config_error(message: str, component: str) -> ConfigurationError:
    """Create a configuration error with component context."""
    return ConfigurationError(message, component=component)


def session_error(message: str, user_id: int) -> SessionError:
    """Create a session error with user context."""
    return SessionError(message, user_id=user_id)
