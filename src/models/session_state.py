# src/models/session_state.py

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Conversation role picked by the user. Routes the UI, grants nothing."""
    UNSET = "unset"
    CUSTOMER = "customer"
    STORE_OWNER = "store_owner"
    SHIPPER = "shipper"
    SUPER_ADMIN = "super_admin"


class Location(BaseModel):
    lat: float
    lng: float


class UserIdentity(BaseModel):
    """Caller identity as asserted by the transport"""
    id: int
    username: Optional[str] = None


class Session(BaseModel):
    """
    Short-lived per-user conversation state.

    Known fields are typed; anything else a handler wants to keep goes
    into ``extra``. Unknown top-level fields in a stored payload are
    ignored on load.
    """
    model_config = {"extra": "ignore"}

    telegram_id: int
    username: Optional[str] = None
    role: Role = Role.UNSET
    awaiting_photo: bool = False
    location: Optional[Location] = None
    last_activity: datetime = Field(default_factory=utcnow)
    extra: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def empty(cls, user_id: int) -> "Session":
        """New session seeded with the caller's id"""
        return cls(telegram_id=user_id)

    def touch(self, username: Optional[str] = None) -> None:
        """Record activity and refresh the username the transport reported"""
        self.last_activity = utcnow()
        if username:
            self.username = username
