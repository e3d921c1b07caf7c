# src/models/event_models.py

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel

from src.models.session_state import UserIdentity


class EventType(str, Enum):
    COMMAND = "command"
    CALLBACK = "callback"
    MESSAGE = "message"
    PHOTO = "photo"
    LOCATION = "location"


class InboundEvent(BaseModel):
    """Event delivered by the transport for one user"""
    user_id: int
    username: Optional[str] = None
    type: EventType
    payload: Any = None

    @property
    def identity(self) -> UserIdentity:
        return UserIdentity(id=self.user_id, username=self.username)
