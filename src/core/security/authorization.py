"""
Super admin authorization.

Privilege is an exact identity match against one configured value.
There is no role hierarchy, no delegation and no remembered grant:
every privileged action calls the gate again.
"""

from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Union

from pydantic import BaseModel

from src.core.exceptions import Unauthorized, ConfigurationError
from src.core.logging_config import get_audit_logger

audit_logger = get_audit_logger()

Identity = Union[int, str]


class AuditEntry(BaseModel):
    user_id: str
    action: str
    granted: bool
    timestamp: datetime


class AuthorizationGate:
    """
    Grants admin capability to exactly one identity value.

    Args:
        admin_id: The configured super admin identity. Compared by type
            and value, so ``"0042"``, ``" 42"`` and ``42`` never match ``"42"``.
        audit_size: Number of recent decisions kept in memory
    """

    def __init__(self, admin_id: Identity, audit_size: int = 1000):
        if isinstance(admin_id, bool) or admin_id is None or admin_id == "":
            raise ConfigurationError("Super admin id must be a non-empty value", component="authorization")
        self._admin_id = admin_id
        self._recent: Deque[AuditEntry] = deque(maxlen=audit_size)

    def is_authorized(self, user_id: Any, action: str = "admin") -> bool:
        """Exact match check. Every call is audited."""
        granted = (
            not isinstance(user_id, bool)
            and type(user_id) is type(self._admin_id)
            and user_id == self._admin_id
        )
        self._audit(user_id, action, granted)
        return granted

    def require(self, user_id: Any, action: str = "admin") -> None:
        """Raise Unauthorized unless ``user_id`` is the super admin"""
        if not self.is_authorized(user_id, action):
            raise Unauthorized(user_id=user_id, action=action)

    def _audit(self, user_id: Any, action: str, granted: bool) -> None:
        entry = AuditEntry(
            user_id=repr(user_id),
            action=action,
            granted=granted,
            timestamp=datetime.now(timezone.utc),
        )
        self._recent.append(entry)

        if granted:
            audit_logger.info(
                f"GRANTED action={action} user={entry.user_id} at={entry.timestamp.isoformat()}"
            )
        else:
            audit_logger.warning(
                f"DENIED action={action} user={entry.user_id} at={entry.timestamp.isoformat()}"
            )

    @property
    def recent_decisions(self) -> List[AuditEntry]:
        return list(self._recent)

    def get_metrics(self) -> Dict[str, int]:
        granted = sum(1 for entry in self._recent if entry.granted)
        return {
            "recent_grants": granted,
            "recent_denials": len(self._recent) - granted,
        }
