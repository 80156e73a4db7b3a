"""
Audit and retention collaborators.

The dispensing core writes to an audit sink and consults a retention
service; persistence of both is owned elsewhere.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any

from pharmflow.types import Actor


class AuditAction(Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    PRESCRIPTION_FILL = "PRESCRIPTION_FILL"
    PRESCRIPTION_VERIFY = "PRESCRIPTION_VERIFY"
    PRESCRIPTION_DISPENSE = "PRESCRIPTION_DISPENSE"
    PRESCRIPTION_RETURN = "PRESCRIPTION_RETURN"
    NOTIFICATION_SENT = "NOTIFICATION_SENT"
    OVERRIDE = "OVERRIDE"
    CS_TRANSACTION = "CS_TRANSACTION"
    ARCHIVE = "ARCHIVE"


class AuditLogger(ABC):
    """Sink for audit events."""

    @abstractmethod
    async def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: str,
        actor: Actor,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Record an audit event.

        Implementations may raise; the workflow treats failures as a degraded
        mode and never blocks a committed transition on them.
        """


class RetentionService(ABC):
    """Decides whether records may leave the active set."""

    @abstractmethod
    async def is_on_legal_hold(self, resource_type: str, resource_id: str) -> bool:
        """True if the record is frozen by a legal hold."""

    @abstractmethod
    async def can_archive(
        self,
        resource_type: str,
        resource_id: str,
        *,
        terminal_at: datetime | None = None,
        now: datetime | None = None,
    ) -> bool:
        """True if the record may be archived now."""
