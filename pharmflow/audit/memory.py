"""In-memory audit sink and retention policy for development and tests."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pharmflow.audit.base import AuditAction, AuditLogger, RetentionService
from pharmflow.core.clock import resolve_now, utcnow
from pharmflow.types import Actor


@dataclass(frozen=True)
class AuditRecord:
    action: AuditAction
    resource_type: str
    resource_id: str
    actor_id: str
    details: dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=utcnow)


class InMemoryAuditLogger(AuditLogger):
    """Keeps audit records in a list."""

    def __init__(self):
        self.records: list[AuditRecord] = []

    async def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: str,
        actor: Actor,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.records.append(
            AuditRecord(action, resource_type, resource_id, actor.id, dict(details or {}))
        )

    def for_resource(self, resource_id: str) -> list[AuditRecord]:
        return [r for r in self.records if r.resource_id == resource_id]


class InMemoryRetentionService(RetentionService):
    """
    Legal holds plus a minimum dwell time in a terminal state.

    Args:
        min_terminal_days: Days a record must sit in a terminal state before archiving
    """

    def __init__(self, min_terminal_days: int = 0):
        self.min_terminal_days = min_terminal_days
        self._holds: set[tuple[str, str]] = set()

    def place_hold(self, resource_type: str, resource_id: str) -> None:
        self._holds.add((resource_type, resource_id))

    def release_hold(self, resource_type: str, resource_id: str) -> None:
        self._holds.discard((resource_type, resource_id))

    async def is_on_legal_hold(self, resource_type: str, resource_id: str) -> bool:
        return (resource_type, resource_id) in self._holds

    async def can_archive(
        self,
        resource_type: str,
        resource_id: str,
        *,
        terminal_at: datetime | None = None,
        now: datetime | None = None,
    ) -> bool:
        if await self.is_on_legal_hold(resource_type, resource_id):
            return False
        if terminal_at is None or self.min_terminal_days <= 0:
            return True
        return resolve_now(now) - terminal_at >= timedelta(days=self.min_terminal_days)
