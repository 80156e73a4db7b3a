from pharmflow.audit.base import AuditAction, AuditLogger, RetentionService
from pharmflow.audit.memory import AuditRecord, InMemoryAuditLogger, InMemoryRetentionService

__all__ = [
    "AuditAction",
    "AuditLogger",
    "AuditRecord",
    "InMemoryAuditLogger",
    "InMemoryRetentionService",
    "RetentionService",
]
