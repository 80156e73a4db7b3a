"""
Error hierarchy for storage operations.

All storage exceptions inherit from StorageError and carry a details dict.
Stale writes raise ``pharmflow.core.exceptions.ConcurrencyConflict`` instead,
since callers treat them as retryable workflow conflicts.
"""

from typing import Any

from pharmflow.core.exceptions import PharmFlowError


class StorageError(PharmFlowError):
    """Base exception for all storage operations."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class NotFoundError(StorageError):
    """
    Requested item not found in storage.

    Raised when:
    - Prescription not found by ID
    - Transition committed for an unknown prescription
    """

    def __init__(
        self,
        message: str = "Item not found",
        item_type: str | None = None,
        item_id: str | None = None,
        **details,
    ):
        super().__init__(
            message,
            details={"item_type": item_type, "item_id": item_id, **details},
        )
        self.item_type = item_type
        self.item_id = item_id


class DuplicateError(StorageError):
    """Item with the same identifier already exists."""

    def __init__(
        self,
        message: str = "Item already exists",
        item_type: str | None = None,
        item_id: str | None = None,
        **details,
    ):
        super().__init__(
            message,
            details={"item_type": item_type, "item_id": item_id, **details},
        )
        self.item_type = item_type
        self.item_id = item_id
