"""Persistence interfaces and the in-memory backend."""

from pharmflow.storage.base import PharmacyStorage
from pharmflow.storage.errors import DuplicateError, NotFoundError, StorageError
from pharmflow.storage.memory import InMemoryPharmacyStorage

__all__ = [
    "DuplicateError",
    "InMemoryPharmacyStorage",
    "NotFoundError",
    "PharmacyStorage",
    "StorageError",
]
