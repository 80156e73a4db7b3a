"""
Storage interface for prescriptions, transition history and the
controlled-substance ledger.

Backends must make ``commit_transition`` atomic: the new prescription state,
its state-change record and any ledger entries are persisted together or not
at all.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import Any

from pharmflow.compliance.ledger import LedgerEntry
from pharmflow.workflow.states import WorkflowState
from pharmflow.workflow.types import Prescription, StateChange


class PharmacyStorage(ABC):
    """Abstract base class for pharmacy dispensing persistence."""

    @abstractmethod
    async def get_prescription(self, prescription_id: str) -> Prescription | None:
        """
        Load a prescription.

        Returns:
            The prescription or None if not found
        """

    @abstractmethod
    async def create_prescription(
        self, prescription: Prescription, state_change: StateChange
    ) -> Prescription:
        """
        Persist a new prescription with its intake history entry.

        Returns:
            The stored prescription (version 1)

        Raises:
            DuplicateError: If the id is already taken
        """

    @abstractmethod
    async def commit_transition(
        self,
        prescription: Prescription,
        *,
        expected_version: int,
        state_change: StateChange | None = None,
        ledger_entries: Sequence[LedgerEntry] = (),
    ) -> Prescription:
        """
        Atomically replace a prescription and append history and ledger entries.

        Args:
            prescription: New prescription state
            expected_version: Version the caller read; the write fails if it changed
            state_change: History record for a state transition, if any
            ledger_entries: Ledger entries computed from the stored balances

        Returns:
            The stored prescription with its version bumped

        Raises:
            NotFoundError: If the prescription does not exist
            ConcurrencyConflict: On a stale version or a stale ledger balance
        """

    @abstractmethod
    async def list_prescriptions(
        self,
        pharmacy_id: str | None = None,
        states: Iterable[WorkflowState] | None = None,
        include_archived: bool = False,
    ) -> list[Prescription]:
        """List prescriptions with optional filtering."""

    @abstractmethod
    async def get_history(self, prescription_id: str) -> list[StateChange]:
        """State changes for a prescription, oldest first."""

    @abstractmethod
    async def append_ledger_entries(self, entries: Sequence[LedgerEntry]) -> None:
        """
        Append ledger entries that are not tied to a prescription transition.

        Raises:
            ConcurrencyConflict: If an entry's balance_before is not the stored balance
        """

    @abstractmethod
    async def get_ledger(self, pharmacy_id: str, ndc: str) -> list[LedgerEntry]:
        """Ledger entries for one (pharmacy, NDC) key in append order."""

    @abstractmethod
    async def get_balance(self, pharmacy_id: str, ndc: str) -> float:
        """Current running balance; 0 for a key with no entries."""

    async def get_statistics(self) -> dict[str, Any]:
        """Storage statistics; backends may override."""
        return {}

    async def close(self) -> None:  # noqa: B027
        """Release resources; no-op by default."""

    async def __aenter__(self) -> "PharmacyStorage":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
