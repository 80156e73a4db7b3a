"""
In-memory storage implementation.

Provides a simple backend for development and testing. Not suitable for
production use as state is lost on process restart.
"""

import asyncio
from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import Any

from pharmflow.compliance.ledger import LedgerEntry
from pharmflow.core.exceptions import ConcurrencyConflict
from pharmflow.storage.base import PharmacyStorage
from pharmflow.storage.errors import DuplicateError, NotFoundError
from pharmflow.workflow.states import WorkflowState
from pharmflow.workflow.types import Prescription, StateChange


class InMemoryPharmacyStorage(PharmacyStorage):
    """
    In-memory implementation of pharmacy storage.

    A single asyncio.Lock makes every write atomic with respect to other
    coroutines on the same loop.
    """

    def __init__(self):
        self._prescriptions: dict[str, Prescription] = {}
        self._history: dict[str, list[StateChange]] = defaultdict(list)
        self._ledger: dict[tuple[str, str], list[LedgerEntry]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def get_prescription(self, prescription_id: str) -> Prescription | None:
        async with self._lock:
            return self._prescriptions.get(prescription_id)

    async def create_prescription(
        self, prescription: Prescription, state_change: StateChange
    ) -> Prescription:
        async with self._lock:
            if prescription.id in self._prescriptions:
                msg = f"Prescription {prescription.id} already exists"
                raise DuplicateError(msg, item_type="prescription", item_id=prescription.id)

            stored = prescription.evolve(version=1)
            self._prescriptions[stored.id] = stored
            self._history[stored.id].append(state_change)
            return stored

    async def commit_transition(
        self,
        prescription: Prescription,
        *,
        expected_version: int,
        state_change: StateChange | None = None,
        ledger_entries: Sequence[LedgerEntry] = (),
    ) -> Prescription:
        async with self._lock:
            current = self._prescriptions.get(prescription.id)
            if current is None:
                msg = f"Prescription {prescription.id} not found"
                raise NotFoundError(msg, item_type="prescription", item_id=prescription.id)
            if current.version != expected_version:
                msg = (
                    f"Prescription {prescription.id} changed since it was read "
                    f"(expected version {expected_version}, found {current.version})"
                )
                raise ConcurrencyConflict(prescription.id, msg)

            # Validate everything before mutating anything
            self._check_ledger_continuity(ledger_entries)

            stored = prescription.evolve(version=expected_version + 1)
            self._prescriptions[stored.id] = stored
            if state_change is not None:
                self._history[stored.id].append(state_change)
            for entry in ledger_entries:
                self._ledger[entry.key].append(entry)
            return stored

    async def list_prescriptions(
        self,
        pharmacy_id: str | None = None,
        states: Iterable[WorkflowState] | None = None,
        include_archived: bool = False,
    ) -> list[Prescription]:
        wanted = frozenset(states) if states is not None else None
        async with self._lock:
            return [
                rx
                for rx in self._prescriptions.values()
                if (pharmacy_id is None or rx.pharmacy_id == pharmacy_id)
                and (wanted is None or rx.state in wanted)
                and (include_archived or not rx.archived)
            ]

    async def get_history(self, prescription_id: str) -> list[StateChange]:
        async with self._lock:
            return list(self._history.get(prescription_id, []))

    async def append_ledger_entries(self, entries: Sequence[LedgerEntry]) -> None:
        async with self._lock:
            self._check_ledger_continuity(entries)
            for entry in entries:
                self._ledger[entry.key].append(entry)

    async def get_ledger(self, pharmacy_id: str, ndc: str) -> list[LedgerEntry]:
        async with self._lock:
            return list(self._ledger.get((pharmacy_id, ndc), []))

    async def get_balance(self, pharmacy_id: str, ndc: str) -> float:
        async with self._lock:
            return self._balance((pharmacy_id, ndc))

    async def get_statistics(self) -> dict[str, Any]:
        async with self._lock:
            by_state: dict[str, int] = defaultdict(int)
            for rx in self._prescriptions.values():
                by_state[rx.state.value] += 1
            return {
                "prescriptions": len(self._prescriptions),
                "by_state": dict(by_state),
                "archived": sum(1 for rx in self._prescriptions.values() if rx.archived),
                "ledger_keys": len(self._ledger),
                "ledger_entries": sum(len(entries) for entries in self._ledger.values()),
            }

    def _balance(self, key: tuple[str, str]) -> float:
        entries = self._ledger.get(key)
        return entries[-1].running_balance if entries else 0

    def _check_ledger_continuity(self, entries: Sequence[LedgerEntry]) -> None:
        """Each entry must start from the balance the previous one left."""
        pending: dict[tuple[str, str], float] = {}
        for entry in entries:
            expected = pending.get(entry.key, self._balance(entry.key))
            if entry.balance_before != expected:
                msg = (
                    f"Ledger for {entry.pharmacy_id}/{entry.ndc} moved: entry computed from "
                    f"{entry.balance_before}, stored balance is {expected}"
                )
                raise ConcurrencyConflict(f"ledger:{entry.pharmacy_id}:{entry.ndc}", msg)
            pending[entry.key] = entry.running_balance
