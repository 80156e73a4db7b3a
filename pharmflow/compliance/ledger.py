"""
Perpetual inventory ledger for controlled substances.

Entries are immutable and append-only. ``record_cs_transaction`` is a pure
function of its inputs: the running balance it computes depends only on the
``current_balance`` the caller supplies, never on previously recorded
entries. Corrections are new entries (usually ``adjustment``).
"""

import uuid
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from pharmflow.core.clock import resolve_now, utcnow
from pharmflow.core.exceptions import ValidationError
from pharmflow.types import CSTransactionType, DeaSchedule

_INCREASES = frozenset(
    {CSTransactionType.RECEIVE, CSTransactionType.RETURN_TO_STOCK, CSTransactionType.TRANSFER_IN}
)
_DECREASES = frozenset(
    {
        CSTransactionType.DISPENSE,
        CSTransactionType.REVERSE_DISTRIBUTION,
        CSTransactionType.DESTRUCTION,
        CSTransactionType.THEFT_LOSS,
        CSTransactionType.TRANSFER_OUT,
    }
)


@dataclass(frozen=True)
class LedgerEntry:
    """
    One perpetual-inventory transaction.

    Attributes:
        quantity: Units moved (for adjustments, the absolute change)
        balance_before: Balance the entry was computed from
        running_balance: Balance after the transaction, never negative
    """

    pharmacy_id: str
    ndc: str
    schedule: DeaSchedule
    transaction_type: CSTransactionType
    quantity: float
    balance_before: float
    running_balance: float
    actor_id: str
    drug_name: str = ""
    actor_name: str = ""
    unit: str = "EA"
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: f"CS-{uuid.uuid4().hex[:16]}")
    prescription_id: str | None = None
    lot_number: str | None = None
    witness_id: str | None = None
    notes: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.pharmacy_id, self.ndc)

    @property
    def signed_change(self) -> float:
        return self.running_balance - self.balance_before

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["schedule"] = self.schedule.value
        data["transaction_type"] = self.transaction_type.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


def signed_delta(
    transaction_type: CSTransactionType, quantity: float, current_balance: float = 0
) -> float:
    """Balance change implied by a transaction of the given type."""
    if transaction_type in _INCREASES:
        return quantity
    if transaction_type in _DECREASES:
        return -quantity
    if transaction_type is CSTransactionType.ADJUSTMENT:
        return quantity - current_balance
    msg = f"Unsupported transaction type: {transaction_type!r}"
    raise ValidationError(msg, field="transaction_type")


def record_cs_transaction(
    pharmacy_id: str,
    ndc: str,
    schedule: DeaSchedule | str,
    transaction_type: CSTransactionType | str,
    quantity: float,
    current_balance: float,
    actor_id: str,
    *,
    drug_name: str = "",
    actor_name: str = "",
    now: datetime | None = None,
    **references: Any,
) -> LedgerEntry:
    """
    Compute a ledger entry for a controlled-substance transaction.

    Args:
        quantity: Units moved; for ``adjustment`` the new physical count
        current_balance: Balance before this transaction
        references: prescription_id, lot_number, witness_id, notes, unit

    Raises:
        ValidationError: On negative quantities or balances, or unknown types
    """
    schedule = DeaSchedule.parse(schedule)
    if not isinstance(transaction_type, CSTransactionType):
        try:
            transaction_type = CSTransactionType(str(transaction_type))
        except ValueError:
            msg = f"Unknown transaction type: {transaction_type!r}"
            raise ValidationError(msg, field="transaction_type") from None
    if quantity < 0:
        msg = f"Quantity must not be negative, got {quantity}"
        raise ValidationError(msg, field="quantity")
    if current_balance < 0:
        msg = f"Current balance must not be negative, got {current_balance}"
        raise ValidationError(msg, field="current_balance")

    change = signed_delta(transaction_type, quantity, current_balance)
    new_balance = max(0, current_balance + change)
    recorded_quantity = abs(change) if transaction_type is CSTransactionType.ADJUSTMENT else quantity

    return LedgerEntry(
        pharmacy_id=pharmacy_id,
        ndc=ndc,
        schedule=schedule,
        transaction_type=transaction_type,
        quantity=recorded_quantity,
        balance_before=current_balance,
        running_balance=new_balance,
        actor_id=actor_id,
        actor_name=actor_name,
        drug_name=drug_name,
        timestamp=resolve_now(now),
        **references,
    )


def fold_ledger(entries: Iterable[LedgerEntry], opening_balance: float = 0) -> float:
    """
    Replay entries in order and return the final balance.

    A consistent ledger satisfies ``fold_ledger(entries) == entries[-1].running_balance``.
    """
    balance = opening_balance
    for entry in entries:
        if entry.transaction_type is CSTransactionType.ADJUSTMENT:
            # adjustments set the balance to the counted quantity
            balance = entry.running_balance
            continue
        balance = max(0, balance + signed_delta(entry.transaction_type, entry.quantity))
    return balance


def verify_ledger(entries: list[LedgerEntry], opening_balance: float = 0) -> list[str]:
    """Return inconsistencies between consecutive entries (empty when consistent)."""
    problems: list[str] = []
    balance = opening_balance
    for entry in entries:
        if entry.balance_before != balance:
            problems.append(
                f"{entry.id}: computed from balance {entry.balance_before}, ledger balance was {balance}"
            )
        balance = entry.running_balance
    return problems
