"""
Pytest configuration and shared fixtures for pharmflow tests

Everything runs against the in-memory backends with a controllable clock so
date-sensitive rules (prescription expiry, will-call aging, refill timing)
are reproducible.
"""

from datetime import UTC, datetime, timedelta

import pytest

from pharmflow.core.config import WorkflowConfig
from pharmflow.monitoring.logging import workflow_context
from pharmflow.service import WorkflowService
from pharmflow.types import Actor, CSTransactionType, StaffRole
from pharmflow.workflow.will_call import IdType, IdVerification

FIXED_NOW = datetime(2026, 3, 2, 15, 0, tzinfo=UTC)

# Checksum-valid: (1 + 3 + 5) + 2 * (2 + 4 + 6) = 33
VALID_DEA = "AB1234563"

PHARMACY_ID = "PH-001"
OXYCODONE_NDC = "00406-0512-01"
LISINOPRIL_NDC = "68180-0513-01"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_intake(**overrides) -> dict:
    """Intake payload for a Schedule II fill, 30 tablets, written 5 days ago."""
    data = {
        "rx_number": "RX100200",
        "pharmacy_id": PHARMACY_ID,
        "patient_id": "PAT-001",
        "prescriber_id": "NPI-1234567890",
        "ndc": OXYCODONE_NDC,
        "drug_name": "Oxycodone 5mg",
        "schedule": "II",
        "quantity": 30,
        "days_supply": 10,
        "prescriber_dea": VALID_DEA,
        "written_at": FIXED_NOW - timedelta(days=5),
    }
    data.update(overrides)
    return data


def make_legend_intake(**overrides) -> dict:
    """Intake payload for a non-controlled maintenance drug."""
    data = make_intake(
        rx_number="RX300400",
        ndc=LISINOPRIL_NDC,
        drug_name="Lisinopril 10mg",
        schedule="LEGEND",
        quantity=90,
        days_supply=90,
        prescriber_dea=None,
        refills_allowed=3,
    )
    data.update(overrides)
    return data


def checked_id(actor: Actor, **overrides) -> IdVerification:
    """Driver's license check made at the counter by ``actor``."""
    data = {"id_type": IdType.DRIVERS_LICENSE, "id_number": "4821", "verified_by": actor.id}
    data.update(overrides)
    return IdVerification(**data)


# ============================================
# AUTO-USE FIXTURES
# ============================================


@pytest.fixture(autouse=True)
def reset_workflow_context():
    """Make sure no log context leaks between tests."""
    token = workflow_context.set({})
    yield
    workflow_context.reset(token)


# ============================================
# ACTORS
# ============================================


@pytest.fixture
def tech() -> Actor:
    return Actor("tech-1", "Terry Tech", StaffRole.TECHNICIAN)


@pytest.fixture
def pharmacist() -> Actor:
    return Actor("rph-1", "Pat Pharmacist", StaffRole.PHARMACIST)


# ============================================
# SERVICE
# ============================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> WorkflowConfig:
    return WorkflowConfig(lock_timeout=1.0)


@pytest.fixture
def service(config, clock) -> WorkflowService:
    return WorkflowService(config, clock=clock)


async def stock_shelf(
    service: WorkflowService, actor: Actor, quantity: float, ndc: str = OXYCODONE_NDC
):
    """Receive controlled stock so dispenses have something to draw from."""
    return await service.record_ledger_transaction(
        PHARMACY_ID, ndc, "II", CSTransactionType.RECEIVE, quantity, actor, drug_name="Oxycodone 5mg"
    )


async def advance_through(service: WorkflowService, prescription_id: str, actor: Actor, *states):
    """Walk a prescription through several states, returning the last result."""
    result = None
    for state in states:
        result = await service.advance_workflow(prescription_id, state, actor)
    return result


async def fill_to_ready(service: WorkflowService, tech: Actor, pharmacist: Actor, intake: dict):
    """Take a fresh intake all the way to READY."""
    rx = await service.intake(intake, tech)
    await advance_through(service, rx.id, tech, "DATA_ENTRY", "DATA_ENTRY_COMPLETE", "FILLING")
    result = await advance_through(service, rx.id, pharmacist, "VERIFICATION", "READY")
    return result.prescription
