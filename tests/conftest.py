"""Shared test fixtures for the SecureTransfer test suite.

Provides:
    - A controllable clock so expiry can be crossed without sleeping
    - A fresh SimulatedLedger and the service graph wired on top of it
    - Well-formed ledger addresses for the usual actors
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from secure_transfer.infrastructure.ledger.simulated import SimulatedLedger
from secure_transfer.infrastructure.stores import AutomationStore, EscrowStore
from secure_transfer.services.automation_scheduler import AutomationScheduler
from secure_transfer.services.escrow_lifecycle import EscrowLifecycle
from secure_transfer.services.escrow_service import EscrowService
from secure_transfer.services.transaction_runner import TransactionRunner

SENDER = "0x01cf0e2f2f715450"
RECEIVER = "0x179b6b1cb6755e31"
STRANGER = "0xf8d6e0586b0a20c7"
SYSTEM = "0x0000000000000000"

START_TIME = 1_700_000_000.0


class FakeClock:
    """Callable clock returning a settable Unix timestamp."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Core Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock: FakeClock) -> SimulatedLedger:
    return SimulatedLedger(clock=clock, starting_balance=Decimal("1000"))


@pytest.fixture
def escrow_store(ledger: SimulatedLedger) -> EscrowStore:
    return EscrowStore(ledger)


@pytest.fixture
def runner(ledger: SimulatedLedger) -> TransactionRunner:
    return TransactionRunner(ledger, finality_timeout=5.0)


@pytest.fixture
def lifecycle(
    escrow_store: EscrowStore, runner: TransactionRunner, clock: FakeClock
) -> EscrowLifecycle:
    return EscrowLifecycle(store=escrow_store, runner=runner, clock=clock, system_actor=SYSTEM)


@pytest.fixture
def scheduler(lifecycle: EscrowLifecycle, clock: FakeClock) -> AutomationScheduler:
    return AutomationScheduler(
        lifecycle=lifecycle,
        store=AutomationStore(),
        clock=clock,
        interval=30,
        recurring_duration=86_400,
        auto_sweep=True,
    )


@pytest.fixture
def service(lifecycle: EscrowLifecycle, scheduler: AutomationScheduler) -> EscrowService:
    return EscrowService(lifecycle=lifecycle, scheduler=scheduler)


@pytest.fixture
def create_args() -> dict:
    """Keyword arguments for a valid one-hour manual escrow."""
    return {
        "sender": SENDER,
        "receiver": RECEIVER,
        "amount": Decimal("100"),
        "token_kind": "FLOW",
        "duration": 3600,
        "refund_mode": "manual",
    }
