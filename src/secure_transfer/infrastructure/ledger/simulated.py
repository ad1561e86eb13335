"""In-process ledger that enforces the escrow contract rules.

Stands in for the on-chain escrow contract in simulation mode and in tests.
It behaves like the real thing where the core can observe it:

    - submit() returns an operation id immediately; the operation is applied
      after ``seal_delay`` seconds whether or not anyone awaits it.
    - Each operation is applied atomically: funds leave the sender's balance
      and enter the escrow vault in the same step that registers the record.
    - Contract-side checks fail the operation with the same messages the
      deployed contract uses ("Escrow is not active", ...), so the
      TransactionRunner's classifier sees realistic reasons.
    - await_finality() timing out never cancels the pending operation.
"""

from __future__ import annotations

import asyncio
import math
import time
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from secure_transfer.domain.enums import (
    EscrowState,
    FinalState,
    OperationKind,
    RefundMode,
    TokenKind,
)
from secure_transfer.domain.exceptions import SubmissionFailedError
from secure_transfer.domain.models import (
    Escrow,
    EscrowFilter,
    FinalityReport,
    OperationDescriptor,
)
from secure_transfer.domain.state_machine import EscrowStateMachine, validate_transition
from secure_transfer.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)


class _ContractPanic(Exception):
    """Aborts an operation; the ledger reports it as Failed with this reason."""


class SimulatedLedger:
    """A single-process ledger holding balances, escrow records and vaults."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        seal_delay: float = 0.0,
        starting_balance: Decimal = Decimal("1000"),
    ) -> None:
        self._clock = clock
        self._seal_delay = seal_delay
        self._starting_balance = starting_balance
        self._escrows: dict[str, Escrow] = {}
        self._vaults: dict[str, Decimal] = {}
        self._balances: dict[tuple[str, TokenKind], Decimal] = {}
        self._operations: dict[str, asyncio.Task[FinalityReport]] = {}
        self._next_escrow_id = 1
        self._pending_submission_failures = 0

    # ------------------------------------------------------------------
    # Test and simulation controls
    # ------------------------------------------------------------------

    @property
    def seal_delay(self) -> float:
        return self._seal_delay

    @seal_delay.setter
    def seal_delay(self, value: float) -> None:
        self._seal_delay = value

    def fail_next_submissions(self, count: int = 1) -> None:
        """Make the next ``count`` submissions fail as if the network dropped."""
        self._pending_submission_failures = count

    def balance_of(self, address: str, token_kind: TokenKind = TokenKind.FLOW) -> Decimal:
        return self._balances.get((address.lower(), token_kind), self._starting_balance)

    def vault_balance(self, escrow_id: str) -> Decimal:
        return self._vaults.get(escrow_id, Decimal("0"))

    # ------------------------------------------------------------------
    # LedgerClient interface
    # ------------------------------------------------------------------

    async def submit(self, operation: OperationDescriptor) -> str:
        if self._pending_submission_failures > 0:
            self._pending_submission_failures -= 1
            raise SubmissionFailedError("Simulated network failure while submitting transaction")

        operation_id = f"tx-{uuid.uuid4().hex[:16]}"
        self._operations[operation_id] = asyncio.create_task(
            self._seal_later(operation_id, operation),
            name=f"ledger-{operation_id}",
        )
        logger.debug(
            "ledger.submitted",
            operation_id=operation_id,
            kind=operation.kind.value,
            requester=operation.requester,
        )
        return operation_id

    async def await_finality(self, operation_id: str, timeout: float) -> FinalityReport:
        task = self._operations.get(operation_id)
        if task is None:
            return FinalityReport(status=FinalState.FAILED, reason=f"Unknown operation {operation_id}")
        try:
            async with asyncio.timeout(timeout):
                return await asyncio.shield(task)
        except TimeoutError:
            return FinalityReport(status=FinalState.TIMED_OUT)

    async def query_escrows(self, escrow_filter: EscrowFilter | None = None) -> list[Escrow]:
        escrow_filter = escrow_filter or EscrowFilter()
        return [
            escrow
            for _, escrow in sorted(self._escrows.items(), key=lambda item: int(item[0]))
            if escrow_filter.matches(escrow)
        ]

    async def aclose(self) -> None:
        """Wait for operations still in flight so none is lost mid-apply."""
        pending = [task for task in self._operations.values() if not task.done()]
        if pending:
            await asyncio.gather(*pending)

    # ------------------------------------------------------------------
    # Contract execution
    # ------------------------------------------------------------------

    async def _seal_later(self, operation_id: str, operation: OperationDescriptor) -> FinalityReport:
        if self._seal_delay > 0:
            await asyncio.sleep(self._seal_delay)
        report = self._apply(operation)
        logger.debug(
            "ledger.finalized",
            operation_id=operation_id,
            status=report.status.value,
            reason=report.reason,
        )
        return report

    def _apply(self, operation: OperationDescriptor) -> FinalityReport:
        # Runs without awaiting, so every operation is atomic.
        handlers = {
            OperationKind.CREATE: self._create_escrow,
            OperationKind.CLAIM: self._claim_escrow,
            OperationKind.REFUND: self._refund_escrow,
        }
        try:
            result = handlers[operation.kind](operation)
        except _ContractPanic as panic:
            return FinalityReport(status=FinalState.FAILED, reason=str(panic))
        return FinalityReport(status=FinalState.SEALED, result=result)

    def _create_escrow(self, operation: OperationDescriptor) -> dict:
        args = operation.args
        sender = operation.requester.lower()
        token_kind = TokenKind(args["token_kind"])
        amount = Decimal(str(args["amount"]))
        expiry = float(args["expiry"])
        now = self._clock()

        if amount <= 0:
            raise _ContractPanic("Amount must be greater than zero")
        if not math.isfinite(expiry) or expiry <= now:
            raise _ContractPanic("Expiry must be in the future")
        balance = self.balance_of(sender, token_kind)
        if balance < amount:
            raise _ContractPanic(f"Insufficient {token_kind.value} balance: {balance} < {amount}")

        escrow_id = str(self._next_escrow_id)
        self._next_escrow_id += 1
        self._balances[(sender, token_kind)] = balance - amount
        self._vaults[escrow_id] = amount
        self._escrows[escrow_id] = Escrow(
            id=escrow_id,
            sender=sender,
            receiver=str(args["receiver"]).lower(),
            amount=amount,
            token_kind=token_kind,
            expiry=expiry,
            state=EscrowState.ACTIVE,
            refund_mode=RefundMode(args["refund_mode"]),
            created_at=now,
        )
        return {"escrow_id": escrow_id, "expiry": expiry}

    def _claim_escrow(self, operation: OperationDescriptor) -> dict:
        escrow = self._active_escrow(operation)
        if operation.requester.lower() != escrow.receiver:
            raise _ContractPanic("Only the receiver can claim this escrow")
        if self._clock() > escrow.expiry:
            raise _ContractPanic("Escrow has expired")
        self._release(escrow, "claim", escrow.receiver)
        return {"escrow_id": escrow.id, "amount": str(escrow.amount), "to": escrow.receiver}

    def _refund_escrow(self, operation: OperationDescriptor) -> dict:
        escrow = self._active_escrow(operation)
        if self._clock() <= escrow.expiry:
            raise _ContractPanic("Escrow has not expired yet")
        if escrow.refund_mode is RefundMode.MANUAL and operation.requester.lower() != escrow.sender:
            raise _ContractPanic("Only the sender can refund a manual escrow")
        self._release(escrow, "refund", escrow.sender)
        return {"escrow_id": escrow.id, "amount": str(escrow.amount), "to": escrow.sender}

    def _active_escrow(self, operation: OperationDescriptor) -> Escrow:
        escrow_id = operation.escrow_id
        escrow = self._escrows.get(escrow_id) if escrow_id is not None else None
        if escrow is None:
            raise _ContractPanic("Escrow not found")
        if not escrow.is_active:
            raise _ContractPanic("Escrow is not active")
        return escrow

    def _release(self, escrow: Escrow, event: str, to: str) -> None:
        new_state = EscrowState(validate_transition(EscrowStateMachine, escrow.state.value, event))
        amount = self._vaults.pop(escrow.id)
        key = (to, escrow.token_kind)
        self._balances[key] = self.balance_of(to, escrow.token_kind) + amount
        self._escrows[escrow.id] = escrow.with_state(new_state)
