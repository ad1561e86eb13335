"""Escrow Lifecycle: validates and executes the four mutating operations.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - EscrowStore (cached ledger state)
    - TransactionRunner (submit / await finality / classify)

Every operation returns a TransactionOutcome. Requests refused before
submission come back as Failed outcomes with no operation id; the checks here
are advisory and mirror what the ledger enforces authoritatively.

Check order for claim and refund puts AlreadySettled first, so repeating a
claim or refund on a settled escrow always reports AlreadySettled regardless
of who asks or when.
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import TYPE_CHECKING

from secure_transfer.domain.enums import OperationKind, RefundMode, TokenKind
from secure_transfer.domain.exceptions import (
    AlreadySettledError,
    EscrowEngineError,
    EscrowExpiredError,
    EscrowNotFoundError,
    InvalidStateTransitionError,
    NotExpiredError,
    NotReceiverError,
    NotSenderError,
    ValidationError,
)
from secure_transfer.domain.models import (
    OperationDescriptor,
    TransactionOutcome,
    normalize_address,
    parse_amount,
)
from secure_transfer.domain.state_machine import EscrowStateMachine, validate_transition
from secure_transfer.logging_config import get_logger
from secure_transfer.services.single_flight import SingleFlight

if TYPE_CHECKING:
    from collections.abc import Callable
    from decimal import Decimal

    from secure_transfer.domain.models import Escrow, EscrowId, FinalityReport, OperationId
    from secure_transfer.infrastructure.stores import EscrowStore
    from secure_transfer.services.transaction_runner import TransactionRunner

    EscrowCheck = Callable[[Escrow, str, float], None]

logger = get_logger(__name__)


class EscrowLifecycle:
    """Manages create, claim, refund and the auto-refund sweep."""

    def __init__(
        self,
        store: EscrowStore,
        runner: TransactionRunner,
        clock: Callable[[], float] = time.time,
        system_actor: str = "0x0000000000000000",
        guard: SingleFlight | None = None,
    ) -> None:
        self._store = store
        self._runner = runner
        self._clock = clock
        self._system_actor = system_actor
        self._guard = guard or SingleFlight()

    @property
    def store(self) -> EscrowStore:
        return self._store

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(
        self,
        sender: str,
        receiver: str,
        amount: Decimal | str,
        token_kind: TokenKind | str,
        duration: float,
        refund_mode: RefundMode | str = RefundMode.MANUAL,
    ) -> TransactionOutcome:
        """Lock ``amount`` from ``sender`` for ``receiver`` until now + duration.

        On Sealed the outcome carries the ledger-assigned escrow id and the
        store already holds the new record.
        """
        try:
            operation = self._build_create(sender, receiver, amount, token_kind, duration, refund_mode)
        except EscrowEngineError as exc:
            logger.info("escrow.create_rejected", error_kind=exc.kind.value, error=exc.message)
            return TransactionOutcome.rejected(OperationKind.CREATE, exc)

        outcome = await self._runner.run(operation, on_sealed=self._refresh_after)
        if outcome.sealed:
            logger.info(
                "escrow.created",
                escrow_id=outcome.escrow_id,
                sender=operation.requester,
                receiver=operation.args["receiver"],
                amount=str(operation.args["amount"]),
                token=operation.args["token_kind"],
                expiry=operation.args["expiry"],
            )
        return outcome

    def _build_create(
        self,
        sender: str,
        receiver: str,
        amount: Decimal | str,
        token_kind: TokenKind | str,
        duration: float,
        refund_mode: RefundMode | str,
    ) -> OperationDescriptor:
        sender = normalize_address(sender, "sender")
        receiver = normalize_address(receiver, "receiver")
        parsed_amount = parse_amount(amount)
        if duration is None or not math.isfinite(duration) or duration <= 0:
            raise ValidationError(
                "duration must be a finite number greater than zero", field="duration"
            )
        try:
            token = TokenKind(token_kind)
            mode = RefundMode(str(refund_mode).lower())
        except ValueError as err:
            raise ValidationError(str(err)) from err

        return OperationDescriptor(
            kind=OperationKind.CREATE,
            requester=sender,
            args={
                "receiver": receiver,
                "amount": parsed_amount,
                "token_kind": token.value,
                "expiry": self._clock() + duration,
                "refund_mode": mode.value,
            },
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def resume(
        self,
        kind: OperationKind,
        operation_id: OperationId,
        escrow_id: EscrowId | None = None,
    ) -> TransactionOutcome:
        """Re-await an operation submitted earlier whose outcome was never confirmed.

        Nothing is submitted. A Sealed result refreshes the store like a
        fresh operation would.
        """
        logger.info(
            "escrow.resume_pending",
            operation=kind.value,
            operation_id=operation_id,
            escrow_id=escrow_id,
        )
        return await self._runner.finalize(
            kind, operation_id, escrow_id, on_sealed=self._refresh_after
        )

    # ------------------------------------------------------------------
    # Claim / Refund
    # ------------------------------------------------------------------

    async def claim(self, escrow_id: EscrowId, requester: str) -> TransactionOutcome:
        """Receiver takes the funds before expiry. Active -> Claimed."""
        return await self._settle(OperationKind.CLAIM, escrow_id, requester, self._check_claim)

    async def refund(self, escrow_id: EscrowId, requester: str) -> TransactionOutcome:
        """Funds return to the sender after expiry. Active -> Refunded."""
        return await self._settle(OperationKind.REFUND, escrow_id, requester, self._check_refund)

    async def _settle(
        self,
        kind: OperationKind,
        escrow_id: EscrowId,
        requester: str,
        check: EscrowCheck,
    ) -> TransactionOutcome:
        escrow_id = str(escrow_id)
        try:
            with self._guard.hold(escrow_id):
                requester = normalize_address(requester, "requester")
                escrow = await self._get_escrow_or_raise(escrow_id)
                check(escrow, requester, self._clock())
                operation = OperationDescriptor(
                    kind=kind,
                    requester=requester,
                    args={"escrow_id": escrow_id},
                )
                outcome = await self._runner.run(operation, on_sealed=self._refresh_after)
        except EscrowEngineError as exc:
            logger.info(
                f"escrow.{kind.value}_rejected",
                escrow_id=escrow_id,
                error_kind=exc.kind.value,
                error=exc.message,
            )
            return TransactionOutcome.rejected(kind, exc, escrow_id=escrow_id)

        if outcome.sealed:
            logger.info(f"escrow.{kind.value}_sealed", escrow_id=escrow_id, requester=requester)
        return outcome

    def _check_claim(self, escrow: Escrow, requester: str, now: float) -> None:
        self._assert_transition(escrow, "claim")
        if requester != escrow.receiver:
            raise NotReceiverError(escrow.id, requester)
        if escrow.is_expired(now):
            raise EscrowExpiredError(escrow.id)

    def _check_refund(self, escrow: Escrow, requester: str, now: float) -> None:
        self._assert_transition(escrow, "refund")
        if not escrow.is_expired(now):
            raise NotExpiredError(escrow.id)
        if escrow.refund_mode is RefundMode.MANUAL and requester != escrow.sender:
            raise NotSenderError(escrow.id, requester)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def sweep_expired_auto(self, refresh: bool = True) -> list[TransactionOutcome]:
        """Refund every Active, Auto-mode escrow whose expiry has passed.

        Each refund runs independently; one failure never stops the others.
        Returns one outcome per candidate, in escrow-id order.
        """
        if refresh:
            await self._store.refresh()
        candidates = self._store.expired_auto_refundable(self._clock())
        if not candidates:
            logger.debug("escrow.sweep_idle")
            return []

        outcomes = await asyncio.gather(
            *(self.refund(escrow.id, self._system_actor) for escrow in candidates)
        )
        logger.info(
            "escrow.sweep_completed",
            candidates=len(candidates),
            sealed=sum(1 for o in outcomes if o.sealed),
            failed=sum(1 for o in outcomes if not o.sealed),
        )
        return list(outcomes)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_escrow_or_raise(self, escrow_id: EscrowId) -> Escrow:
        escrow = self._store.get(escrow_id)
        if escrow is None:
            # May have been created elsewhere since the last refresh.
            await self._store.refresh([escrow_id])
            escrow = self._store.get(escrow_id)
        if escrow is None:
            raise EscrowNotFoundError(escrow_id)
        return escrow

    @staticmethod
    def _assert_transition(escrow: Escrow, event_name: str) -> None:
        try:
            validate_transition(EscrowStateMachine, escrow.state.value, event_name)
        except InvalidStateTransitionError as err:
            raise AlreadySettledError(escrow.id, escrow.state.value) from err

    async def _refresh_after(self, report: FinalityReport) -> None:
        escrow_id = report.result.get("escrow_id")
        if escrow_id is None:
            await self._store.refresh()
        else:
            await self._store.refresh([str(escrow_id)])
