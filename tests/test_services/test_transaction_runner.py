"""Tests for the submit / await finality / classify protocol."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from conftest import RECEIVER, SENDER

from secure_transfer.domain.enums import ErrorKind, FinalState, OperationKind
from secure_transfer.domain.exceptions import EscrowEngineError, UnknownLedgerError
from secure_transfer.domain.models import FinalityReport, OperationDescriptor
from secure_transfer.services.transaction_runner import TransactionRunner, classify_failure


def _create_op(expiry: float, amount: str = "100") -> OperationDescriptor:
    return OperationDescriptor(
        kind=OperationKind.CREATE,
        requester=SENDER,
        args={
            "receiver": RECEIVER,
            "amount": Decimal(amount),
            "token_kind": "FLOW",
            "expiry": expiry,
            "refund_mode": "manual",
        },
    )


class _UnreachableFinality:
    """Ledger that accepts submissions but cannot report on them."""

    async def submit(self, operation: OperationDescriptor) -> str:
        return "tx-lost"

    async def await_finality(self, operation_id: str, timeout: float) -> FinalityReport:
        raise UnknownLedgerError("gateway returned 500")

    async def query_escrows(self, escrow_filter=None) -> list:
        return []


class TestClassifyFailure:
    @pytest.mark.parametrize(
        ("reason", "kind"),
        [
            ("Escrow not found", ErrorKind.NOT_FOUND),
            ("Escrow is not active", ErrorKind.ALREADY_SETTLED),
            ("Only the receiver can claim this escrow", ErrorKind.NOT_RECEIVER),
            ("Only the sender can refund a manual escrow", ErrorKind.NOT_SENDER),
            ("Escrow has not expired yet", ErrorKind.NOT_EXPIRED),
            ("Escrow has expired", ErrorKind.EXPIRED),
            ("Insufficient FLOW balance: 5 < 10", ErrorKind.UNKNOWN),
            (None, ErrorKind.UNKNOWN),
        ],
    )
    def test_reasons(self, reason: str | None, kind: ErrorKind) -> None:
        assert classify_failure(reason) is kind


class TestRun:
    @pytest.mark.asyncio
    async def test_sealed_create_returns_assigned_id(self, ledger, runner, clock) -> None:
        outcome = await runner.run(_create_op(clock() + 3600))

        assert outcome.sealed
        assert outcome.escrow_id == "1"
        assert outcome.operation_id.startswith("tx-")
        assert outcome.error_kind is None

    @pytest.mark.asyncio
    async def test_refresh_runs_before_returning(self, ledger, runner, clock) -> None:
        seen: list[FinalityReport] = []

        async def on_sealed(report: FinalityReport) -> None:
            seen.append(report)

        outcome = await runner.run(_create_op(clock() + 3600), on_sealed=on_sealed)

        assert outcome.sealed
        assert len(seen) == 1
        assert seen[0].result["escrow_id"] == "1"

    @pytest.mark.asyncio
    async def test_failed_refresh_does_not_unseal(self, ledger, runner, clock) -> None:
        async def on_sealed(report: FinalityReport) -> None:
            raise EscrowEngineError("cache unavailable")

        outcome = await runner.run(_create_op(clock() + 3600), on_sealed=on_sealed)

        assert outcome.sealed

    @pytest.mark.asyncio
    async def test_ledger_rejection_is_classified(self, ledger, runner, clock) -> None:
        outcome = await runner.run(_create_op(clock() + 3600, amount="5000"))

        assert outcome.final_state is FinalState.FAILED
        assert outcome.error_kind is ErrorKind.UNKNOWN
        assert "Insufficient FLOW balance" in outcome.message
        assert outcome.in_doubt is False

    @pytest.mark.asyncio
    async def test_submission_failure(self, ledger, runner, clock) -> None:
        ledger.fail_next_submissions()

        outcome = await runner.run(_create_op(clock() + 3600))

        assert outcome.final_state is FinalState.FAILED
        assert outcome.error_kind is ErrorKind.SUBMISSION_FAILED
        assert outcome.in_doubt is False
        assert outcome.operation_id is None
        assert ledger.balance_of(SENDER) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_timed_out_operation_may_still_seal(self, ledger, clock) -> None:
        ledger.seal_delay = 0.2
        runner = TransactionRunner(ledger, finality_timeout=0.01)

        outcome = await runner.run(_create_op(clock() + 3600))

        assert outcome.final_state is FinalState.TIMED_OUT
        assert outcome.error_kind is ErrorKind.TIMED_OUT
        assert "re-query state" in outcome.message
        assert outcome.in_doubt is True
        assert await ledger.query_escrows() == []

        await ledger.aclose()
        escrows = await ledger.query_escrows()
        assert [e.id for e in escrows] == ["1"]

    @pytest.mark.asyncio
    async def test_finality_error_keeps_operation_id(self) -> None:
        runner = TransactionRunner(_UnreachableFinality(), finality_timeout=1.0)

        outcome = await runner.run(_create_op(2_000_000_000.0))

        assert outcome.final_state is FinalState.FAILED
        assert outcome.error_kind is ErrorKind.UNKNOWN
        assert outcome.operation_id == "tx-lost"
        assert outcome.message == "gateway returned 500"
        assert outcome.in_doubt is True


class TestLedgerCalls:
    @pytest.mark.asyncio
    async def test_finality_is_awaited_with_configured_timeout(self) -> None:
        ledger = AsyncMock()
        ledger.submit.return_value = "tx-77"
        ledger.await_finality.return_value = FinalityReport(
            status=FinalState.SEALED, result={"escrow_id": "7"}
        )
        claim = OperationDescriptor(OperationKind.CLAIM, RECEIVER, {"escrow_id": "7"})

        outcome = await TransactionRunner(ledger, finality_timeout=12.0).run(claim)

        ledger.submit.assert_awaited_once_with(claim)
        ledger.await_finality.assert_awaited_once_with("tx-77", 12.0)
        assert outcome.escrow_id == "7"

    @pytest.mark.asyncio
    async def test_no_refresh_when_failed(self) -> None:
        ledger = AsyncMock()
        ledger.submit.return_value = "tx-78"
        ledger.await_finality.return_value = FinalityReport(
            status=FinalState.FAILED, reason="Escrow has expired"
        )
        on_sealed = AsyncMock()
        claim = OperationDescriptor(OperationKind.CLAIM, RECEIVER, {"escrow_id": "7"})

        outcome = await TransactionRunner(ledger).run(claim, on_sealed=on_sealed)

        on_sealed.assert_not_awaited()
        assert outcome.error_kind is ErrorKind.EXPIRED

    @pytest.mark.asyncio
    async def test_unexpected_submit_error_is_in_doubt(self) -> None:
        ledger = AsyncMock()
        ledger.submit.side_effect = RuntimeError("socket closed mid-response")

        outcome = await TransactionRunner(ledger).run(_create_op(2_000_000_000.0))

        ledger.await_finality.assert_not_awaited()
        assert outcome.final_state is FinalState.FAILED
        assert outcome.error_kind is ErrorKind.UNKNOWN
        assert outcome.operation_id is None
        assert outcome.in_doubt is True

    @pytest.mark.asyncio
    async def test_unconfirmed_submission_is_in_doubt(self) -> None:
        ledger = AsyncMock()
        ledger.submit.side_effect = UnknownLedgerError("Submission outcome unknown: read timeout")

        outcome = await TransactionRunner(ledger).run(_create_op(2_000_000_000.0))

        assert outcome.error_kind is ErrorKind.UNKNOWN
        assert outcome.in_doubt is True

    @pytest.mark.asyncio
    async def test_finalize_does_not_resubmit(self) -> None:
        ledger = AsyncMock()
        ledger.await_finality.return_value = FinalityReport(
            status=FinalState.SEALED, result={"escrow_id": "9"}
        )
        on_sealed = AsyncMock()

        outcome = await TransactionRunner(ledger, finality_timeout=3.0).finalize(
            OperationKind.CREATE, "tx-earlier", on_sealed=on_sealed
        )

        ledger.submit.assert_not_awaited()
        ledger.await_finality.assert_awaited_once_with("tx-earlier", 3.0)
        on_sealed.assert_awaited_once()
        assert outcome.sealed
        assert outcome.operation_id == "tx-earlier"
        assert outcome.escrow_id == "9"
