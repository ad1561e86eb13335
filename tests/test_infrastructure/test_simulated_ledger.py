"""Tests for the in-process simulated ledger."""

from __future__ import annotations

import math
from decimal import Decimal

import pytest
from conftest import RECEIVER, SENDER, STRANGER

from secure_transfer.domain.enums import EscrowState, FinalState, OperationKind, TokenKind
from secure_transfer.domain.exceptions import SubmissionFailedError
from secure_transfer.domain.models import EscrowFilter, OperationDescriptor


def _create(expiry: float, amount: str = "100", token: str = "FLOW", mode: str = "manual"):
    return OperationDescriptor(
        OperationKind.CREATE,
        SENDER,
        {
            "receiver": RECEIVER,
            "amount": Decimal(amount),
            "token_kind": token,
            "expiry": expiry,
            "refund_mode": mode,
        },
    )


async def _run(ledger, operation):
    operation_id = await ledger.submit(operation)
    return await ledger.await_finality(operation_id, timeout=1.0)


class TestContract:
    @pytest.mark.asyncio
    async def test_create_moves_funds_into_vault(self, ledger, clock) -> None:
        report = await _run(ledger, _create(clock() + 60, token="USDC"))

        assert report.status is FinalState.SEALED
        assert report.result["escrow_id"] == "1"
        assert ledger.balance_of(SENDER, TokenKind.USDC) == Decimal("900")
        assert ledger.balance_of(SENDER, TokenKind.FLOW) == Decimal("1000")
        assert ledger.vault_balance("1") == Decimal("100")

    @pytest.mark.asyncio
    async def test_expiry_must_be_in_future(self, ledger, clock) -> None:
        report = await _run(ledger, _create(clock()))

        assert report.status is FinalState.FAILED
        assert report.reason == "Expiry must be in the future"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("expiry", [math.nan, math.inf])
    async def test_non_finite_expiry_is_rejected(self, ledger, expiry: float) -> None:
        report = await _run(ledger, _create(expiry))

        assert report.status is FinalState.FAILED
        assert report.reason == "Expiry must be in the future"
        assert ledger.balance_of(SENDER) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_claim_enforces_receiver(self, ledger, clock) -> None:
        await _run(ledger, _create(clock() + 60))

        report = await _run(
            ledger, OperationDescriptor(OperationKind.CLAIM, STRANGER, {"escrow_id": "1"})
        )

        assert report.status is FinalState.FAILED
        assert report.reason == "Only the receiver can claim this escrow"

    @pytest.mark.asyncio
    async def test_settled_escrow_is_not_active(self, ledger, clock) -> None:
        await _run(ledger, _create(clock() + 60))
        claim = OperationDescriptor(OperationKind.CLAIM, RECEIVER, {"escrow_id": "1"})
        await _run(ledger, claim)

        report = await _run(ledger, claim)

        assert report.reason == "Escrow is not active"
        assert ledger.balance_of(RECEIVER) == Decimal("1100")

    @pytest.mark.asyncio
    async def test_refund_before_expiry(self, ledger, clock) -> None:
        await _run(ledger, _create(clock() + 60))

        report = await _run(
            ledger, OperationDescriptor(OperationKind.REFUND, SENDER, {"escrow_id": "1"})
        )

        assert report.reason == "Escrow has not expired yet"

    @pytest.mark.asyncio
    async def test_unknown_escrow(self, ledger) -> None:
        report = await _run(
            ledger, OperationDescriptor(OperationKind.REFUND, SENDER, {"escrow_id": "99"})
        )

        assert report.reason == "Escrow not found"


class TestLedgerControls:
    @pytest.mark.asyncio
    async def test_fail_next_submissions(self, ledger, clock) -> None:
        ledger.fail_next_submissions(1)

        with pytest.raises(SubmissionFailedError):
            await ledger.submit(_create(clock() + 60))
        report = await _run(ledger, _create(clock() + 60))

        assert report.status is FinalState.SEALED

    @pytest.mark.asyncio
    async def test_unknown_operation_id(self, ledger) -> None:
        report = await ledger.await_finality("tx-nope", timeout=0.1)

        assert report.status is FinalState.FAILED

    @pytest.mark.asyncio
    async def test_query_orders_by_numeric_id(self, ledger, clock) -> None:
        for _ in range(11):
            await _run(ledger, _create(clock() + 60, amount="1"))

        escrows = await ledger.query_escrows()
        claimed = await ledger.query_escrows(EscrowFilter(state=EscrowState.CLAIMED))

        assert [e.id for e in escrows][-3:] == ["9", "10", "11"]
        assert claimed == []
