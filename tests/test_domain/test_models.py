"""Tests for domain value objects and input normalization."""

from __future__ import annotations

from decimal import Decimal

import pytest

from secure_transfer.domain.enums import (
    AutomationKind,
    AutomationStatus,
    ErrorKind,
    EscrowState,
    FinalState,
    Frequency,
    OperationKind,
    RefundMode,
    TokenKind,
)
from secure_transfer.domain.exceptions import NotReceiverError, ValidationError
from secure_transfer.domain.models import (
    AutomationTask,
    Escrow,
    EscrowFilter,
    EscrowStats,
    OperationDescriptor,
    TransactionOutcome,
    format_duration,
    normalize_address,
    parse_amount,
)

NOW = 1_700_000_000.0


def _escrow(**overrides) -> Escrow:
    fields = {
        "id": "1",
        "sender": "0x01cf0e2f2f715450",
        "receiver": "0x179b6b1cb6755e31",
        "amount": Decimal("100"),
        "token_kind": TokenKind.FLOW,
        "expiry": NOW + 3600,
        "state": EscrowState.ACTIVE,
        "refund_mode": RefundMode.MANUAL,
        "created_at": NOW,
    }
    fields.update(overrides)
    return Escrow(**fields)


class TestNormalizeAddress:
    def test_lowercases(self) -> None:
        assert normalize_address("0x01CF0E2F2F715450") == "0x01cf0e2f2f715450"

    @pytest.mark.parametrize(
        "value",
        ["", "01cf0e2f2f715450", "0x01cf0e2f2f71545", "0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"],
    )
    def test_rejects_malformed(self, value: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            normalize_address(value, "receiver")
        assert exc_info.value.field == "receiver"


class TestParseAmount:
    def test_accepts_eight_decimals(self) -> None:
        assert parse_amount("0.00000001") == Decimal("0.00000001")

    def test_rejects_nine_decimals(self) -> None:
        with pytest.raises(ValidationError, match="decimal places"):
            parse_amount("0.000000001")

    @pytest.mark.parametrize("value", ["0", "-5", "abc", "NaN"])
    def test_rejects_non_positive_or_garbage(self, value: str) -> None:
        with pytest.raises(ValidationError):
            parse_amount(value)


class TestEscrowExpiry:
    def test_expiry_is_strict(self) -> None:
        escrow = _escrow()
        assert not escrow.is_expired(escrow.expiry)
        assert escrow.is_claimable(escrow.expiry)
        assert escrow.is_expired(escrow.expiry + 0.001)
        assert escrow.is_refundable(escrow.expiry + 0.001)

    def test_settled_escrow_is_neither_claimable_nor_refundable(self) -> None:
        escrow = _escrow(state=EscrowState.CLAIMED)
        assert not escrow.is_claimable(NOW)
        assert not escrow.is_refundable(NOW + 7200)

    def test_time_remaining(self) -> None:
        escrow = _escrow(expiry=NOW + 2 * 3600 + 5 * 60 + 30)
        assert escrow.format_time_remaining(NOW) == "2h 5m"
        assert escrow.format_time_remaining(escrow.expiry + 1) == "Expired"

    def test_with_state_returns_copy(self) -> None:
        escrow = _escrow()
        refunded = escrow.with_state(EscrowState.REFUNDED)
        assert refunded.state is EscrowState.REFUNDED
        assert escrow.state is EscrowState.ACTIVE

    def test_format_duration(self) -> None:
        assert format_duration(59) == "0h 0m"
        assert format_duration(90 * 60) == "1h 30m"


class TestEscrowFilter:
    def test_empty_filter_matches_everything(self) -> None:
        assert EscrowFilter().matches(_escrow())

    def test_address_match_ignores_case(self) -> None:
        assert EscrowFilter(sender="0x01CF0E2F2F715450").matches(_escrow())

    def test_combined_criteria(self) -> None:
        f = EscrowFilter(state=EscrowState.ACTIVE, refund_mode=RefundMode.AUTO)
        assert not f.matches(_escrow())
        assert f.matches(_escrow(refund_mode=RefundMode.AUTO))

    def test_ids(self) -> None:
        f = EscrowFilter(ids=frozenset({"2"}))
        assert not f.matches(_escrow())
        assert f.matches(_escrow(id="2"))


class TestEscrowStats:
    def test_counts(self) -> None:
        escrows = [
            _escrow(id="1"),
            _escrow(id="2", expiry=NOW - 1),
            _escrow(id="3", state=EscrowState.CLAIMED),
            _escrow(id="4", state=EscrowState.REFUNDED, expiry=NOW - 1),
        ]
        stats = EscrowStats.from_escrows(escrows, NOW)
        assert stats == EscrowStats(total=4, active=2, claimed=1, refunded=1, expired=1)


class TestOperationDescriptor:
    def test_args_are_read_only(self) -> None:
        op = OperationDescriptor(OperationKind.CLAIM, "0x179b6b1cb6755e31", {"escrow_id": "7"})
        assert op.escrow_id == "7"
        with pytest.raises(TypeError):
            op.args["escrow_id"] = "8"

    def test_to_dict_stringifies_decimals(self) -> None:
        op = OperationDescriptor(
            OperationKind.CREATE, "0x01cf0e2f2f715450", {"amount": Decimal("1.5")}
        )
        assert op.to_dict()["args"] == {"amount": "1.5"}
        assert op.escrow_id is None


class TestTransactionOutcome:
    def test_rejected_keeps_kind_and_message(self) -> None:
        outcome = TransactionOutcome.rejected(
            OperationKind.CLAIM, NotReceiverError("7", "0x01cf0e2f2f715450"), escrow_id="7"
        )
        assert outcome.final_state is FinalState.FAILED
        assert outcome.error_kind is ErrorKind.NOT_RECEIVER
        assert outcome.operation_id is None
        assert not outcome.sealed
        assert outcome.to_dict()["error_kind"] == "NOT_RECEIVER"


class TestAutomationTask:
    def _task(self, **overrides) -> AutomationTask:
        fields = {
            "id": "auto-1",
            "kind": AutomationKind.RECURRING_PAYMENT,
            "owner": "0x01cf0e2f2f715450",
            "recipient": "0x179b6b1cb6755e31",
            "amount": Decimal("10"),
            "token_kind": TokenKind.FLOW,
            "next_run": NOW,
            "created_at": NOW,
            "frequency": Frequency.WEEKLY,
        }
        fields.update(overrides)
        return AutomationTask(**fields)

    def test_recurring_requires_frequency(self) -> None:
        with pytest.raises(ValidationError, match="frequency"):
            self._task(frequency=None)

    def test_one_shot_requires_escrow_id(self) -> None:
        with pytest.raises(ValidationError, match="escrow_id"):
            self._task(kind=AutomationKind.AUTO_CLAIM, frequency=None)

    def test_one_shot_rejects_frequency(self) -> None:
        with pytest.raises(ValidationError, match="only valid"):
            self._task(kind=AutomationKind.SCHEDULED_REFUND, escrow_id="3")

    def test_due_only_when_active(self) -> None:
        task = self._task()
        assert task.is_due(NOW)
        assert not task.is_due(NOW - 1)
        task.status = AutomationStatus.PAUSED
        assert not task.is_due(NOW + 10)

    def test_snapshot_is_detached(self) -> None:
        task = self._task()
        copy = task.snapshot()
        copy.fire_count = 5
        assert task.fire_count == 0
