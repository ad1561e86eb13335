"""Domain value objects: escrows, automation tasks, operations and outcomes.

Plain dataclasses with no framework imports. Escrow records are frozen
snapshots of ledger-confirmed truth; the store swaps whole records on refresh
instead of mutating them. AutomationTask is mutable and owned by the
scheduler's task store.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

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
from secure_transfer.domain.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from secure_transfer.domain.exceptions import EscrowEngineError

EscrowId = str
OperationId = str

# Flow account addresses: 0x followed by 16 hex digits.
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{16}$")

# UFix64 carries eight fractional digits.
AMOUNT_DECIMAL_PLACES = 8


def normalize_address(value: str, field_name: str = "address") -> str:
    """Validate a ledger address and return it lower-cased."""
    if not isinstance(value, str) or not _ADDRESS_RE.match(value.strip()):
        raise ValidationError(f"Invalid {field_name}: {value!r}", field=field_name)
    return value.strip().lower()


def parse_amount(value: Decimal | str | int, field_name: str = "amount") -> Decimal:
    """Parse a positive fixed-point amount with at most eight decimals."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as err:
        raise ValidationError(f"Invalid {field_name}: {value!r}", field=field_name) from err
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field_name} must be greater than zero", field=field_name)
    if -amount.as_tuple().exponent > AMOUNT_DECIMAL_PLACES:
        raise ValidationError(
            f"{field_name} supports at most {AMOUNT_DECIMAL_PLACES} decimal places",
            field=field_name,
        )
    return amount


def format_duration(seconds: float) -> str:
    """Render a non-negative duration as ``"Xh Ym"``."""
    whole = int(seconds)
    return f"{whole // 3600}h {(whole % 3600) // 60}m"


# ---------------------------------------------------------------------------
# Escrow
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Escrow:
    """A locked-fund record awaiting claim or refund.

    Attributes:
        id: Ledger-assigned identifier.
        sender: Address that locked the funds.
        receiver: Address allowed to claim before expiry.
        amount: Locked amount.
        token_kind: Which token is locked.
        expiry: Absolute unix timestamp (seconds).
        state: Active, Claimed or Refunded.
        refund_mode: Manual (sender-initiated) or Auto (scheduler may refund).
        created_at: Unix timestamp of the sealing block.
    """

    id: EscrowId
    sender: str
    receiver: str
    amount: Decimal
    token_kind: TokenKind
    expiry: float
    state: EscrowState
    refund_mode: RefundMode
    created_at: float

    @property
    def is_active(self) -> bool:
        return self.state is EscrowState.ACTIVE

    def is_expired(self, now: float) -> bool:
        return now > self.expiry

    def is_claimable(self, now: float) -> bool:
        return self.is_active and not self.is_expired(now)

    def is_refundable(self, now: float) -> bool:
        return self.is_active and self.is_expired(now)

    def seconds_remaining(self, now: float) -> float:
        return max(0.0, self.expiry - now)

    def format_time_remaining(self, now: float) -> str:
        if self.is_expired(now) or self.seconds_remaining(now) == 0:
            return "Expired"
        return format_duration(self.seconds_remaining(now))

    def with_state(self, state: EscrowState) -> Escrow:
        return replace(self, state=state)


@dataclass(frozen=True)
class EscrowFilter:
    """Selection criteria for escrow queries. ``None`` fields match anything."""

    ids: frozenset[EscrowId] | None = None
    state: EscrowState | None = None
    sender: str | None = None
    receiver: str | None = None
    refund_mode: RefundMode | None = None

    def matches(self, escrow: Escrow) -> bool:
        if self.ids is not None and escrow.id not in self.ids:
            return False
        if self.state is not None and escrow.state is not self.state:
            return False
        if self.sender is not None and escrow.sender != self.sender.lower():
            return False
        if self.receiver is not None and escrow.receiver != self.receiver.lower():
            return False
        return self.refund_mode is None or escrow.refund_mode is self.refund_mode


@dataclass(frozen=True)
class EscrowStats:
    """Counts over the cached escrow collection."""

    total: int = 0
    active: int = 0
    claimed: int = 0
    refunded: int = 0
    expired: int = 0

    @classmethod
    def from_escrows(cls, escrows: list[Escrow], now: float) -> EscrowStats:
        return cls(
            total=len(escrows),
            active=sum(1 for e in escrows if e.is_active),
            claimed=sum(1 for e in escrows if e.state is EscrowState.CLAIMED),
            refunded=sum(1 for e in escrows if e.state is EscrowState.REFUNDED),
            expired=sum(1 for e in escrows if e.is_refundable(now)),
        )


# ---------------------------------------------------------------------------
# Ledger operations and outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OperationDescriptor:
    """Typed, ledger-agnostic description of one mutating operation.

    Adapters translate it into whatever the ledger needs (a signed transaction,
    a gateway request, a call on the simulated contract).
    """

    kind: OperationKind
    requester: str
    args: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", MappingProxyType(dict(self.args)))

    @property
    def escrow_id(self) -> EscrowId | None:
        value = self.args.get("escrow_id")
        return str(value) if value is not None else None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "requester": self.requester,
            "args": {k: str(v) if isinstance(v, Decimal) else v for k, v in self.args.items()},
        }


@dataclass(frozen=True)
class FinalityReport:
    """What the ledger reported for one submitted operation."""

    status: FinalState
    reason: str | None = None
    result: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransactionOutcome:
    """Result of one submit/await cycle, or of a rejection before submission.

    Attributes:
        operation: Which kind of operation was attempted.
        final_state: Sealed, Failed or TimedOut.
        operation_id: Ledger operation id; None if nothing was submitted.
        escrow_id: Target escrow, or the id assigned by a sealed create.
        error_kind: Classification when the outcome is Failed or TimedOut.
        message: Human-readable detail (ledger reason passed through verbatim).
        result: Payload the ledger attached to the sealed operation.
        in_doubt: The operation may have reached the ledger and could still apply;
            re-await or re-query before submitting it again.
    """

    operation: OperationKind
    final_state: FinalState
    operation_id: OperationId | None = None
    escrow_id: EscrowId | None = None
    error_kind: ErrorKind | None = None
    message: str = ""
    result: Mapping[str, Any] = field(default_factory=dict)
    in_doubt: bool = False

    @property
    def sealed(self) -> bool:
        return self.final_state is FinalState.SEALED

    @classmethod
    def rejected(
        cls,
        operation: OperationKind,
        error: EscrowEngineError,
        escrow_id: EscrowId | None = None,
    ) -> TransactionOutcome:
        """Outcome for a request refused before reaching the ledger."""
        return cls(
            operation=operation,
            final_state=FinalState.FAILED,
            escrow_id=escrow_id,
            error_kind=error.kind,
            message=error.message,
        )

    def to_dict(self) -> dict:
        return {
            "operation": self.operation.value,
            "final_state": self.final_state.value,
            "operation_id": self.operation_id,
            "escrow_id": self.escrow_id,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
            "in_doubt": self.in_doubt,
        }


# ---------------------------------------------------------------------------
# Automation
# ---------------------------------------------------------------------------


@dataclass
class AutomationTask:
    """A recurring or scheduled action tied to an escrow template.

    Mutated only by the AutomationScheduler, under its store's lock.
    """

    id: str
    kind: AutomationKind
    owner: str
    recipient: str
    amount: Decimal
    token_kind: TokenKind
    next_run: float
    created_at: float
    frequency: Frequency | None = None
    escrow_id: EscrowId | None = None
    refund_mode: RefundMode = RefundMode.MANUAL
    status: AutomationStatus = AutomationStatus.ACTIVE
    fire_count: int = 0
    last_error: str | None = None
    pause_reason: str | None = None
    # Submitted but never confirmed; re-awaited before the task fires again.
    pending_operation_id: OperationId | None = None

    def __post_init__(self) -> None:
        if self.kind.is_recurring and self.frequency is None:
            raise ValidationError("Recurring payments require a frequency", field="frequency")
        if not self.kind.is_recurring and self.frequency is not None:
            raise ValidationError(
                f"Frequency is only valid for recurring payments, not {self.kind.value}",
                field="frequency",
            )
        if not self.kind.is_recurring and self.escrow_id is None:
            raise ValidationError(f"{self.kind.value} requires an escrow_id", field="escrow_id")

    def is_due(self, now: float) -> bool:
        return self.status is AutomationStatus.ACTIVE and self.next_run <= now

    def snapshot(self) -> AutomationTask:
        """Detached copy for readers outside the scheduler."""
        return replace(self)
