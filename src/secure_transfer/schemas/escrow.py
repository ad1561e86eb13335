"""Pydantic schemas for the escrow and automation API.

These schemas define the request/response shapes for the REST API and MCP
tools. They are separate from the domain dataclasses so that the wire format
can evolve without touching the core.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from secure_transfer import __version__

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
from secure_transfer.domain.models import Escrow, EscrowStats, TransactionOutcome

_ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{16}$"

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateEscrowRequest(BaseModel):
    """Request body for locking funds in a new escrow."""

    sender: str = Field(
        ...,
        pattern=_ADDRESS_PATTERN,
        description="Ledger address of the signing sender (0x + 16 hex digits)",
        examples=["0x01cf0e2f2f715450"],
    )
    receiver: str = Field(
        ...,
        pattern=_ADDRESS_PATTERN,
        description="Ledger address allowed to claim before expiry",
        examples=["0x179b6b1cb6755e31"],
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=8,
        description="Amount to lock (UFix64, up to 8 decimals)",
        examples=["100.0"],
    )
    token_kind: TokenKind = Field(default=TokenKind.FLOW, description="Token to lock")
    duration_seconds: int = Field(
        default=24 * 3600,
        gt=0,
        description="Seconds from now until the escrow expires",
    )
    refund_mode: RefundMode = Field(
        default=RefundMode.MANUAL,
        description="manual: only the sender refunds; auto: the scheduler refunds after expiry",
    )
    idempotency_key: str | None = Field(
        default=None,
        max_length=128,
        description="Optional key preventing a duplicate create when retrying",
    )


class SettleEscrowRequest(BaseModel):
    """Request body for claim and refund."""

    requester: str = Field(
        ...,
        pattern=_ADDRESS_PATTERN,
        description="Address signing the claim or refund",
    )


class CreateAutomationRequest(BaseModel):
    """Request body for registering an automation task."""

    kind: AutomationKind
    owner: str = Field(
        ...,
        pattern=_ADDRESS_PATTERN,
        description="Account the task acts for (sender, or receiver for auto_claim)",
    )
    recipient: str = Field(..., pattern=_ADDRESS_PATTERN)
    amount: Decimal = Field(..., gt=0, decimal_places=8)
    token_kind: TokenKind = TokenKind.FLOW
    frequency: Frequency | None = Field(
        default=None,
        description="Required for recurring payments, forbidden otherwise",
    )
    escrow_id: str | None = Field(
        default=None,
        description="Target escrow for scheduled_refund and auto_claim",
    )
    first_run: float | None = Field(
        default=None,
        description="Unix timestamp of the first firing; defaults depend on kind",
    )
    refund_mode: RefundMode = Field(
        default=RefundMode.MANUAL,
        description="Refund mode of escrows created by a recurring payment",
    )

    @model_validator(mode="after")
    def _check_kind_fields(self) -> CreateAutomationRequest:
        if self.kind is AutomationKind.RECURRING_PAYMENT:
            if self.frequency is None:
                raise ValueError("frequency is required for recurring payments")
        else:
            if self.frequency is not None:
                raise ValueError("frequency is only valid for recurring payments")
            if self.escrow_id is None:
                raise ValueError(f"escrow_id is required for {self.kind.value}")
        return self


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class EscrowResponse(BaseModel):
    """Response schema for an escrow record."""

    id: str
    sender: str
    receiver: str
    amount: Decimal
    token_kind: TokenKind
    expiry: float
    state: EscrowState
    refund_mode: RefundMode
    created_at: float
    is_expired: bool
    is_claimable: bool
    is_refundable: bool
    time_remaining: str

    @classmethod
    def from_escrow(cls, escrow: Escrow, now: float) -> EscrowResponse:
        return cls(
            id=escrow.id,
            sender=escrow.sender,
            receiver=escrow.receiver,
            amount=escrow.amount,
            token_kind=escrow.token_kind,
            expiry=escrow.expiry,
            state=escrow.state,
            refund_mode=escrow.refund_mode,
            created_at=escrow.created_at,
            is_expired=escrow.is_expired(now),
            is_claimable=escrow.is_claimable(now),
            is_refundable=escrow.is_refundable(now),
            time_remaining=escrow.format_time_remaining(now),
        )


class TransactionOutcomeResponse(BaseModel):
    """Response schema for one submit/await cycle."""

    model_config = ConfigDict(from_attributes=True)

    operation: OperationKind
    final_state: FinalState
    operation_id: str | None
    escrow_id: str | None
    error_kind: ErrorKind | None = None
    message: str = ""
    in_doubt: bool = False

    @classmethod
    def from_outcome(cls, outcome: TransactionOutcome) -> TransactionOutcomeResponse:
        return cls.model_validate(outcome)


class SweepResponse(BaseModel):
    """Per-escrow results of an auto-refund sweep."""

    outcomes: list[TransactionOutcomeResponse]
    sealed: int
    failed: int


class EscrowStatsResponse(BaseModel):
    """Counts over all known escrows."""

    model_config = ConfigDict(from_attributes=True)

    total: int
    active: int
    claimed: int
    refunded: int
    expired: int

    @classmethod
    def from_stats(cls, stats: EscrowStats) -> EscrowStatsResponse:
        return cls.model_validate(stats)


class AutomationResponse(BaseModel):
    """Response schema for an automation task."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    kind: AutomationKind
    owner: str
    recipient: str
    amount: Decimal
    token_kind: TokenKind
    frequency: Frequency | None
    escrow_id: str | None
    next_run: float
    status: AutomationStatus
    fire_count: int
    last_error: str | None
    pause_reason: str | None
    pending_operation_id: str | None = None
    created_at: float


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = __version__
    ledger: str = "unknown"
    redis: str = "unknown"
    scheduler: str = "unknown"
