"""Pydantic API schemas."""

from secure_transfer.schemas.escrow import (
    AutomationResponse,
    CreateAutomationRequest,
    CreateEscrowRequest,
    EscrowResponse,
    EscrowStatsResponse,
    HealthResponse,
    SettleEscrowRequest,
    SweepResponse,
    TransactionOutcomeResponse,
)

__all__ = [
    "AutomationResponse",
    "CreateAutomationRequest",
    "CreateEscrowRequest",
    "EscrowResponse",
    "EscrowStatsResponse",
    "HealthResponse",
    "SettleEscrowRequest",
    "SweepResponse",
    "TransactionOutcomeResponse",
]
