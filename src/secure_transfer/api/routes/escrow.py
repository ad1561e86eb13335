"""Escrow REST API routes.

These endpoints provide the HTTP interface for locking, claiming and
refunding escrows. The MCP tools in mcp_server/tools.py call the same
service layer, ensuring consistency.

Routes:
    GET    /api/v1/escrows              - List cached escrows (filterable)
    GET    /api/v1/escrows/stats        - Counts by state
    GET    /api/v1/escrows/{id}         - Get one escrow
    POST   /api/v1/escrows              - Lock funds in a new escrow
    POST   /api/v1/escrows/sweep        - Refund every expired auto-mode escrow
    POST   /api/v1/escrows/{id}/claim   - Receiver claims before expiry
    POST   /api/v1/escrows/{id}/refund  - Sender (or scheduler) refunds after expiry

Mutations answer with the TransactionOutcome when it sealed. Failed and
TimedOut outcomes are raised as TransactionFailedError and rendered by the
error middleware.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from secure_transfer.api.deps import get_escrow_service, get_idempotency_enabled
from secure_transfer.domain.enums import EscrowState, RefundMode
from secure_transfer.domain.exceptions import DuplicateOperationError, TransactionFailedError
from secure_transfer.domain.models import EscrowFilter, TransactionOutcome
from secure_transfer.infrastructure import redis_client
from secure_transfer.logging_config import get_logger
from secure_transfer.schemas.escrow import (
    CreateEscrowRequest,
    EscrowResponse,
    EscrowStatsResponse,
    SettleEscrowRequest,
    SweepResponse,
    TransactionOutcomeResponse,
)
from secure_transfer.services.escrow_service import EscrowService

router = APIRouter(prefix="/api/v1/escrows", tags=["Escrow"])
logger = get_logger(__name__)


def _sealed_or_raise(outcome: TransactionOutcome) -> TransactionOutcomeResponse:
    if not outcome.sealed:
        raise TransactionFailedError(outcome)
    return TransactionOutcomeResponse.from_outcome(outcome)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=list[EscrowResponse],
    summary="List escrows",
)
async def list_escrows(
    state: EscrowState | None = None,
    sender: str | None = None,
    receiver: str | None = None,
    refund_mode: RefundMode | None = None,
    svc: EscrowService = Depends(get_escrow_service),
) -> list[EscrowResponse]:
    """Cached escrows, newest first. Terminal escrows are kept for history."""
    escrows = await svc.list_escrows(
        EscrowFilter(state=state, sender=sender, receiver=receiver, refund_mode=refund_mode)
    )
    now = svc.now()
    return [EscrowResponse.from_escrow(e, now) for e in escrows]


@router.get(
    "/stats",
    response_model=EscrowStatsResponse,
    summary="Escrow counts by state",
)
async def get_stats(
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowStatsResponse:
    return EscrowStatsResponse.from_stats(await svc.get_stats())


@router.get(
    "/{escrow_id}",
    response_model=EscrowResponse,
    summary="Get escrow details",
)
async def get_escrow(
    escrow_id: str,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    escrow = await svc.get_escrow(escrow_id)
    return EscrowResponse.from_escrow(escrow, svc.now())


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TransactionOutcomeResponse,
    status_code=201,
    summary="Lock funds in a new escrow",
)
async def create_escrow(
    request: CreateEscrowRequest,
    svc: EscrowService = Depends(get_escrow_service),
    idempotency_enabled: bool = Depends(get_idempotency_enabled),
) -> TransactionOutcomeResponse:
    """Create an Active escrow. The new id comes back once the create seals."""
    key = request.idempotency_key if idempotency_enabled else None
    if key is not None:
        existing = await redis_client.reserve_create(key)
        if existing is not None:
            escrow_id = None if existing == redis_client.PENDING else existing
            raise DuplicateOperationError(key, escrow_id=escrow_id)

    try:
        outcome = await svc.create_escrow(
            sender=request.sender,
            receiver=request.receiver,
            amount=request.amount,
            token_kind=request.token_kind,
            duration_seconds=request.duration_seconds,
            refund_mode=request.refund_mode,
        )
    except Exception:
        if key is not None:
            await redis_client.release_create(key)
        raise

    if key is not None:
        if outcome.sealed and outcome.escrow_id is not None:
            await redis_client.remember_create(key, outcome.escrow_id)
        elif not outcome.in_doubt:
            await redis_client.release_create(key)
    return _sealed_or_raise(outcome)


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Refund expired auto-mode escrows",
)
async def sweep_expired(
    svc: EscrowService = Depends(get_escrow_service),
) -> SweepResponse:
    """Run one auto-refund sweep now. Individual failures are reported, not raised."""
    outcomes = await svc.sweep_expired_auto()
    sealed = sum(1 for o in outcomes if o.sealed)
    return SweepResponse(
        outcomes=[TransactionOutcomeResponse.from_outcome(o) for o in outcomes],
        sealed=sealed,
        failed=len(outcomes) - sealed,
    )


# ---------------------------------------------------------------------------
# Claim / Refund
# ---------------------------------------------------------------------------


@router.post(
    "/{escrow_id}/claim",
    response_model=TransactionOutcomeResponse,
    summary="Claim an escrow as its receiver",
)
async def claim_escrow(
    escrow_id: str,
    request: SettleEscrowRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> TransactionOutcomeResponse:
    """Release the escrowed funds to the receiver. Only valid before expiry."""
    outcome = await svc.claim_escrow(escrow_id, request.requester)
    return _sealed_or_raise(outcome)


@router.post(
    "/{escrow_id}/refund",
    response_model=TransactionOutcomeResponse,
    summary="Refund an expired escrow to its sender",
)
async def refund_escrow(
    escrow_id: str,
    request: SettleEscrowRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> TransactionOutcomeResponse:
    """Return the escrowed funds to the sender. Only valid after expiry."""
    outcome = await svc.refund_escrow(escrow_id, request.requester)
    return _sealed_or_raise(outcome)
