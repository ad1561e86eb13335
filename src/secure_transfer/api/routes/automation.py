"""Automation REST API routes.

Routes:
    GET    /api/v1/automations              - List automation tasks
    POST   /api/v1/automations              - Register a task
    POST   /api/v1/automations/{id}/toggle  - Pause or resume a task
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from secure_transfer.api.deps import get_escrow_service
from secure_transfer.schemas.escrow import AutomationResponse, CreateAutomationRequest
from secure_transfer.services.escrow_service import EscrowService

router = APIRouter(prefix="/api/v1/automations", tags=["Automation"])


@router.get("", response_model=list[AutomationResponse], summary="List automation tasks")
async def list_automations(
    svc: EscrowService = Depends(get_escrow_service),
) -> list[AutomationResponse]:
    return [AutomationResponse.model_validate(t) for t in svc.list_automations()]


@router.post(
    "",
    response_model=AutomationResponse,
    status_code=201,
    summary="Register an automation task",
)
async def create_automation(
    request: CreateAutomationRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> AutomationResponse:
    """Register a recurring payment, scheduled refund or auto-claim.

    The task starts Active and fires on the first scheduler tick at or after
    its next_run.
    """
    task = await svc.create_automation(
        kind=request.kind,
        owner=request.owner,
        recipient=request.recipient,
        amount=request.amount,
        token_kind=request.token_kind,
        frequency=request.frequency,
        escrow_id=request.escrow_id,
        first_run=request.first_run,
        refund_mode=request.refund_mode,
    )
    return AutomationResponse.model_validate(task)


@router.post(
    "/{task_id}/toggle",
    response_model=AutomationResponse,
    summary="Pause or resume an automation task",
)
async def toggle_automation(
    task_id: str,
    svc: EscrowService = Depends(get_escrow_service),
) -> AutomationResponse:
    task = await svc.toggle_automation(task_id)
    return AutomationResponse.model_validate(task)
