"""MCP Tool definitions for SecureTransfer.

These tools expose the escrow engine via the Model Context Protocol,
allowing AI agents to discover and call them programmatically.

Tools:
    - create_escrow: Lock funds for a receiver until an expiry
    - claim_escrow: Receiver claims before expiry
    - refund_escrow: Sender reclaims after expiry
    - sweep_expired: Refund every expired auto-mode escrow
    - list_escrows: Show escrows, optionally filtered
    - escrow_stats: Counts by state
    - list_automations: Show automation tasks
    - create_automation: Register a recurring payment, scheduled refund or auto-claim
    - toggle_automation: Pause or resume an automation task

The MCP server is mounted into FastAPI at /mcp via app.mount().
Tools reach the running service through bootstrap.get_service() since
FastAPI's Depends is not available here.
"""

from __future__ import annotations

from decimal import Decimal

from mcp.server.fastmcp import FastMCP

from secure_transfer.domain.enums import EscrowState, RefundMode
from secure_transfer.domain.exceptions import EscrowEngineError
from secure_transfer.domain.models import AutomationTask, EscrowFilter, TransactionOutcome
from secure_transfer.logging_config import get_logger

logger = get_logger(__name__)

# Initialize the MCP server
# This will be mounted into the FastAPI app in main.py
mcp = FastMCP(
    "SecureTransfer",
    json_response=True,
)


def _service():
    from secure_transfer.bootstrap import get_service

    return get_service()


def _outcome_dict(outcome: TransactionOutcome, next_step: str) -> dict:
    payload = outcome.to_dict()
    if outcome.sealed:
        payload["message"] = next_step
    elif outcome.error_kind is not None:
        payload["retryable"] = outcome.error_kind.caller_may_retry
    return payload


def _error_dict(exc: EscrowEngineError) -> dict:
    return {"error": exc.code, "message": exc.message}


def _task_dict(task: AutomationTask) -> dict:
    return {
        "task_id": task.id,
        "kind": task.kind.value,
        "status": task.status.value,
        "owner": task.owner,
        "recipient": task.recipient,
        "amount": str(task.amount),
        "token_kind": task.token_kind.value,
        "frequency": task.frequency.value if task.frequency else None,
        "escrow_id": task.escrow_id,
        "next_run": task.next_run,
        "fire_count": task.fire_count,
        "last_error": task.last_error,
        "pause_reason": task.pause_reason,
        "pending_operation_id": task.pending_operation_id,
    }


@mcp.tool()
async def create_escrow(
    sender: str,
    receiver: str,
    amount: str,
    duration_hours: float = 24,
    token_kind: str = "FLOW",
    refund_mode: str = "manual",
) -> dict:
    """Lock funds in a time-locked escrow for a receiver.

    Args:
        sender: Your ledger address (0x + 16 hex digits). Funds are debited from it.
        receiver: Address allowed to claim before expiry.
        amount: Amount to lock, as a decimal string with up to 8 decimals.
        duration_hours: Hours until the escrow expires.
        token_kind: One of 'FLOW', 'USDC', 'FUSD'.
        refund_mode: 'manual' (you refund after expiry) or 'auto' (refunded for you).

    Returns:
        The transaction outcome, including the new escrow_id once sealed.
    """
    try:
        outcome = await _service().create_escrow(
            sender=sender,
            receiver=receiver,
            amount=Decimal(amount),
            token_kind=token_kind,
            duration_seconds=duration_hours * 3600,
            refund_mode=refund_mode,
        )
        return _outcome_dict(
            outcome, "Escrow created. The receiver can claim it until expiry."
        )
    except EscrowEngineError as exc:
        return _error_dict(exc)
    except Exception as exc:
        logger.exception("mcp.create_escrow.error")
        return {"error": str(exc)}


@mcp.tool()
async def claim_escrow(escrow_id: str, requester: str) -> dict:
    """Claim an escrow as its receiver, before it expires.

    Args:
        escrow_id: Id of the escrow.
        requester: Your ledger address; must be the escrow's receiver.

    Returns:
        The transaction outcome.
    """
    try:
        outcome = await _service().claim_escrow(escrow_id, requester)
        return _outcome_dict(outcome, "Escrow claimed. Funds were sent to the receiver.")
    except Exception as exc:
        logger.exception("mcp.claim_escrow.error")
        return {"error": str(exc)}


@mcp.tool()
async def refund_escrow(escrow_id: str, requester: str) -> dict:
    """Refund an expired escrow to its sender.

    Args:
        escrow_id: Id of the escrow.
        requester: Your ledger address; must be the sender for manual escrows.

    Returns:
        The transaction outcome.
    """
    try:
        outcome = await _service().refund_escrow(escrow_id, requester)
        return _outcome_dict(outcome, "Escrow refunded. Funds were returned to the sender.")
    except Exception as exc:
        logger.exception("mcp.refund_escrow.error")
        return {"error": str(exc)}


@mcp.tool()
async def sweep_expired() -> dict:
    """Refund every expired escrow in auto mode.

    Returns:
        One outcome per escrow the sweep attempted.
    """
    try:
        outcomes = await _service().sweep_expired_auto()
        return {
            "attempted": len(outcomes),
            "sealed": sum(1 for o in outcomes if o.sealed),
            "outcomes": [o.to_dict() for o in outcomes],
        }
    except Exception as exc:
        logger.exception("mcp.sweep_expired.error")
        return {"error": str(exc)}


@mcp.tool()
async def list_escrows(
    state: str = "",
    sender: str = "",
    receiver: str = "",
    refund_mode: str = "",
) -> dict:
    """List escrows, newest first.

    Args:
        state: Optional filter: 'Active', 'Claimed' or 'Refunded'.
        sender: Optional sender address filter.
        receiver: Optional receiver address filter.
        refund_mode: Optional filter: 'manual' or 'auto'.

    Returns:
        Escrow summaries with time remaining.
    """
    try:
        svc = _service()
        escrows = await svc.list_escrows(
            EscrowFilter(
                state=EscrowState(state) if state else None,
                sender=sender or None,
                receiver=receiver or None,
                refund_mode=RefundMode(refund_mode) if refund_mode else None,
            )
        )
        now = svc.now()
        return {
            "count": len(escrows),
            "escrows": [
                {
                    "escrow_id": e.id,
                    "state": e.state.value,
                    "sender": e.sender,
                    "receiver": e.receiver,
                    "amount": str(e.amount),
                    "token_kind": e.token_kind.value,
                    "refund_mode": e.refund_mode.value,
                    "expiry": e.expiry,
                    "time_remaining": e.format_time_remaining(now),
                }
                for e in escrows
            ],
        }
    except Exception as exc:
        logger.exception("mcp.list_escrows.error")
        return {"error": str(exc)}


@mcp.tool()
async def escrow_stats() -> dict:
    """Counts of escrows by state, plus how many are expired but still Active."""
    try:
        stats = await _service().get_stats()
        return {
            "total": stats.total,
            "active": stats.active,
            "claimed": stats.claimed,
            "refunded": stats.refunded,
            "expired": stats.expired,
        }
    except Exception as exc:
        logger.exception("mcp.escrow_stats.error")
        return {"error": str(exc)}


@mcp.tool()
async def list_automations() -> dict:
    """List automation tasks and their next run times."""
    try:
        tasks = _service().list_automations()
        return {"count": len(tasks), "tasks": [_task_dict(t) for t in tasks]}
    except Exception as exc:
        logger.exception("mcp.list_automations.error")
        return {"error": str(exc)}


@mcp.tool()
async def create_automation(
    kind: str,
    owner: str,
    recipient: str,
    amount: str,
    token_kind: str = "FLOW",
    frequency: str = "",
    escrow_id: str = "",
    first_run: float = 0,
) -> dict:
    """Register an automation task.

    Args:
        kind: 'recurring', 'scheduled_refund' or 'auto_claim'.
        owner: Address the task acts for (the sender; the receiver for auto_claim).
        recipient: Receiver of recurring escrows, or the escrow's counterparty.
        amount: Amount per recurring escrow, as a decimal string.
        token_kind: One of 'FLOW', 'USDC', 'FUSD'.
        frequency: 'daily', 'weekly' or 'monthly'; recurring tasks only.
        escrow_id: Target escrow for scheduled_refund and auto_claim.
        first_run: Unix timestamp of the first firing; 0 uses the default.

    Returns:
        The registered task.
    """
    try:
        task = await _service().create_automation(
            kind=kind,
            owner=owner,
            recipient=recipient,
            amount=Decimal(amount),
            token_kind=token_kind,
            frequency=frequency or None,
            escrow_id=escrow_id or None,
            first_run=first_run or None,
        )
        return _task_dict(task)
    except EscrowEngineError as exc:
        return _error_dict(exc)
    except Exception as exc:
        logger.exception("mcp.create_automation.error")
        return {"error": str(exc)}


@mcp.tool()
async def toggle_automation(task_id: str) -> dict:
    """Pause an active automation task, or resume a paused one.

    Args:
        task_id: Id of the task (auto-...).

    Returns:
        The task with its new status.
    """
    try:
        task = await _service().toggle_automation(task_id)
        return _task_dict(task)
    except EscrowEngineError as exc:
        return _error_dict(exc)
    except Exception as exc:
        logger.exception("mcp.toggle_automation.error")
        return {"error": str(exc)}
