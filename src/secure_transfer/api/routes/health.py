"""Health check endpoint.

Verifies the ledger and Redis are reachable and reports whether the
automation scheduler is running. Used by Docker healthchecks, load
balancers, and monitoring systems.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from secure_transfer import __version__
from secure_transfer.api.deps import get_escrow_service
from secure_transfer.infrastructure.redis_client import get_redis, redis_available
from secure_transfer.logging_config import get_logger
from secure_transfer.schemas.escrow import HealthResponse
from secure_transfer.services.escrow_service import EscrowService

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(
    svc: EscrowService = Depends(get_escrow_service),
) -> HealthResponse:
    """Check the ledger and Redis. Redis being absent only degrades idempotency."""
    ledger_status = "unknown"
    redis_status = "disabled"

    try:
        await svc.check_ledger()
        ledger_status = "healthy"
    except Exception as exc:
        ledger_status = f"unhealthy: {exc}"
        logger.error("health.ledger_check_failed", error=str(exc))

    if redis_available():
        try:
            await get_redis().ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    scheduler_status = "running" if svc.scheduler.is_running else "stopped"
    redis_ok = not redis_status.startswith("unhealthy")
    overall = "ok" if ledger_status == "healthy" and redis_ok else "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        ledger=ledger_status,
        redis=redis_status,
        scheduler=scheduler_status,
    )
