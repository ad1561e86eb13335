"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the escrow service
and the idempotency switch. Tests swap them through app.dependency_overrides.
"""

from __future__ import annotations

from secure_transfer.bootstrap import get_service
from secure_transfer.infrastructure.redis_client import redis_available
from secure_transfer.services.escrow_service import EscrowService


def get_escrow_service() -> EscrowService:
    """Provide the running EscrowService."""
    return get_service()


def get_idempotency_enabled() -> bool:
    """Whether create requests can be deduplicated (Redis connected)."""
    return redis_available()

