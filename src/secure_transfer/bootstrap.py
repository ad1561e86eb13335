"""Service graph construction and lifecycle.

Provides:
    - build_service: wire ledger -> stores -> runner -> lifecycle -> scheduler.
    - init_service / close_service: lifespan hooks for the FastAPI app.
    - get_service: the running EscrowService singleton.

Usage:
    service = await init_service()
    outcome = await service.claim_escrow("7", "0x01cf0e2f2f715450")
    await close_service()
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from secure_transfer.config import get_settings
from secure_transfer.infrastructure.ledger import build_ledger_client
from secure_transfer.infrastructure.stores import AutomationStore, EscrowStore
from secure_transfer.logging_config import get_logger
from secure_transfer.services.automation_scheduler import AutomationScheduler
from secure_transfer.services.escrow_lifecycle import EscrowLifecycle
from secure_transfer.services.escrow_service import EscrowService
from secure_transfer.services.transaction_runner import TransactionRunner

if TYPE_CHECKING:
    from collections.abc import Callable

    from secure_transfer.config import Settings
    from secure_transfer.domain.ledger_protocol import LedgerClient

logger = get_logger(__name__)

# Module-level singletons (initialized in init_service)
_service: EscrowService | None = None
_ledger: LedgerClient | None = None


def build_service(
    settings: Settings,
    ledger: LedgerClient | None = None,
    clock: Callable[[], float] = time.time,
) -> EscrowService:
    """Assemble the full service graph. Nothing is started or fetched yet."""
    ledger = ledger if ledger is not None else build_ledger_client(settings, clock=clock)
    escrow_store = EscrowStore(ledger)
    runner = TransactionRunner(ledger, finality_timeout=settings.finality_timeout_seconds)
    lifecycle = EscrowLifecycle(
        store=escrow_store,
        runner=runner,
        clock=clock,
        system_actor=settings.scheduler_actor_address,
    )
    scheduler = AutomationScheduler(
        lifecycle=lifecycle,
        store=AutomationStore(),
        clock=clock,
        interval=settings.scheduler_interval_seconds,
        recurring_duration=settings.recurring_escrow_duration_seconds,
        auto_sweep=settings.scheduler_auto_sweep,
    )
    return EscrowService(lifecycle=lifecycle, scheduler=scheduler)


async def init_service(
    settings: Settings | None = None, ledger: LedgerClient | None = None
) -> EscrowService:
    """Build the service, load the escrow cache and start the scheduler."""
    global _service, _ledger
    settings = settings or get_settings()
    _ledger = ledger if ledger is not None else build_ledger_client(settings)
    _service = build_service(settings, ledger=_ledger)

    escrows = await _service.refresh()
    logger.info(
        "service.initialized",
        ledger_mode=settings.ledger_mode,
        network=settings.ledger_network,
        escrows=len(escrows),
    )
    if settings.scheduler_enabled:
        await _service.scheduler.start()
    return _service


def get_service() -> EscrowService:
    """Return the EscrowService singleton. Must call init_service() first."""
    if _service is None:
        raise RuntimeError("Escrow service not initialized. Call init_service() first.")
    return _service


async def close_service() -> None:
    """Stop the scheduler and release the ledger client."""
    global _service, _ledger
    if _service is not None:
        await _service.scheduler.stop()
        _service = None
    if _ledger is not None:
        aclose = getattr(_ledger, "aclose", None)
        if aclose is not None:
            await aclose()
        _ledger = None
        logger.info("service.closed")
