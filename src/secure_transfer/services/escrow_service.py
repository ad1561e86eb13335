"""Escrow Service: the facade the presentation layer talks to.

Both REST routes and MCP tools call into this service, so there is a single
place where the core is entered. It holds no rules of its own: escrow
mutations go to EscrowLifecycle, automations to AutomationScheduler, and
reads are served from the EscrowStore cache.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from secure_transfer.domain.exceptions import EscrowNotFoundError
from secure_transfer.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from secure_transfer.domain.enums import Frequency, RefundMode, TokenKind
    from secure_transfer.domain.models import (
        AutomationTask,
        Escrow,
        EscrowFilter,
        EscrowId,
        EscrowStats,
        TransactionOutcome,
    )
    from secure_transfer.services.automation_scheduler import AutomationScheduler
    from secure_transfer.services.escrow_lifecycle import EscrowLifecycle

logger = get_logger(__name__)


class EscrowService:
    """Entry point for escrow and automation use cases."""

    def __init__(self, lifecycle: EscrowLifecycle, scheduler: AutomationScheduler) -> None:
        self._lifecycle = lifecycle
        self._scheduler = scheduler
        self._store = lifecycle.store

    @property
    def lifecycle(self) -> EscrowLifecycle:
        return self._lifecycle

    @property
    def scheduler(self) -> AutomationScheduler:
        return self._scheduler

    def now(self) -> float:
        return self._lifecycle.now()

    # ------------------------------------------------------------------
    # Escrow reads
    # ------------------------------------------------------------------

    async def refresh(self) -> list[Escrow]:
        """Reload every escrow from the ledger."""
        return await self._store.refresh()

    async def check_ledger(self) -> None:
        """Raise if the ledger cannot be queried."""
        await self._store.probe()

    async def list_escrows(self, escrow_filter: EscrowFilter | None = None) -> list[Escrow]:
        """Cached escrows, loading the cache on first use."""
        if not self._store.has_loaded:
            await self._store.refresh()
        return self._store.list(escrow_filter)

    async def get_escrow(self, escrow_id: EscrowId) -> Escrow:
        escrow = self._store.get(escrow_id)
        if escrow is None:
            await self._store.refresh([escrow_id])
            escrow = self._store.get(escrow_id)
        if escrow is None:
            raise EscrowNotFoundError(escrow_id)
        return escrow

    async def get_stats(self) -> EscrowStats:
        if not self._store.has_loaded:
            await self._store.refresh()
        return self._store.stats(self.now())

    # ------------------------------------------------------------------
    # Escrow mutations
    # ------------------------------------------------------------------

    async def create_escrow(
        self,
        sender: str,
        receiver: str,
        amount: Decimal | str,
        token_kind: TokenKind | str,
        duration_seconds: float,
        refund_mode: RefundMode | str,
    ) -> TransactionOutcome:
        return await self._lifecycle.create(
            sender=sender,
            receiver=receiver,
            amount=amount,
            token_kind=token_kind,
            duration=duration_seconds,
            refund_mode=refund_mode,
        )

    async def claim_escrow(self, escrow_id: EscrowId, requester: str) -> TransactionOutcome:
        return await self._lifecycle.claim(escrow_id, requester)

    async def refund_escrow(self, escrow_id: EscrowId, requester: str) -> TransactionOutcome:
        return await self._lifecycle.refund(escrow_id, requester)

    async def sweep_expired_auto(self) -> list[TransactionOutcome]:
        return await self._lifecycle.sweep_expired_auto()

    # ------------------------------------------------------------------
    # Automations
    # ------------------------------------------------------------------

    def list_automations(self) -> list[AutomationTask]:
        return self._scheduler.list_tasks()

    async def create_automation(
        self,
        kind: str,
        owner: str,
        recipient: str,
        amount: Decimal | str,
        token_kind: TokenKind | str,
        frequency: Frequency | str | None = None,
        escrow_id: EscrowId | None = None,
        first_run: float | None = None,
        refund_mode: RefundMode | str = "manual",
    ) -> AutomationTask:
        return await self._scheduler.create_task(
            kind=kind,
            owner=owner,
            recipient=recipient,
            amount=amount,
            token_kind=token_kind,
            frequency=frequency,
            escrow_id=escrow_id,
            first_run=first_run,
            refund_mode=refund_mode,
        )

    async def toggle_automation(self, task_id: str) -> AutomationTask:
        return await self._scheduler.toggle_task(task_id)
