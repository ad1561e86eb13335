"""Tests for the EscrowService facade."""

from __future__ import annotations

import pytest
from conftest import RECEIVER, SENDER

from secure_transfer.domain.enums import EscrowState
from secure_transfer.domain.exceptions import EscrowNotFoundError
from secure_transfer.domain.models import EscrowFilter
from secure_transfer.infrastructure.stores import EscrowStore
from secure_transfer.services.escrow_lifecycle import EscrowLifecycle
from secure_transfer.services.escrow_service import EscrowService


class TestReads:
    @pytest.mark.asyncio
    async def test_get_unknown_escrow(self, service) -> None:
        with pytest.raises(EscrowNotFoundError):
            await service.get_escrow("42")

    @pytest.mark.asyncio
    async def test_cold_cache_loads_from_ledger(
        self, ledger, runner, scheduler, lifecycle, create_args, clock
    ) -> None:
        await lifecycle.create(**create_args)
        cold = EscrowService(
            lifecycle=EscrowLifecycle(store=EscrowStore(ledger), runner=runner, clock=clock),
            scheduler=scheduler,
        )

        escrows = await cold.list_escrows(EscrowFilter(sender=SENDER))
        escrow = await cold.get_escrow("1")

        assert [e.id for e in escrows] == ["1"]
        assert escrow.receiver == RECEIVER

    @pytest.mark.asyncio
    async def test_stats_after_settlement(self, service) -> None:
        created = await service.create_escrow(
            sender=SENDER,
            receiver=RECEIVER,
            amount="5",
            token_kind="FLOW",
            duration_seconds=60,
            refund_mode="manual",
        )
        await service.claim_escrow(created.escrow_id, RECEIVER)

        stats = await service.get_stats()

        assert stats.total == 1
        assert stats.claimed == 1
        assert (await service.get_escrow(created.escrow_id)).state is EscrowState.CLAIMED

    @pytest.mark.asyncio
    async def test_check_ledger(self, service) -> None:
        await service.check_ledger()


class TestAutomations:
    @pytest.mark.asyncio
    async def test_create_and_toggle(self, service) -> None:
        task = await service.create_automation(
            kind="recurring",
            owner=SENDER,
            recipient=RECEIVER,
            amount="3",
            token_kind="FLOW",
            frequency="daily",
        )

        toggled = await service.toggle_automation(task.id)

        assert [t.id for t in service.list_automations()] == [task.id]
        assert toggled.status.value == "paused"
