"""Tests for AutomationScheduler: task registration, ticks and the loop."""

from __future__ import annotations

import asyncio
import math
from decimal import Decimal

import pytest
from conftest import RECEIVER, SENDER, SYSTEM

from secure_transfer.domain.enums import (
    AutomationKind,
    AutomationStatus,
    ErrorKind,
    EscrowState,
    Frequency,
)
from secure_transfer.domain.exceptions import (
    AutomationNotFoundError,
    InvalidStateTransitionError,
    ValidationError,
)
from secure_transfer.services.automation_scheduler import AutomationScheduler
from secure_transfer.services.escrow_lifecycle import EscrowLifecycle
from secure_transfer.services.transaction_runner import TransactionRunner

WEEK = Frequency.WEEKLY.period_seconds


async def _recurring(scheduler: AutomationScheduler, **overrides):
    fields = {
        "kind": "recurring",
        "owner": SENDER,
        "recipient": RECEIVER,
        "amount": Decimal("10"),
        "frequency": "weekly",
    }
    fields.update(overrides)
    return await scheduler.create_task(**fields)


class TestCreateTask:
    @pytest.mark.asyncio
    async def test_recurring_first_run_defaults_to_one_period(self, scheduler, clock) -> None:
        task = await _recurring(scheduler)

        assert task.id.startswith("auto-")
        assert task.status is AutomationStatus.ACTIVE
        assert task.next_run == clock() + WEEK

    @pytest.mark.asyncio
    async def test_one_shot_first_run_defaults_to_now(self, scheduler, clock) -> None:
        task = await scheduler.create_task(
            kind="auto_claim", owner=RECEIVER, recipient=SENDER, amount="1", escrow_id="1"
        )
        assert task.next_run == clock()

    @pytest.mark.asyncio
    async def test_recurring_without_frequency(self, scheduler) -> None:
        with pytest.raises(ValidationError):
            await _recurring(scheduler, frequency=None)

    @pytest.mark.asyncio
    async def test_unknown_frequency(self, scheduler) -> None:
        with pytest.raises(ValidationError):
            await _recurring(scheduler, frequency="hourly")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("first_run", [math.nan, math.inf])
    async def test_non_finite_first_run(self, scheduler, first_run: float) -> None:
        with pytest.raises(ValidationError, match="first_run"):
            await _recurring(scheduler, first_run=first_run)

        assert scheduler.list_tasks() == []

    @pytest.mark.asyncio
    async def test_listing_returns_snapshots(self, scheduler) -> None:
        task = await _recurring(scheduler)
        listed = scheduler.list_tasks()
        listed[0].fire_count = 99
        assert scheduler.get_task(task.id).fire_count == 0


class TestToggle:
    @pytest.mark.asyncio
    async def test_pause_and_resume(self, scheduler) -> None:
        task = await _recurring(scheduler)

        paused = await scheduler.toggle_task(task.id)
        resumed = await scheduler.toggle_task(task.id)

        assert paused.status is AutomationStatus.PAUSED
        assert resumed.status is AutomationStatus.ACTIVE
        assert resumed.pause_reason is None

    @pytest.mark.asyncio
    async def test_unknown_task(self, scheduler) -> None:
        with pytest.raises(AutomationNotFoundError):
            await scheduler.toggle_task("auto-missing")

    @pytest.mark.asyncio
    async def test_completed_task_cannot_toggle(self, scheduler, lifecycle, create_args) -> None:
        created = await lifecycle.create(**create_args)
        task = await scheduler.create_task(
            kind="auto_claim",
            owner=RECEIVER,
            recipient=SENDER,
            amount="100",
            escrow_id=created.escrow_id,
        )
        await scheduler.tick()
        assert scheduler.get_task(task.id).status is AutomationStatus.COMPLETED

        with pytest.raises(InvalidStateTransitionError):
            await scheduler.toggle_task(task.id)


class TestTick:
    @pytest.mark.asyncio
    async def test_recurring_payment_does_not_drift(self, scheduler, lifecycle, clock) -> None:
        task = await _recurring(scheduler)
        first_slot = task.next_run

        for _ in range(3):
            clock.advance(WEEK + 45)
            report = await scheduler.tick()
            assert [run.outcome.sealed for run in report.task_runs] == [True]

        current = scheduler.get_task(task.id)
        assert current.fire_count == 3
        assert current.next_run == first_slot + 3 * WEEK
        assert len(lifecycle.store.list()) == 3

    @pytest.mark.asyncio
    async def test_task_not_due_does_not_fire(self, scheduler, lifecycle) -> None:
        await _recurring(scheduler)

        report = await scheduler.tick()

        assert report.task_runs == []
        assert lifecycle.store.list() == []

    @pytest.mark.asyncio
    async def test_paused_task_never_fires(self, scheduler, lifecycle, clock) -> None:
        task = await _recurring(scheduler)
        await scheduler.toggle_task(task.id)
        clock.advance(5 * WEEK)

        report = await scheduler.tick()

        assert report.task_runs == []
        assert scheduler.get_task(task.id).fire_count == 0

    @pytest.mark.asyncio
    async def test_scheduled_refund_completes(self, scheduler, lifecycle, create_args, clock) -> None:
        created = await lifecycle.create(**create_args)
        task = await scheduler.create_task(
            kind="scheduled_refund",
            owner=SENDER,
            recipient=RECEIVER,
            amount="100",
            escrow_id=created.escrow_id,
            first_run=clock() + 3601,
        )
        clock.advance(3601)

        report = await scheduler.tick()

        assert report.task_runs[0].kind is AutomationKind.SCHEDULED_REFUND
        assert report.task_runs[0].task_status is AutomationStatus.COMPLETED
        assert lifecycle.store.get(created.escrow_id).state is EscrowState.REFUNDED

    @pytest.mark.asyncio
    async def test_permanent_error_pauses_task(self, scheduler, lifecycle, create_args) -> None:
        created = await lifecycle.create(**create_args)
        task = await scheduler.create_task(
            kind="scheduled_refund",
            owner=SENDER,
            recipient=RECEIVER,
            amount="100",
            escrow_id=created.escrow_id,
        )

        report = await scheduler.tick()

        run = report.task_runs[0]
        assert run.outcome.error_kind is ErrorKind.NOT_EXPIRED
        # Not expired yet: retried on the next tick rather than paused.
        assert run.task_status is AutomationStatus.ACTIVE

        await lifecycle.claim(created.escrow_id, RECEIVER)
        report = await scheduler.tick()

        current = scheduler.get_task(task.id)
        assert report.task_runs[0].outcome.error_kind is ErrorKind.ALREADY_SETTLED
        assert current.status is AutomationStatus.PAUSED
        assert "ALREADY_SETTLED" in current.pause_reason

    @pytest.mark.asyncio
    async def test_retryable_failure_keeps_slot(self, scheduler, ledger, clock) -> None:
        task = await _recurring(scheduler)
        slot = task.next_run
        clock.advance(WEEK)
        ledger.fail_next_submissions(1)

        report = await scheduler.tick()

        assert report.task_runs[0].outcome.error_kind is ErrorKind.SUBMISSION_FAILED
        current = scheduler.get_task(task.id)
        assert current.status is AutomationStatus.ACTIVE
        assert current.next_run == slot
        assert current.last_error.startswith("SUBMISSION_FAILED")

        report = await scheduler.tick()
        assert report.task_runs[0].outcome.sealed
        assert scheduler.get_task(task.id).next_run == slot + WEEK

    @pytest.mark.asyncio
    async def test_tick_runs_auto_sweep(self, scheduler, lifecycle, create_args, clock) -> None:
        created = await lifecycle.create(**{**create_args, "duration": 5, "refund_mode": "auto"})
        clock.advance(6)

        report = await scheduler.tick()

        assert [o.escrow_id for o in report.sweep_outcomes] == [created.escrow_id]
        assert lifecycle.store.get(created.escrow_id).state is EscrowState.REFUNDED

    @pytest.mark.asyncio
    async def test_auto_sweep_can_be_disabled(self, lifecycle, create_args, clock) -> None:
        scheduler = AutomationScheduler(lifecycle=lifecycle, clock=clock, auto_sweep=False)
        await lifecycle.create(**{**create_args, "duration": 5, "refund_mode": "auto"})
        clock.advance(6)

        report = await scheduler.tick()

        assert report.sweep_outcomes == []


class TestInDoubtOutcomes:
    @pytest.fixture
    def slow_scheduler(self, escrow_store, ledger, clock) -> AutomationScheduler:
        ledger.seal_delay = 0.05
        lifecycle = EscrowLifecycle(
            store=escrow_store,
            runner=TransactionRunner(ledger, finality_timeout=0.01),
            clock=clock,
            system_actor=SYSTEM,
        )
        return AutomationScheduler(lifecycle=lifecycle, clock=clock, auto_sweep=False)

    @pytest.mark.asyncio
    async def test_timed_out_create_is_awaited_not_resubmitted(
        self, slow_scheduler, ledger, clock
    ) -> None:
        task = await _recurring(slow_scheduler)
        slot = task.next_run
        clock.advance(WEEK)

        report = await slow_scheduler.tick()

        assert report.task_runs[0].outcome.error_kind is ErrorKind.TIMED_OUT
        pending = slow_scheduler.get_task(task.id)
        assert pending.status is AutomationStatus.ACTIVE
        assert pending.next_run == slot
        assert pending.pending_operation_id == report.task_runs[0].outcome.operation_id

        await asyncio.sleep(0.2)
        report = await slow_scheduler.tick()

        assert report.task_runs[0].outcome.sealed
        assert [e.id for e in await ledger.query_escrows()] == ["1"]
        assert ledger.balance_of(SENDER) == Decimal("990")
        current = slow_scheduler.get_task(task.id)
        assert current.pending_operation_id is None
        assert current.fire_count == 1
        assert current.next_run == slot + WEEK

    @pytest.mark.asyncio
    async def test_unconfirmed_submission_pauses_recurring_task(
        self, scheduler, ledger, clock, monkeypatch
    ) -> None:
        async def lost(operation) -> str:
            raise RuntimeError("connection reset after request was written")

        task = await _recurring(scheduler)
        clock.advance(WEEK)
        monkeypatch.setattr(ledger, "submit", lost)

        report = await scheduler.tick()

        assert report.task_runs[0].outcome.in_doubt
        current = scheduler.get_task(task.id)
        assert current.status is AutomationStatus.PAUSED
        assert current.pause_reason.startswith("needs reconciliation")
        assert current.pending_operation_id is None

    @pytest.mark.asyncio
    async def test_confirmed_failure_clears_pending_operation(
        self, slow_scheduler, ledger, clock
    ) -> None:
        task = await _recurring(slow_scheduler, amount=Decimal("5000"))
        clock.advance(WEEK)

        first = await slow_scheduler.tick()
        assert first.task_runs[0].outcome.error_kind is ErrorKind.TIMED_OUT

        await asyncio.sleep(0.2)
        second = await slow_scheduler.tick()

        assert second.task_runs[0].outcome.in_doubt is False
        current = slow_scheduler.get_task(task.id)
        assert current.pending_operation_id is None
        assert current.fire_count == 0
        assert await ledger.query_escrows() == []


class TestLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, lifecycle, clock) -> None:
        scheduler = AutomationScheduler(lifecycle=lifecycle, clock=clock, interval=0.01)

        await scheduler.start()
        assert scheduler.is_running
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_loop_survives_unexpected_error(self, lifecycle, clock, monkeypatch) -> None:
        calls = 0

        async def broken_sweep() -> list:
            nonlocal calls
            calls += 1
            raise RuntimeError("cache corrupted")

        monkeypatch.setattr(lifecycle, "sweep_expired_auto", broken_sweep)
        scheduler = AutomationScheduler(lifecycle=lifecycle, clock=clock, interval=0.01)

        await scheduler.start()
        await asyncio.sleep(0.1)
        still_running = scheduler.is_running
        await scheduler.stop()

        assert still_running
        assert calls >= 2
