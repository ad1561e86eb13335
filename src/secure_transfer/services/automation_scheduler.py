"""Automation Scheduler: the single authority for recurring and scheduled actions.

On every tick (fixed interval, not ledger-event driven):

    1. select Active tasks whose next_run has arrived;
    2. dispatch each by kind, concurrently across tasks:
           RecurringPayment -> EscrowLifecycle.create(owner -> recipient)
           ScheduledRefund  -> EscrowLifecycle.refund(escrow_id, owner)
           AutoClaim        -> EscrowLifecycle.claim(escrow_id, owner)
    3. on Sealed, a RecurringPayment advances next_run by exactly one period
       from its previous next_run (never from "now", so there is no drift);
       one-shot kinds become Completed;
    4. on failure, permanent error kinds pause the task with a reason; all
       others leave it Active so the next tick retries. An in-doubt outcome
       (TimedOut, or no verdict from the ledger) is never resubmitted: its
       operation id is kept and re-awaited on the next tick instead;
    5. optionally sweep expired Auto-mode escrows.

Usage:
    scheduler = AutomationScheduler(lifecycle, interval=30)
    await scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from secure_transfer.domain.enums import (
    AutomationKind,
    AutomationStatus,
    ErrorKind,
    Frequency,
    OperationKind,
    RefundMode,
    TokenKind,
)
from secure_transfer.domain.exceptions import EscrowEngineError, ValidationError
from secure_transfer.domain.models import (
    AutomationTask,
    TransactionOutcome,
    normalize_address,
    parse_amount,
)
from secure_transfer.domain.state_machine import AutomationStateMachine, validate_transition
from secure_transfer.infrastructure.stores import AutomationStore
from secure_transfer.logging_config import get_logger
from secure_transfer.services.single_flight import SingleFlight

if TYPE_CHECKING:
    from collections.abc import Callable
    from decimal import Decimal

    from secure_transfer.domain.models import EscrowId
    from secure_transfer.services.escrow_lifecycle import EscrowLifecycle

logger = get_logger(__name__)

# Failures that will not go away by retrying the same task unchanged.
PERMANENT_TASK_ERRORS = frozenset(
    {
        ErrorKind.VALIDATION,
        ErrorKind.NOT_FOUND,
        ErrorKind.NOT_RECEIVER,
        ErrorKind.NOT_SENDER,
        ErrorKind.EXPIRED,
        ErrorKind.ALREADY_SETTLED,
    }
)

_OPERATION_FOR_KIND = {
    AutomationKind.RECURRING_PAYMENT: OperationKind.CREATE,
    AutomationKind.SCHEDULED_REFUND: OperationKind.REFUND,
    AutomationKind.AUTO_CLAIM: OperationKind.CLAIM,
}


@dataclass(frozen=True)
class TaskRun:
    """One dispatch of one task during a tick."""

    task_id: str
    kind: AutomationKind
    outcome: TransactionOutcome
    task_status: AutomationStatus


@dataclass(frozen=True)
class TickReport:
    """Everything a single tick did."""

    tick: int
    ran_at: float
    task_runs: list[TaskRun] = field(default_factory=list)
    sweep_outcomes: list[TransactionOutcome] = field(default_factory=list)


class AutomationScheduler:
    """Owns the automation task collection and fires due tasks."""

    def __init__(
        self,
        lifecycle: EscrowLifecycle,
        store: AutomationStore | None = None,
        clock: Callable[[], float] = time.time,
        interval: float = 30.0,
        recurring_duration: float = 86_400,
        auto_sweep: bool = True,
    ) -> None:
        self._lifecycle = lifecycle
        self._store = store or AutomationStore()
        self._clock = clock
        self._interval = interval
        self._recurring_duration = recurring_duration
        self._auto_sweep = auto_sweep
        self._dispatching = SingleFlight()
        self._tick_count = 0
        self._loop_task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # ------------------------------------------------------------------
    # Task management
    # ------------------------------------------------------------------

    async def create_task(
        self,
        kind: AutomationKind | str,
        owner: str,
        recipient: str,
        amount: Decimal | str,
        token_kind: TokenKind | str = TokenKind.FLOW,
        frequency: Frequency | str | None = None,
        escrow_id: EscrowId | None = None,
        first_run: float | None = None,
        refund_mode: RefundMode | str = RefundMode.MANUAL,
    ) -> AutomationTask:
        """Register a new Active task.

        ``first_run`` defaults to one period from now for recurring payments
        and to now (the next tick) for one-shot kinds.

        Raises:
            ValidationError: On malformed fields or a frequency/kind mismatch.
        """
        try:
            kind = AutomationKind(kind)
            token = TokenKind(token_kind)
            freq = Frequency(frequency) if frequency is not None else None
            mode = RefundMode(str(refund_mode).lower())
        except ValueError as err:
            raise ValidationError(str(err)) from err

        now = self._clock()
        if first_run is None:
            first_run = now + freq.period_seconds if freq is not None else now
        if not math.isfinite(first_run):
            raise ValidationError("first_run must be a finite timestamp", field="first_run")

        task = AutomationTask(
            id=f"auto-{uuid.uuid4().hex[:12]}",
            kind=kind,
            owner=normalize_address(owner, "owner"),
            recipient=normalize_address(recipient, "recipient"),
            amount=parse_amount(amount),
            token_kind=token,
            next_run=first_run,
            created_at=now,
            frequency=freq,
            escrow_id=str(escrow_id) if escrow_id is not None else None,
            refund_mode=mode,
        )
        await self._store.add(task)
        logger.info(
            "scheduler.task_created",
            task_id=task.id,
            kind=kind.value,
            next_run=task.next_run,
            frequency=freq.value if freq else None,
        )
        return task.snapshot()

    def list_tasks(self, status: AutomationStatus | None = None) -> list[AutomationTask]:
        return self._store.list(status)

    def get_task(self, task_id: str) -> AutomationTask:
        return self._store.get(task_id)

    async def toggle_task(self, task_id: str) -> AutomationTask:
        """Pause an Active task or resume a Paused one.

        Raises:
            AutomationNotFoundError: Unknown id.
            InvalidStateTransitionError: The task is Completed.
        """

        def _toggle(task: AutomationTask) -> None:
            event = "pause" if task.status is AutomationStatus.ACTIVE else "resume"
            task.status = AutomationStatus(
                validate_transition(AutomationStateMachine, task.status.value, event)
            )
            task.pause_reason = "paused by user" if event == "pause" else None

        task = await self._store.update(task_id, _toggle)
        logger.info("scheduler.task_toggled", task_id=task_id, status=task.status.value)
        return task

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> TickReport:
        """Run one scheduling pass."""
        self._tick_count += 1
        now = self._clock()
        with structlog.contextvars.bound_contextvars(tick=self._tick_count):
            due = [t for t in self._store.due(now) if not self._dispatching.is_held(t.id)]
            if due:
                logger.info("scheduler.tick", due=len(due))
            runs = await asyncio.gather(*(self._run_task(task) for task in due))

            sweep_outcomes: list[TransactionOutcome] = []
            if self._auto_sweep:
                sweep_outcomes = await self._lifecycle.sweep_expired_auto()

        return TickReport(
            tick=self._tick_count,
            ran_at=now,
            task_runs=[run for run in runs if run is not None],
            sweep_outcomes=sweep_outcomes,
        )

    async def _run_task(self, task: AutomationTask) -> TaskRun | None:
        try:
            with self._dispatching.hold(task.id):
                outcome = await self._dispatch(task)
                updated = await self._store.update(
                    task.id, lambda live: self._record_outcome(live, task.next_run, outcome)
                )
        except EscrowEngineError as exc:
            logger.warning("scheduler.task_skipped", task_id=task.id, error=exc.message)
            return None
        except Exception:
            logger.exception("scheduler.task_crashed", task_id=task.id)
            return None
        return TaskRun(task_id=task.id, kind=task.kind, outcome=outcome, task_status=updated.status)

    async def _dispatch(self, task: AutomationTask) -> TransactionOutcome:
        if task.pending_operation_id is not None:
            # The previous attempt may still apply; never submit the slot twice.
            return await self._lifecycle.resume(
                _OPERATION_FOR_KIND[task.kind], task.pending_operation_id, task.escrow_id
            )
        logger.info("scheduler.dispatching", task_id=task.id, kind=task.kind.value)
        if task.kind is AutomationKind.RECURRING_PAYMENT:
            return await self._lifecycle.create(
                sender=task.owner,
                receiver=task.recipient,
                amount=task.amount,
                token_kind=task.token_kind,
                duration=self._recurring_duration,
                refund_mode=task.refund_mode,
            )
        if task.kind is AutomationKind.SCHEDULED_REFUND:
            return await self._lifecycle.refund(task.escrow_id, task.owner)
        return await self._lifecycle.claim(task.escrow_id, task.owner)

    def _record_outcome(
        self,
        task: AutomationTask,
        fired_slot: float,
        outcome: TransactionOutcome,
    ) -> None:
        """Apply a dispatch outcome to the live task (runs under the store lock)."""
        if outcome.sealed:
            task.fire_count += 1
            task.last_error = None
            task.pending_operation_id = None
            if task.kind.is_recurring:
                task.next_run = fired_slot + task.frequency.period_seconds
            else:
                task.status = AutomationStatus(
                    validate_transition(AutomationStateMachine, task.status.value, "complete")
                )
            logger.info(
                "scheduler.task_fired",
                task_id=task.id,
                fire_count=task.fire_count,
                next_run=task.next_run,
                status=task.status.value,
                escrow_id=outcome.escrow_id,
            )
            return

        task.last_error = f"{outcome.error_kind}: {outcome.message}"
        if outcome.in_doubt and outcome.operation_id is not None:
            task.pending_operation_id = outcome.operation_id
            logger.warning(
                "scheduler.task_awaiting_finality",
                task_id=task.id,
                operation_id=outcome.operation_id,
                error_kind=outcome.error_kind,
            )
            return

        task.pending_operation_id = None
        if outcome.in_doubt and task.kind.is_recurring:
            # No operation id to re-await, and a second create could pay twice.
            self._pause(task, f"needs reconciliation: {task.last_error}")
        elif outcome.error_kind in PERMANENT_TASK_ERRORS:
            self._pause(task, task.last_error)
        else:
            logger.warning(
                "scheduler.task_failed_will_retry",
                task_id=task.id,
                error_kind=outcome.error_kind,
                reason=outcome.message,
            )

    @staticmethod
    def _pause(task: AutomationTask, reason: str) -> None:
        if task.status is not AutomationStatus.ACTIVE:
            return
        task.status = AutomationStatus(
            validate_transition(AutomationStateMachine, task.status.value, "pause")
        )
        task.pause_reason = reason
        logger.warning("scheduler.task_paused", task_id=task.id, reason=reason)

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start ticking every ``interval`` seconds in a background task."""
        if self.is_running:
            return
        self._stopping.clear()
        self._loop_task = asyncio.create_task(self._run_forever(), name="automation-scheduler")
        logger.info("scheduler.started", interval=self._interval)

    async def stop(self) -> None:
        """Stop the background loop and wait for the current tick to finish."""
        if self._loop_task is None:
            return
        self._stopping.set()
        await self._loop_task
        self._loop_task = None
        logger.info("scheduler.stopped", ticks=self._tick_count)

    async def _run_forever(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.tick()
            except EscrowEngineError as exc:
                # e.g. the ledger query behind the sweep failed; next tick retries.
                logger.error("scheduler.tick_failed", error=exc.message, error_kind=exc.kind.value)
            except Exception:
                logger.exception("scheduler.tick_crashed", tick=self._tick_count)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
