#!/usr/bin/env python3
"""SecureTransfer: End-to-End Simulation.

Runs the escrow engine against the in-process simulated ledger with a
controllable clock, so expiry can be reached instantly:

    Scenario 1: Claim Before Expiry
        - Sender locks 100 FLOW for 1 hour (manual refund)
        - Sender tries to claim it -> NOT_RECEIVER
        - Receiver claims -> Sealed, escrow Claimed

    Scenario 2: Auto-Refund Sweep
        - Sender locks 25 FLOW for 1 second (auto refund)
        - Clock moves 2 seconds forward
        - Sweep -> one Sealed refund; a second sweep does nothing

    Scenario 3: Concurrent Claims
        - Two claims for the same escrow race each other
        - Exactly one seals; funds move once

    Scenario 4: Recurring Payment
        - A weekly automation creates an escrow every period
        - next_run advances by exactly one week per firing (no drift)

Usage:
    uv run python simulation.py
    uv run python simulation.py --scenario 3
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from secure_transfer.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

SENDER = "0x01cf0e2f2f715450"
RECEIVER = "0x179b6b1cb6755e31"
START_TIME = 1_700_000_000.0


@dataclass
class SimClock:
    """Wall clock the scenarios can move forward at will."""

    now: float = START_TIME

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class World:
    """One service graph over a fresh simulated ledger."""

    clock: SimClock = field(default_factory=SimClock)

    def __post_init__(self) -> None:
        from secure_transfer.bootstrap import build_service
        from secure_transfer.config import Settings
        from secure_transfer.infrastructure.ledger import SimulatedLedger

        settings = Settings(ledger_mode="simulated", scheduler_enabled=False)
        self.ledger = SimulatedLedger(clock=self.clock)
        self.service = build_service(settings, ledger=self.ledger, clock=self.clock)

    def balances(self) -> str:
        return (
            f"sender={self.ledger.balance_of(SENDER)} "
            f"receiver={self.ledger.balance_of(RECEIVER)}"
        )


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class SenderBot:
    """Simulated sender that locks funds in escrows."""

    world: World
    address: str = SENDER

    async def lock(self, amount: str, duration: float, refund_mode: str = "manual") -> str:
        outcome = await self.world.service.create_escrow(
            sender=self.address,
            receiver=RECEIVER,
            amount=Decimal(amount),
            token_kind="FLOW",
            duration_seconds=duration,
            refund_mode=refund_mode,
        )
        print_outcome("SENDER create", outcome)
        logger.info("sender.locked", escrow_id=outcome.escrow_id, amount=amount, refund_mode=refund_mode)
        return outcome.escrow_id

    async def claim(self, escrow_id: str):
        outcome = await self.world.service.claim_escrow(escrow_id, self.address)
        print_outcome("SENDER claim", outcome)
        return outcome


@dataclass
class ReceiverBot:
    """Simulated receiver that claims escrows."""

    world: World
    address: str = RECEIVER

    async def claim(self, escrow_id: str):
        outcome = await self.world.service.claim_escrow(escrow_id, self.address)
        print_outcome("RECEIVER claim", outcome)
        return outcome


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def print_outcome(label: str, outcome) -> None:
    icon = "✅" if outcome.sealed else "❌"
    line = f"  {icon} {label}: {outcome.final_state.value}"
    if outcome.escrow_id:
        line += f" (escrow {outcome.escrow_id})"
    if outcome.error_kind:
        line += f" {outcome.error_kind.value}: {outcome.message}"
    print(line)


async def print_escrow(world: World, escrow_id: str) -> None:
    escrow = await world.service.get_escrow(escrow_id)
    now = world.service.now()
    print(
        f"  📜 Escrow {escrow.id}: {escrow.state.value}, {escrow.amount} {escrow.token_kind.value}, "
        f"{escrow.refund_mode.value} refund, {escrow.format_time_remaining(now)}"
    )


# ===========================================================================
# Scenario 1: Claim Before Expiry
# ===========================================================================
async def scenario_1_claim_before_expiry() -> None:
    banner("SCENARIO 1: Claim Before Expiry")
    world = World()
    sender, receiver = SenderBot(world), ReceiverBot(world)

    section("Sender locks 100 FLOW for one hour")
    escrow_id = await sender.lock("100", duration=3600)
    await print_escrow(world, escrow_id)

    section("Sender tries to claim the escrow")
    await sender.claim(escrow_id)

    section("Receiver claims")
    await receiver.claim(escrow_id)
    await print_escrow(world, escrow_id)
    print(f"  💰 Balances: {world.balances()}")


# ===========================================================================
# Scenario 2: Auto-Refund Sweep
# ===========================================================================
async def scenario_2_auto_refund_sweep() -> None:
    banner("SCENARIO 2: Auto-Refund Sweep")
    world = World()
    sender = SenderBot(world)

    section("Sender locks 25 FLOW for one second, auto refund")
    escrow_id = await sender.lock("25", duration=1, refund_mode="auto")

    section("Two seconds pass")
    world.clock.advance(2)
    await print_escrow(world, escrow_id)

    section("Sweep")
    outcomes = await world.service.sweep_expired_auto()
    for outcome in outcomes:
        print_outcome("SCHEDULER refund", outcome)
    await print_escrow(world, escrow_id)

    section("Sweep again")
    outcomes = await world.service.sweep_expired_auto()
    print(f"  🧹 Second sweep attempted {len(outcomes)} refunds")
    print(f"  💰 Balances: {world.balances()}")


# ===========================================================================
# Scenario 3: Concurrent Claims
# ===========================================================================
async def scenario_3_concurrent_claims() -> None:
    banner("SCENARIO 3: Concurrent Claims")
    world = World()
    sender, receiver = SenderBot(world), ReceiverBot(world)

    escrow_id = await sender.lock("40", duration=3600)
    world.ledger.seal_delay = 0.05

    section("Two claims race")
    outcomes = await asyncio.gather(receiver.claim(escrow_id), receiver.claim(escrow_id))
    sealed = sum(1 for o in outcomes if o.sealed)
    print(f"\n  🛡️  Sealed claims: {sealed}/2")
    await print_escrow(world, escrow_id)
    print(f"  💰 Balances: {world.balances()}")
    await world.ledger.aclose()


# ===========================================================================
# Scenario 4: Recurring Payment
# ===========================================================================
async def scenario_4_recurring_payment() -> None:
    banner("SCENARIO 4: Recurring Payment")
    world = World()
    scheduler = world.service.scheduler

    task = await world.service.create_automation(
        kind="recurring",
        owner=SENDER,
        recipient=RECEIVER,
        amount=Decimal("10"),
        token_kind="FLOW",
        frequency="weekly",
    )
    print(f"  🔁 Task {task.id} first runs in {task.next_run - world.clock.now:.0f}s")

    for week in range(1, 4):
        section(f"Week {week}")
        world.clock.advance(7 * 86400 + 90)
        report = await scheduler.tick()
        for run in report.task_runs:
            print_outcome(f"AUTOMATION {run.kind.value}", run.outcome)
        current = scheduler.get_task(task.id)
        print(
            f"  ⏭️  next_run offset from start: {current.next_run - START_TIME:.0f}s "
            f"(fired {current.fire_count}x)"
        )

    escrows = await world.service.list_escrows()
    print(f"\n  📦 Escrows created by the automation: {len(escrows)}")
    print(f"  💰 Balances: {world.balances()}")


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_claim_before_expiry,
    2: scenario_2_auto_refund_sweep,
    3: scenario_3_concurrent_claims,
    4: scenario_4_recurring_payment,
}


async def run_all() -> None:
    """Run all scenarios sequentially."""
    print("\n" + "🚀" * 35)
    print("  SECURETRANSFER SIMULATION")
    print("  Ledger: simulated (in-process)")
    print("🚀" * 35 + "\n")

    for scenario in SCENARIOS.values():
        await scenario()

    print("\n" + "=" * 70)
    print("  ✅ ALL SCENARIOS COMPLETED")
    print("=" * 70 + "\n")


async def run_scenario(num: int) -> None:
    """Run a specific scenario."""
    if num not in SCENARIOS:
        print(f"Unknown scenario {num}. Available: {', '.join(map(str, SCENARIOS))}")
        return
    await SCENARIOS[num]()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="SecureTransfer Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1-4). Default: run all.",
    )
    args = parser.parse_args()

    if args.scenario == 0:
        asyncio.run(run_all())
    else:
        asyncio.run(run_scenario(args.scenario))
