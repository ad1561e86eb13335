"""Ledger adapters implementing the LedgerClient protocol."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from secure_transfer.infrastructure.ledger.http_client import HttpLedgerClient, escrow_from_payload
from secure_transfer.infrastructure.ledger.simulated import SimulatedLedger

if TYPE_CHECKING:
    from collections.abc import Callable

    from secure_transfer.config import Settings
    from secure_transfer.domain.ledger_protocol import LedgerClient


def build_ledger_client(
    settings: Settings,
    clock: Callable[[], float] = time.time,
) -> LedgerClient:
    """Create the ledger adapter selected by ``settings.ledger_mode``."""
    if settings.uses_simulated_ledger:
        return SimulatedLedger(
            clock=clock,
            seal_delay=settings.simulated_seal_delay_seconds,
            starting_balance=settings.simulated_starting_balance,
        )
    return HttpLedgerClient.from_settings(settings)


__all__ = [
    "HttpLedgerClient",
    "SimulatedLedger",
    "build_ledger_client",
    "escrow_from_payload",
]
