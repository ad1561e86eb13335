"""LedgerClient Protocol.

Defines the narrow interface the core consumes from the distributed ledger.
This is a Protocol (structural subtyping) so concrete adapters don't need to
inherit from a base class; they just need to match the shape.

The domain layer has ZERO imports from httpx or any ledger SDK. Push-style
event subscriptions are deliberately absent: the core polls via
``query_escrows`` whenever it needs fresh state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from secure_transfer.domain.models import (
        Escrow,
        EscrowFilter,
        FinalityReport,
        OperationDescriptor,
        OperationId,
    )


@runtime_checkable
class LedgerClient(Protocol):
    """Interface every ledger adapter must satisfy."""

    async def submit(self, operation: OperationDescriptor) -> OperationId:
        """Submit a mutating operation and return its id immediately.

        Raises:
            SubmissionFailedError: On network or signing failures. The
                operation must not have reached the ledger.
        """
        ...

    async def await_finality(self, operation_id: OperationId, timeout: float) -> FinalityReport:
        """Wait up to ``timeout`` seconds for the operation to seal or fail.

        Returns a report whose status is Sealed, Failed (with a reason) or
        TimedOut. A TimedOut report says nothing about whether the operation
        eventually applies.
        """
        ...

    async def query_escrows(self, escrow_filter: EscrowFilter | None = None) -> list[Escrow]:
        """Return the ledger's current escrow records matching the filter."""
        ...
