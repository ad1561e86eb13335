"""Transaction Runner: uniform submit / await finality / classify protocol.

Every mutating ledger call goes through ``TransactionRunner.run``:

    1. submit the operation and get its id immediately
       (network/signing errors -> SubmissionFailed);
    2. await finality, bounded by the configured timeout;
    3. classify a Failed report into the ErrorKind taxonomy;
    4. on Sealed, run the caller's refresh callback before returning.

The caller always observes exactly one of Sealed, Failed(kind) or TimedOut.
A TimedOut outcome does not mean the operation failed: it may still seal, and
the caller must re-query state instead of resubmitting blindly. Such outcomes,
and Failed outcomes where the ledger never reported a verdict, carry
``in_doubt=True``; ``finalize`` re-awaits them by operation id.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from secure_transfer.domain.enums import ErrorKind, FinalState
from secure_transfer.domain.exceptions import EscrowEngineError, FinalityTimeoutError
from secure_transfer.domain.models import FinalityReport, TransactionOutcome
from secure_transfer.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from secure_transfer.domain.enums import OperationKind
    from secure_transfer.domain.ledger_protocol import LedgerClient
    from secure_transfer.domain.models import EscrowId, OperationDescriptor, OperationId

    SealedCallback = Callable[[FinalityReport], Awaitable[object]]

logger = get_logger(__name__)

# Ordered: "has not expired" must match NOT_EXPIRED before "expired" is considered.
_FAILURE_PATTERNS: tuple[tuple[str, ErrorKind], ...] = (
    ("not found", ErrorKind.NOT_FOUND),
    ("not active", ErrorKind.ALREADY_SETTLED),
    ("already claimed", ErrorKind.ALREADY_SETTLED),
    ("already refunded", ErrorKind.ALREADY_SETTLED),
    ("only the receiver", ErrorKind.NOT_RECEIVER),
    ("only receiver", ErrorKind.NOT_RECEIVER),
    ("only the sender", ErrorKind.NOT_SENDER),
    ("only sender", ErrorKind.NOT_SENDER),
    ("not expired", ErrorKind.NOT_EXPIRED),
    ("has expired", ErrorKind.EXPIRED),
)

# Extra slack on top of the ledger's own bound, for adapters that overrun it.
_TIMEOUT_GRACE_SECONDS = 1.0


def classify_failure(reason: str | None) -> ErrorKind:
    """Map a ledger failure reason onto the error taxonomy."""
    text = (reason or "").lower()
    for needle, kind in _FAILURE_PATTERNS:
        if needle in text:
            return kind
    return ErrorKind.UNKNOWN


class TransactionRunner:
    """Wraps ledger mutations with the submit/await/classify protocol."""

    def __init__(self, ledger: LedgerClient, finality_timeout: float = 60.0) -> None:
        self._ledger = ledger
        self._finality_timeout = finality_timeout

    @property
    def finality_timeout(self) -> float:
        return self._finality_timeout

    async def run(
        self,
        operation: OperationDescriptor,
        on_sealed: SealedCallback | None = None,
    ) -> TransactionOutcome:
        """Submit ``operation`` and return its classified outcome."""
        escrow_id = operation.escrow_id

        # --- 1. Submit ---
        try:
            operation_id = await self._ledger.submit(operation)
        except EscrowEngineError as exc:
            # UNKNOWN means the request may have reached the ledger.
            in_doubt = exc.kind is ErrorKind.UNKNOWN
            logger.warning(
                "transaction.submission_failed",
                operation=operation.kind.value,
                escrow_id=escrow_id,
                error=exc.message,
                in_doubt=in_doubt,
            )
            return TransactionOutcome(
                operation=operation.kind,
                final_state=FinalState.FAILED,
                escrow_id=escrow_id,
                error_kind=ErrorKind.UNKNOWN if in_doubt else ErrorKind.SUBMISSION_FAILED,
                message=exc.message,
                in_doubt=in_doubt,
            )
        except Exception as exc:
            # Unclassified: the ledger may or may not have accepted it.
            logger.exception(
                "transaction.submission_unknown",
                operation=operation.kind.value,
                escrow_id=escrow_id,
            )
            return TransactionOutcome(
                operation=operation.kind,
                final_state=FinalState.FAILED,
                escrow_id=escrow_id,
                error_kind=ErrorKind.UNKNOWN,
                message=str(exc) or type(exc).__name__,
                in_doubt=True,
            )

        logger.info(
            "transaction.submitted",
            operation=operation.kind.value,
            operation_id=operation_id,
            escrow_id=escrow_id,
            requester=operation.requester,
        )
        return await self.finalize(operation.kind, operation_id, escrow_id, on_sealed)

    async def finalize(
        self,
        kind: OperationKind,
        operation_id: OperationId,
        escrow_id: EscrowId | None = None,
        on_sealed: SealedCallback | None = None,
    ) -> TransactionOutcome:
        """Await finality of an already-submitted operation and classify it.

        Also used to re-await an operation whose earlier wait timed out, so a
        caller can reconcile instead of submitting again.
        """
        log = logger.bind(operation=kind.value, operation_id=operation_id, escrow_id=escrow_id)

        # --- 2. Await finality ---
        try:
            async with asyncio.timeout(self._finality_timeout + _TIMEOUT_GRACE_SECONDS):
                report = await self._ledger.await_finality(operation_id, self._finality_timeout)
        except TimeoutError:
            report = FinalityReport(status=FinalState.TIMED_OUT)
        except Exception as exc:
            if isinstance(exc, EscrowEngineError):
                log.error("transaction.finality_unavailable", error=exc.message)
                error_kind, message = exc.kind, exc.message
            else:
                log.exception("transaction.finality_unavailable")
                error_kind, message = ErrorKind.UNKNOWN, str(exc) or type(exc).__name__
            return TransactionOutcome(
                operation=kind,
                final_state=FinalState.FAILED,
                operation_id=operation_id,
                escrow_id=escrow_id,
                error_kind=error_kind,
                message=message,
                in_doubt=True,
            )

        # --- 3. Classify ---
        if report.status is FinalState.TIMED_OUT:
            err = FinalityTimeoutError(operation_id, self._finality_timeout)
            log.warning("transaction.timed_out", timeout=self._finality_timeout)
            return TransactionOutcome(
                operation=kind,
                final_state=FinalState.TIMED_OUT,
                operation_id=operation_id,
                escrow_id=escrow_id,
                error_kind=ErrorKind.TIMED_OUT,
                message=err.message,
                in_doubt=True,
            )

        if report.status is FinalState.FAILED:
            error_kind = classify_failure(report.reason)
            log.info("transaction.failed", error_kind=error_kind.value, reason=report.reason)
            return TransactionOutcome(
                operation=kind,
                final_state=FinalState.FAILED,
                operation_id=operation_id,
                escrow_id=escrow_id,
                error_kind=error_kind,
                message=report.reason or "",
            )

        # --- 4. Sealed: refresh before returning ---
        sealed_escrow_id = str(report.result.get("escrow_id", escrow_id) or "") or None
        if on_sealed is not None:
            try:
                await on_sealed(report)
            except EscrowEngineError as exc:
                # The operation is final either way; a stale cache is reconciled
                # by the next refresh.
                log.error("transaction.refresh_failed", error=exc.message)
        log.info("transaction.sealed", sealed_escrow_id=sealed_escrow_id)
        return TransactionOutcome(
            operation=kind,
            final_state=FinalState.SEALED,
            operation_id=operation_id,
            escrow_id=sealed_escrow_id,
            result=dict(report.result),
        )
