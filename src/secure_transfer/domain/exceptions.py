"""Domain exceptions for the SecureTransfer escrow engine.

Each exception carries the ErrorKind it represents. The lifecycle converts
them into Failed TransactionOutcomes at its boundary; the API layer's
middleware turns outcomes and stray exceptions into HTTP responses.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from secure_transfer.domain.enums import ErrorKind

if TYPE_CHECKING:
    from secure_transfer.domain.models import TransactionOutcome


class EscrowEngineError(Exception):
    """Base exception for all domain errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code or self.kind.value
        super().__init__(self.message)


class ValidationError(EscrowEngineError):
    """Bad input, caught before anything is submitted to the ledger."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class SubmissionFailedError(EscrowEngineError):
    """The ledger never accepted the operation (network or signing failure)."""

    kind = ErrorKind.SUBMISSION_FAILED


class UnknownLedgerError(EscrowEngineError):
    """Unclassified ledger failure. The ledger's message is passed through."""

    kind = ErrorKind.UNKNOWN


class FinalityTimeoutError(EscrowEngineError):
    """Finality was not observed within the configured bound."""

    kind = ErrorKind.TIMED_OUT

    def __init__(self, operation_id: str, timeout: float) -> None:
        super().__init__(
            message=(
                f"Operation {operation_id} not sealed within {timeout:g}s; "
                "re-query state before acting again"
            ),
        )
        self.operation_id = operation_id


# --- Escrow policy errors ---


class EscrowNotFoundError(EscrowEngineError):
    """Raised when an escrow id does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, escrow_id: str) -> None:
        super().__init__(message=f"Escrow not found: {escrow_id}")
        self.escrow_id = escrow_id


class NotReceiverError(EscrowEngineError):
    """Raised when someone other than the receiver tries to claim."""

    kind = ErrorKind.NOT_RECEIVER

    def __init__(self, escrow_id: str, requester: str) -> None:
        super().__init__(
            message=f"Only the receiver can claim escrow {escrow_id} (requested by {requester})",
        )
        self.escrow_id = escrow_id


class NotSenderError(EscrowEngineError):
    """Raised when someone other than the sender refunds a manual escrow."""

    kind = ErrorKind.NOT_SENDER

    def __init__(self, escrow_id: str, requester: str) -> None:
        super().__init__(
            message=f"Only the sender can refund manual escrow {escrow_id} (requested by {requester})",
        )
        self.escrow_id = escrow_id


class EscrowExpiredError(EscrowEngineError):
    """Raised when a claim arrives after expiry."""

    kind = ErrorKind.EXPIRED

    def __init__(self, escrow_id: str) -> None:
        super().__init__(message=f"Escrow {escrow_id} has expired")
        self.escrow_id = escrow_id


class NotExpiredError(EscrowEngineError):
    """Raised when a refund arrives at or before expiry."""

    kind = ErrorKind.NOT_EXPIRED

    def __init__(self, escrow_id: str) -> None:
        super().__init__(message=f"Escrow {escrow_id} has not expired yet")
        self.escrow_id = escrow_id


class AlreadySettledError(EscrowEngineError):
    """Raised when an escrow is already Claimed or Refunded."""

    kind = ErrorKind.ALREADY_SETTLED

    def __init__(self, escrow_id: str, state: str) -> None:
        super().__init__(message=f"Escrow {escrow_id} is not active (state: {state})")
        self.escrow_id = escrow_id
        self.state = state


class OperationInProgressError(EscrowEngineError):
    """Raised when a mutation is already in flight for the same id."""

    kind = ErrorKind.OPERATION_IN_PROGRESS

    def __init__(self, entity_id: str) -> None:
        super().__init__(message=f"Another operation is in progress for {entity_id}")
        self.entity_id = entity_id


# --- State machine errors ---


class InvalidStateTransitionError(EscrowEngineError):
    """Raised when an attempted status transition is not allowed.

    Example: Claimed -> Refunded, or toggling a Completed automation.
    """

    kind = ErrorKind.VALIDATION

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted = attempted


# --- Automation errors ---


class AutomationNotFoundError(EscrowEngineError):
    """Raised when an automation task id does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, task_id: str) -> None:
        super().__init__(message=f"Automation not found: {task_id}", code="AUTOMATION_NOT_FOUND")
        self.task_id = task_id


# --- Idempotency errors ---


class DuplicateOperationError(EscrowEngineError):
    """Raised when a duplicate idempotency key is detected."""

    kind = ErrorKind.ALREADY_SETTLED

    def __init__(self, idempotency_key: str, escrow_id: str | None = None) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
        self.escrow_id = escrow_id


# --- Outcome errors ---


class TransactionFailedError(EscrowEngineError):
    """A Failed or TimedOut outcome surfaced as an exception.

    The presentation layer raises this so a non-sealed outcome goes through
    the same error handling as any other domain error. The ledger's message
    is kept verbatim and the full outcome stays attached.
    """

    def __init__(self, outcome: TransactionOutcome) -> None:
        self.kind = outcome.error_kind or ErrorKind.UNKNOWN
        super().__init__(message=outcome.message or self.kind.value)
        self.outcome = outcome
