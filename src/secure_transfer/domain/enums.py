"""Domain enumerations for the SecureTransfer escrow engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no FastAPI, no httpx imports).
"""

import enum


class EscrowState(enum.StrEnum):
    """Lifecycle states of an escrow.

    Active is the only non-terminal state. See domain/state_machine.py.
    """

    ACTIVE = "Active"
    CLAIMED = "Claimed"
    REFUNDED = "Refunded"


class RefundMode(enum.StrEnum):
    """Who may trigger the post-expiry refund."""

    MANUAL = "manual"
    AUTO = "auto"


class TokenKind(enum.StrEnum):
    """Tokens an escrow can lock. FLOW is the ledger's native token."""

    FLOW = "FLOW"
    USDC = "USDC"
    FUSD = "FUSD"

    @property
    def is_native(self) -> bool:
        return self is TokenKind.FLOW


class OperationKind(enum.StrEnum):
    """Mutating ledger operations wrapped by the TransactionRunner."""

    CREATE = "create"
    CLAIM = "claim"
    REFUND = "refund"


class FinalState(enum.StrEnum):
    """Terminal observation of one submit/await cycle."""

    SEALED = "Sealed"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


class ErrorKind(enum.StrEnum):
    """Classification of every failure the core can report."""

    VALIDATION = "VALIDATION_ERROR"
    SUBMISSION_FAILED = "SUBMISSION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    NOT_RECEIVER = "NOT_RECEIVER"
    NOT_SENDER = "NOT_SENDER"
    EXPIRED = "EXPIRED"
    NOT_EXPIRED = "NOT_EXPIRED"
    ALREADY_SETTLED = "ALREADY_SETTLED"
    OPERATION_IN_PROGRESS = "OPERATION_IN_PROGRESS"
    TIMED_OUT = "TIMED_OUT"
    UNKNOWN = "UNKNOWN"

    @property
    def caller_may_retry(self) -> bool:
        """Whether resubmitting the same request can ever succeed unchanged.

        TimedOut is excluded: the caller must re-query before acting again.
        """
        return self is ErrorKind.SUBMISSION_FAILED


class AutomationKind(enum.StrEnum):
    """Kinds of scheduled actions."""

    RECURRING_PAYMENT = "recurring"
    SCHEDULED_REFUND = "scheduled_refund"
    AUTO_CLAIM = "auto_claim"

    @property
    def is_recurring(self) -> bool:
        return self is AutomationKind.RECURRING_PAYMENT


class AutomationStatus(enum.StrEnum):
    """Status of an automation task.

    Completed is reached only by one-shot kinds after they fire.
    """

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class Frequency(enum.StrEnum):
    """Recurrence periods. Lengths are fixed so next-run math never drifts."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def period_seconds(self) -> int:
        return _FREQUENCY_PERIODS[self]


_FREQUENCY_PERIODS = {
    Frequency.DAILY: 86_400,
    Frequency.WEEKLY: 7 * 86_400,
    Frequency.MONTHLY: 30 * 86_400,
}
