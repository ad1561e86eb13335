"""Domain layer: pure business logic with zero framework dependencies."""

from secure_transfer.domain.enums import (
    AutomationKind,
    AutomationStatus,
    ErrorKind,
    EscrowState,
    FinalState,
    Frequency,
    OperationKind,
    RefundMode,
    TokenKind,
)
from secure_transfer.domain.exceptions import (
    EscrowEngineError,
    EscrowNotFoundError,
    InvalidStateTransitionError,
    ValidationError,
)
from secure_transfer.domain.ledger_protocol import LedgerClient
from secure_transfer.domain.models import (
    AutomationTask,
    Escrow,
    EscrowFilter,
    EscrowStats,
    FinalityReport,
    OperationDescriptor,
    TransactionOutcome,
)
from secure_transfer.domain.state_machine import (
    AutomationStateMachine,
    EscrowStateMachine,
    validate_transition,
)

__all__ = [
    "AutomationKind",
    "AutomationStatus",
    "ErrorKind",
    "EscrowState",
    "FinalState",
    "Frequency",
    "OperationKind",
    "RefundMode",
    "TokenKind",
    "EscrowEngineError",
    "EscrowNotFoundError",
    "InvalidStateTransitionError",
    "ValidationError",
    "LedgerClient",
    "AutomationTask",
    "Escrow",
    "EscrowFilter",
    "EscrowStats",
    "FinalityReport",
    "OperationDescriptor",
    "TransactionOutcome",
    "AutomationStateMachine",
    "EscrowStateMachine",
    "validate_transition",
]
