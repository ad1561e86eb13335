"""Application services: use case orchestration."""

from secure_transfer.services.automation_scheduler import AutomationScheduler, TaskRun, TickReport
from secure_transfer.services.escrow_lifecycle import EscrowLifecycle
from secure_transfer.services.escrow_service import EscrowService
from secure_transfer.services.single_flight import SingleFlight
from secure_transfer.services.transaction_runner import TransactionRunner, classify_failure

__all__ = [
    "AutomationScheduler",
    "EscrowLifecycle",
    "EscrowService",
    "SingleFlight",
    "TaskRun",
    "TickReport",
    "TransactionRunner",
    "classify_failure",
]
