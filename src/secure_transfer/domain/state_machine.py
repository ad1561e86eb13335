"""Status guards for escrows and automation tasks.

Uses python-statemachine to enforce legal transitions at the domain level.
Whatever the API, the scheduler or a ledger adapter asks for, an illegal
transition (e.g. Claimed -> Refunded) raises TransitionNotAllowed.

Escrow transition table:
    Active -> Claimed    (claim)
    Active -> Refunded   (refund)

Automation transition table:
    active -> paused     (pause)
    paused -> active     (resume)
    active -> completed  (complete)
    paused -> completed  (complete, a one-shot task sealed while being paused)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from secure_transfer.domain.exceptions import InvalidStateTransitionError


class _GuardMixin:
    """Shared start-value validation and helpers."""

    def _check_start_value(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the StrEnum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


class EscrowStateMachine(_GuardMixin, StateMachine):
    """State machine guarding an escrow's single terminal transition.

    Usage:
        sm = EscrowStateMachine(current_status="Active")
        sm.claim()
        sm.status  # "Claimed"
    """

    ACTIVE = State("Active", value="Active", initial=True)
    CLAIMED = State("Claimed", value="Claimed", final=True)
    REFUNDED = State("Refunded", value="Refunded", final=True)

    claim = ACTIVE.to(CLAIMED)
    refund = ACTIVE.to(REFUNDED)

    def __init__(self, current_status: str = "Active") -> None:
        self._check_start_value(current_status)
        super().__init__(start_value=current_status)


class AutomationStateMachine(_GuardMixin, StateMachine):
    """State machine guarding automation task status."""

    ACTIVE = State("active", value="active", initial=True)
    PAUSED = State("paused", value="paused")
    COMPLETED = State("completed", value="completed", final=True)

    pause = ACTIVE.to(PAUSED)
    resume = PAUSED.to(ACTIVE)
    complete = ACTIVE.to(COMPLETED) | PAUSED.to(COMPLETED)

    def __init__(self, current_status: str = "active") -> None:
        self._check_start_value(current_status)
        super().__init__(start_value=current_status)


def validate_transition(machine_cls: type[StateMachine], current_status: str, event_name: str) -> str:
    """Fire ``event_name`` on a throwaway machine and return the new status.

    Raises:
        InvalidStateTransitionError: If the event is unknown or not allowed
            from ``current_status``.
    """
    sm = machine_cls(current_status=current_status)
    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise InvalidStateTransitionError(current_status, event_name)
    try:
        event_method()
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(current_status, event_name) from err
    return sm.status
