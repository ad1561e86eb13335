"""Per-key single-flight guard.

At most one mutation may be in flight per key (escrow id, automation task
id). A second request for a held key is rejected immediately with
OperationInProgressError rather than queued behind the first.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING

from secure_transfer.domain.exceptions import OperationInProgressError

if TYPE_CHECKING:
    from collections.abc import Iterator


class SingleFlight:
    """Set of keys with an operation currently in flight.

    Check-and-claim happens without an await in between, so it is atomic on
    the event loop and needs no lock.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()

    def is_held(self, key: str) -> bool:
        return key in self._held

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        if key in self._held:
            raise OperationInProgressError(key)
        self._held.add(key)
        try:
            yield
        finally:
            self._held.discard(key)
