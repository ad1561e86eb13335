"""In-memory stores for escrows and automation tasks.

Both stores are process-local caches, never the source of truth:
EscrowStore mirrors ledger-confirmed escrow records and can be rebuilt from
the ledger at any time; AutomationStore holds the scheduler's tasks.

Access discipline: writes take the store's asyncio.Lock; reads return
snapshots without locking and never call the ledger.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from secure_transfer.domain.enums import AutomationStatus, EscrowState, RefundMode
from secure_transfer.domain.exceptions import AutomationNotFoundError
from secure_transfer.domain.models import EscrowFilter, EscrowStats
from secure_transfer.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from secure_transfer.domain.ledger_protocol import LedgerClient
    from secure_transfer.domain.models import AutomationTask, Escrow, EscrowId

logger = get_logger(__name__)


class EscrowStore:
    """Cached projection of escrow records, keyed by escrow id."""

    def __init__(self, ledger: LedgerClient) -> None:
        self._ledger = ledger
        self._escrows: dict[EscrowId, Escrow] = {}
        self._lock = asyncio.Lock()
        self._refreshed = False

    @property
    def has_loaded(self) -> bool:
        return self._refreshed

    async def refresh(self, escrow_ids: Iterable[EscrowId] | None = None) -> list[Escrow]:
        """Re-query the ledger and update the cache.

        With ``escrow_ids`` only those records are fetched and upserted;
        otherwise the whole cache is replaced. Records are never dropped on a
        partial refresh, and terminal records are kept for history.
        """
        ids = frozenset(escrow_ids) if escrow_ids is not None else None
        async with self._lock:
            escrows = await self._ledger.query_escrows(EscrowFilter(ids=ids))
            if ids is None:
                self._escrows = {e.id: e for e in escrows}
                self._refreshed = True
            else:
                for escrow in escrows:
                    self._escrows[escrow.id] = escrow
        logger.debug(
            "store.refreshed",
            partial=ids is not None,
            fetched=len(escrows),
            cached=len(self._escrows),
        )
        return escrows

    async def probe(self) -> None:
        """Round-trip the ledger without touching the cache."""
        await self._ledger.query_escrows(EscrowFilter(ids=frozenset()))

    def get(self, escrow_id: EscrowId) -> Escrow | None:
        return self._escrows.get(escrow_id)

    def list(self, escrow_filter: EscrowFilter | None = None) -> list[Escrow]:
        """Cached escrows matching the filter, newest first."""
        escrow_filter = escrow_filter or EscrowFilter()
        matches = [e for e in self._escrows.values() if escrow_filter.matches(e)]
        return sorted(matches, key=lambda e: (e.created_at, _id_sort_key(e.id)), reverse=True)

    def expired_auto_refundable(self, now: float) -> list[Escrow]:
        """Active Auto-mode escrows whose expiry is strictly in the past."""
        candidates = self.list(EscrowFilter(state=EscrowState.ACTIVE, refund_mode=RefundMode.AUTO))
        return sorted(
            (e for e in candidates if e.expiry < now),
            key=lambda e: _id_sort_key(e.id),
        )

    def stats(self, now: float) -> EscrowStats:
        return EscrowStats.from_escrows(list(self._escrows.values()), now)


class AutomationStore:
    """The scheduler's task collection, keyed by task id."""

    def __init__(self) -> None:
        self._tasks: dict[str, AutomationTask] = {}
        self._lock = asyncio.Lock()

    async def add(self, task: AutomationTask) -> AutomationTask:
        async with self._lock:
            self._tasks[task.id] = task
        return task.snapshot()

    async def update(
        self,
        task_id: str,
        mutate: Callable[[AutomationTask], None],
    ) -> AutomationTask:
        """Apply ``mutate`` to the live task under the write lock."""
        async with self._lock:
            task = self._get_live(task_id)
            mutate(task)
            return task.snapshot()

    def get(self, task_id: str) -> AutomationTask:
        return self._get_live(task_id).snapshot()

    def list(self, status: AutomationStatus | None = None) -> list[AutomationTask]:
        """Task snapshots, most recently created first."""
        tasks = [t for t in self._tasks.values() if status is None or t.status is status]
        return [t.snapshot() for t in sorted(tasks, key=lambda t: t.created_at, reverse=True)]

    def due(self, now: float) -> list[AutomationTask]:
        """Active tasks whose next_run has arrived, oldest schedule first."""
        due = [t for t in self._tasks.values() if t.is_due(now)]
        return [t.snapshot() for t in sorted(due, key=lambda t: t.next_run)]

    def _get_live(self, task_id: str) -> AutomationTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise AutomationNotFoundError(task_id)
        return task


def _id_sort_key(escrow_id: str) -> tuple[int, str]:
    return (int(escrow_id), "") if escrow_id.isdigit() else (0, escrow_id)
