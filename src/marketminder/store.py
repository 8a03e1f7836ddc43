"""In-memory transaction store and its single-slot undo buffer.

The store keeps records in display order (newest first). It is semantically a
set keyed by ``transaction_id``; projections never rely on its ordering. The
mutation methods are meant to be called by :mod:`marketminder.core_logic`
only, after the guardrails have accepted a change.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from . import log
from .constants import UNDO_WINDOW_MS
from .records import Transaction, current_millis


@dataclass(frozen=True)
class UndoSlot:
    """The last deleted record, where it sat, and when the chance to restore it ends."""

    transaction: Transaction
    index: int
    deadline: int


class TransactionStore:
    """Ordered collection of immutable transaction records."""

    def __init__(
        self,
        transactions: Iterable[Transaction] = (),
        *,
        undo_window_ms: int = UNDO_WINDOW_MS,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._records: List[Transaction] = []
        for transaction in transactions:
            if self.index_of(transaction.transaction_id) is not None:
                raise ValueError(f"Duplicate transaction id in store: {transaction.transaction_id}")
            self._records.append(transaction)
        self.undo_window_ms = undo_window_ms
        self.clock = clock or current_millis
        self._undo: Optional[UndoSlot] = None

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Transaction]:
        return iter(list(self._records))

    def __contains__(self, transaction_id: object) -> bool:
        return self.index_of(transaction_id) is not None

    @property
    def records(self) -> Tuple[Transaction, ...]:
        """Snapshot of the records in display order."""
        return tuple(self._records)

    @property
    def undo_slot(self) -> Optional[UndoSlot]:
        return self._undo

    def now(self) -> int:
        return self.clock()

    def get(self, transaction_id: str) -> Optional[Transaction]:
        index = self.index_of(transaction_id)
        return None if index is None else self._records[index]

    def index_of(self, transaction_id: object) -> Optional[int]:
        for index, record in enumerate(self._records):
            if record.transaction_id == transaction_id:
                return index
        return None

    def prepend(self, transaction: Transaction) -> None:
        self._records.insert(0, transaction)

    def replace(self, transaction: Transaction) -> Transaction:
        """Swap in ``transaction`` for the record with the same id, in place."""

        index = self.index_of(transaction.transaction_id)
        if index is None:
            raise KeyError(f"Unknown transaction id: {transaction.transaction_id}")
        previous = self._records[index]
        self._records[index] = transaction
        return previous

    def remove(self, transaction_id: str, *, now: int) -> Optional[UndoSlot]:
        """Remove a record and capture it in the undo slot.

        Any earlier undo opportunity is discarded. Returns the new slot, or
        ``None`` when the id is unknown (the store and slot are untouched).
        """

        index = self.index_of(transaction_id)
        if index is None:
            return None
        record = self._records.pop(index)
        self._undo = UndoSlot(transaction=record, index=index, deadline=now + self.undo_window_ms)
        log.debug("Undo slot armed for '%s' at index %d until %d", transaction_id, index, self._undo.deadline)
        return self._undo

    def restore(self, *, now: int) -> Optional[Transaction]:
        """Reinsert the captured record if the slot is still live.

        The slot is cleared whether or not it had expired, so a restore can
        happen at most once.
        """

        slot = self._undo
        self._undo = None
        if slot is None:
            return None
        if now > slot.deadline:
            log.debug("Undo slot for '%s' expired at %d", slot.transaction.transaction_id, slot.deadline)
            return None
        if slot.transaction.transaction_id in self:
            log.warning("Undo skipped: '%s' is already present", slot.transaction.transaction_id)
            return None
        self._records.insert(min(slot.index, len(self._records)), slot.transaction)
        return slot.transaction
