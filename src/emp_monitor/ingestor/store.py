"""Append-only in-memory event log for a single event category."""

from __future__ import annotations

from emp_monitor.errors import OrderingViolation, ValidationError
from emp_monitor.ingestor.models import EventCategory, EventRecord


class EventStore:
    """Ordered, deduplicated sequence of one category's event records.

    Records are kept in append order, which for a single ledger query is the
    ledger's (block, log index) order. Block numbers never decrease.

    Readers get an immutable tuple from `all()`. Appends build a new tuple and
    swap it in with a single assignment, so a concurrent reader sees the store
    either before or after a given append, never in between.
    """

    def __init__(self, category: EventCategory) -> None:
        self._category = category
        self._records: tuple[EventRecord, ...] = ()
        self._seen: set[str] = set()

    @property
    def category(self) -> EventCategory:
        return self._category

    @property
    def max_block_number(self) -> int | None:
        """Highest stored block number, or None when empty."""
        return self._records[-1].block_number if self._records else None

    def __len__(self) -> int:
        return len(self._records)

    def append(self, record: EventRecord) -> bool:
        """Append a record.

        Returns:
            True if the record was stored, False if a record with the same
            transaction hash was already present.

        Raises:
            ValidationError: If the record belongs to another category.
            OrderingViolation: If the record's block number is lower than the
                highest block already stored.
        """
        if record.category != self._category:
            raise ValidationError(
                f"Cannot append {record.category.value} record to {self._category.value} store"
            )

        tx_key = record.transaction_hash.lower()
        if tx_key in self._seen:
            return False

        max_block = self.max_block_number
        if max_block is not None and record.block_number < max_block:
            raise OrderingViolation(
                f"{self._category.value} record {record.transaction_hash} at block "
                f"{record.block_number} is behind stored maximum {max_block}",
                block_number=record.block_number,
                max_block_number=max_block,
            )

        self._seen.add(tx_key)
        self._records = (*self._records, record)
        return True

    def all(self) -> tuple[EventRecord, ...]:
        """Return the full ordered sequence (read-only snapshot)."""
        return self._records

    def clear(self) -> None:
        """Empty the store."""
        self._records = ()
        self._seen = set()

    def next_query_from(self) -> int:
        """Exclusive lower bound for the next ledger query (0 when empty)."""
        max_block = self.max_block_number
        return 0 if max_block is None else max_block + 1
