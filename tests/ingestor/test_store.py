"""Tests for the per-category event store."""

from __future__ import annotations

from dataclasses import replace

import pytest

from emp_monitor.errors import OrderingViolation, ValidationError
from emp_monitor.ingestor.models import (
    DisputeEvent,
    EventCategory,
    LiquidationEvent,
)
from emp_monitor.ingestor.store import EventStore


@pytest.fixture
def store() -> EventStore:
    return EventStore(EventCategory.LIQUIDATION_CREATED)


class TestEventStoreAppend:
    """Tests for EventStore.append."""

    def test_empty_store(self, store: EventStore) -> None:
        assert len(store) == 0
        assert store.all() == ()
        assert store.max_block_number is None
        assert store.next_query_from() == 0

    def test_append_advances_watermark(self, store: EventStore, sample_liquidation) -> None:
        """A record at block 10 makes the next query start at block 11."""
        record = replace(
            sample_liquidation,
            transaction_hash="0xA",
            block_number=10,
            tokens_outstanding="50",
            locked_collateral="10",
        )

        assert store.append(record) is True

        assert store.all() == (record,)
        assert store.max_block_number == 10
        assert store.next_query_from() == 11

    def test_duplicate_transaction_is_noop(self, store: EventStore, sample_liquidation) -> None:
        store.append(sample_liquidation)
        snapshot = store.all()

        assert store.append(sample_liquidation) is False
        assert store.all() is snapshot
        assert len(store) == 1

    def test_duplicate_detection_ignores_hash_case(
        self, store: EventStore, sample_liquidation: LiquidationEvent
    ) -> None:
        store.append(replace(sample_liquidation, transaction_hash="0xabc"))

        assert store.append(replace(sample_liquidation, transaction_hash="0xABC")) is False

    def test_same_block_is_allowed(self, store: EventStore, sample_liquidation) -> None:
        store.append(replace(sample_liquidation, transaction_hash="0x1", block_number=10))

        assert store.append(replace(sample_liquidation, transaction_hash="0x2", block_number=10))
        assert [r.transaction_hash for r in store.all()] == ["0x1", "0x2"]

    def test_block_regression_raises_and_leaves_store_unchanged(
        self, store: EventStore, sample_liquidation
    ) -> None:
        store.append(replace(sample_liquidation, transaction_hash="0x1", block_number=10))
        snapshot = store.all()

        with pytest.raises(OrderingViolation) as exc_info:
            store.append(replace(sample_liquidation, transaction_hash="0x2", block_number=9))

        assert exc_info.value.block_number == 9
        assert exc_info.value.max_block_number == 10
        assert store.all() == snapshot
        assert store.next_query_from() == 11

    def test_ordering_violation_is_a_validation_error(self) -> None:
        assert issubclass(OrderingViolation, ValidationError)

    def test_wrong_category_raises(self, store: EventStore, sample_dispute: DisputeEvent) -> None:
        with pytest.raises(ValidationError):
            store.append(sample_dispute)
        assert len(store) == 0


class TestEventStoreSnapshots:
    """Tests for snapshot reads and clearing."""

    def test_snapshot_not_affected_by_later_appends(
        self, store: EventStore, sample_liquidation
    ) -> None:
        store.append(replace(sample_liquidation, transaction_hash="0x1", block_number=1))
        snapshot = store.all()

        store.append(replace(sample_liquidation, transaction_hash="0x2", block_number=2))

        assert len(snapshot) == 1
        assert len(store.all()) == 2

    def test_clear(self, store: EventStore, sample_liquidation) -> None:
        store.append(sample_liquidation)

        store.clear()

        assert store.all() == ()
        assert store.next_query_from() == 0
        # A cleared store accepts the same transaction again.
        assert store.append(sample_liquidation) is True
