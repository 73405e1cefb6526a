"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pytest

from emp_monitor.ingestor.models import (
    DisputeEvent,
    DisputeSettlementEvent,
    EventCategory,
    LiquidationEvent,
    RawLogEntry,
)

EMP_ADDRESS = "0x" + "e" * 40
SPONSOR = "0x" + "1" * 40
LIQUIDATOR = "0x" + "2" * 40
DISPUTER = "0x" + "3" * 40
CALLER = "0x" + "4" * 40

ONE_TOKEN = 10**18


def _default_args(category: EventCategory) -> dict[str, Any]:
    if category == EventCategory.LIQUIDATION_CREATED:
        return {
            "sponsor": SPONSOR,
            "liquidator": LIQUIDATOR,
            "liquidationId": 0,
            "tokensOutstanding": 100 * ONE_TOKEN,
            "lockedCollateral": 150 * ONE_TOKEN,
            "liquidatedCollateral": 150 * ONE_TOKEN,
        }
    if category == EventCategory.LIQUIDATION_DISPUTED:
        return {
            "sponsor": SPONSOR,
            "liquidator": LIQUIDATOR,
            "disputer": DISPUTER,
            "liquidationId": 0,
            "disputeBondAmount": 15 * ONE_TOKEN,
        }
    return {
        "caller": CALLER,
        "sponsor": SPONSOR,
        "liquidator": LIQUIDATOR,
        "disputer": DISPUTER,
        "liquidationId": 0,
        "DisputeSucceeded": True,
    }


class FakeLedger:
    """In-memory ledger: returns stored logs at or after `from_block`."""

    def __init__(self) -> None:
        self.logs: dict[str, list[RawLogEntry]] = {c.value: [] for c in EventCategory}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, int]] = []

    def add(self, category: EventCategory, entry: RawLogEntry) -> None:
        self.logs[category.value].append(entry)

    async def get_events(
        self,
        contract_address: str,
        event_name: str,
        from_block: int,
    ) -> Sequence[RawLogEntry]:
        self.calls.append((event_name, from_block))
        if event_name in self.failures:
            raise self.failures[event_name]
        return [e for e in self.logs[event_name] if e.block_number >= from_block]


class FakeClock:
    """Settable clock returning unix seconds."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def make_raw() -> Callable[..., RawLogEntry]:
    """Factory for raw log entries with valid args for a category."""

    def factory(
        category: EventCategory,
        tx: str,
        block: int,
        *,
        log_index: int = 0,
        timestamp: int | None = 1_600_000_000,
        **overrides: Any,
    ) -> RawLogEntry:
        args = _default_args(category)
        args.update(overrides)
        return RawLogEntry(
            transaction_hash=tx,
            block_number=block,
            args=args,
            log_index=log_index,
            timestamp=timestamp,
        )

    return factory


@pytest.fixture
def fake_ledger() -> FakeLedger:
    """In-memory ledger query implementation."""
    return FakeLedger()


@pytest.fixture
def clock() -> FakeClock:
    """Controllable clock."""
    return FakeClock()


@pytest.fixture
def emp_address() -> str:
    """Monitored EMP contract address."""
    return EMP_ADDRESS


@pytest.fixture
def sample_liquidation() -> LiquidationEvent:
    """A liquidation at 150% collateralization for price 1."""
    return LiquidationEvent(
        transaction_hash="0x" + "a" * 64,
        block_number=10,
        timestamp=1_600_000_000,
        sponsor=SPONSOR,
        liquidator=LIQUIDATOR,
        liquidation_id="0",
        tokens_outstanding=str(100 * ONE_TOKEN),
        locked_collateral=str(150 * ONE_TOKEN),
        liquidated_collateral=str(150 * ONE_TOKEN),
    )


@pytest.fixture
def sample_dispute() -> DisputeEvent:
    """A dispute on liquidation 0."""
    return DisputeEvent(
        transaction_hash="0x" + "b" * 64,
        block_number=11,
        timestamp=1_600_000_100,
        sponsor=SPONSOR,
        liquidator=LIQUIDATOR,
        disputer=DISPUTER,
        liquidation_id="0",
        dispute_bond_amount=str(15 * ONE_TOKEN),
    )


@pytest.fixture
def sample_settlement() -> DisputeSettlementEvent:
    """A failed dispute settlement on liquidation 0."""
    return DisputeSettlementEvent(
        transaction_hash="0x" + "c" * 64,
        block_number=12,
        timestamp=1_600_000_200,
        caller=CALLER,
        sponsor=SPONSOR,
        liquidator=LIQUIDATOR,
        disputer=DISPUTER,
        liquidation_id="0",
        dispute_succeeded=False,
    )
