"""Tests for the contract monitor."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from emp_monitor.alerter.formatter import DISPUTE_BOT_LABEL, LIQUIDATOR_BOT_LABEL
from emp_monitor.errors import AlertDispatchFailure
from emp_monitor.ingestor.event_client import EventClient
from emp_monitor.ingestor.models import EventCategory
from emp_monitor.monitor.contract_monitor import (
    ContractMonitor,
    constant_price_resolver,
    resolve_price,
)

ONE = 10**18
LIQUIDATOR_BOT = "0x" + "2" * 40
DISPUTE_BOT = "0x" + "3" * 40


class StubSource:
    """Event source returning fixed snapshots per category."""

    def __init__(self) -> None:
        self.events: dict[EventCategory, tuple] = {c: () for c in EventCategory}

    def get_events(self, category: EventCategory) -> tuple:
        return self.events[category]


@pytest.fixture
def source() -> StubSource:
    return StubSource()


@pytest.fixture
def sink() -> MagicMock:
    sink = MagicMock()
    sink.send = AsyncMock()
    return sink


@pytest.fixture
def price_one():
    return constant_price_resolver(Decimal("1"))


class TestPriceResolvers:
    """Tests for price resolver helpers."""

    @pytest.mark.asyncio
    async def test_constant_resolver(self) -> None:
        resolver = constant_price_resolver("1.5")

        assert await resolve_price(resolver, None) == Decimal("1.5")
        assert await resolve_price(resolver, 1_600_000_000) == Decimal("1.5")

    @pytest.mark.asyncio
    async def test_async_resolver(self) -> None:
        async def resolver(timestamp):
            return Decimal("2") if timestamp else Decimal("0")

        assert await resolve_price(resolver, 10) == Decimal("2")

    @pytest.mark.asyncio
    async def test_non_decimal_result_is_coerced(self) -> None:
        assert await resolve_price(lambda _ts: 3, None) == Decimal("3")


class TestMonitoredAddresses:
    """Tests for monitored bot address matching."""

    def test_case_insensitive(self, source, sink) -> None:
        monitor = ContractMonitor(
            source, sink, liquidator_bots=["0x" + "A" * 40], dispute_bots=[DISPUTE_BOT.upper()]
        )

        assert monitor.is_liquidator_bot("0x" + "a" * 40)
        assert monitor.is_dispute_bot(DISPUTE_BOT)
        assert not monitor.is_liquidator_bot(DISPUTE_BOT)


class TestCheckForNewLiquidations:
    """Tests for liquidation alerts."""

    @pytest.mark.asyncio
    async def test_two_new_then_none(self, source, sink, price_one, sample_liquidation) -> None:
        source.events[EventCategory.LIQUIDATION_CREATED] = (
            replace(sample_liquidation, transaction_hash="0x1", block_number=10),
            replace(sample_liquidation, transaction_hash="0x2", block_number=11),
        )
        monitor = ContractMonitor(source, sink)

        first = await monitor.check_for_new_liquidations(price_one)
        second = await monitor.check_for_new_liquidations(price_one)

        assert len(first) == 2
        assert second == []
        assert sink.send.await_count == 2
        assert monitor.alerted(EventCategory.LIQUIDATION_CREATED) == {"0x1", "0x2"}

    @pytest.mark.asyncio
    async def test_only_new_records_alerted(self, source, sink, price_one, sample_liquidation) -> None:
        source.events[EventCategory.LIQUIDATION_CREATED] = (
            replace(sample_liquidation, transaction_hash="0x1"),
        )
        monitor = ContractMonitor(source, sink)
        await monitor.check_for_new_liquidations(price_one)

        source.events[EventCategory.LIQUIDATION_CREATED] += (
            replace(sample_liquidation, transaction_hash="0x2", block_number=20),
        )
        sent = await monitor.check_for_new_liquidations(price_one)

        assert len(sent) == 1
        assert "tx/0x2|" in sent[0].mrkdwn

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "locked,tokens,expected",
        [(150, 50, "300.00%"), (175, 45, "388.88%")],
    )
    async def test_collateralization_ratio(
        self, source, sink, price_one, sample_liquidation, locked, tokens, expected
    ) -> None:
        source.events[EventCategory.LIQUIDATION_CREATED] = (
            replace(
                sample_liquidation,
                locked_collateral=str(locked * ONE),
                tokens_outstanding=str(tokens * ONE),
            ),
        )
        monitor = ContractMonitor(source, sink)

        [alert] = await monitor.check_for_new_liquidations(price_one)

        assert f"Sponsor collateralization was {expected}." in alert.mrkdwn

    @pytest.mark.asyncio
    async def test_zero_debt(self, source, sink, price_one, sample_liquidation) -> None:
        source.events[EventCategory.LIQUIDATION_CREATED] = (
            replace(sample_liquidation, tokens_outstanding="0"),
        )
        monitor = ContractMonitor(source, sink)

        [alert] = await monitor.check_for_new_liquidations(price_one)

        assert "Sponsor collateralization was n/a." in alert.mrkdwn

    @pytest.mark.asyncio
    async def test_price_resolved_at_event_timestamp(self, source, sink, sample_liquidation) -> None:
        source.events[EventCategory.LIQUIDATION_CREATED] = (sample_liquidation,)
        resolver = MagicMock(return_value=Decimal("0.5"))
        monitor = ContractMonitor(source, sink)

        [alert] = await monitor.check_for_new_liquidations(resolver)

        resolver.assert_called_once_with(sample_liquidation.timestamp)
        assert "Sponsor collateralization was 300.00%." in alert.mrkdwn

    @pytest.mark.asyncio
    async def test_monitored_liquidator_label(self, source, sink, price_one, sample_liquidation) -> None:
        source.events[EventCategory.LIQUIDATION_CREATED] = (sample_liquidation,)
        monitor = ContractMonitor(source, sink, liquidator_bots=[LIQUIDATOR_BOT])

        [alert] = await monitor.check_for_new_liquidations(price_one)

        assert f"({LIQUIDATOR_BOT_LABEL})" in alert.mrkdwn


class TestCheckForDisputes:
    """Tests for dispute and settlement alerts."""

    @pytest.mark.asyncio
    async def test_dispute_alert(self, source, sink, price_one, sample_dispute) -> None:
        source.events[EventCategory.LIQUIDATION_DISPUTED] = (sample_dispute,)
        monitor = ContractMonitor(source, sink, dispute_bots=[DISPUTE_BOT])

        [alert] = await monitor.check_for_new_dispute_events(price_one)

        assert alert.message == "Dispute Alert 👻!"
        assert "dispute bond of 15.00 DAI" in alert.mrkdwn
        assert f"({DISPUTE_BOT_LABEL})" in alert.mrkdwn
        assert await monitor.check_for_new_dispute_events(price_one) == []

    @pytest.mark.asyncio
    async def test_failed_settlement(self, source, sink, price_one, sample_settlement) -> None:
        source.events[EventCategory.DISPUTE_SETTLED] = (sample_settlement,)
        monitor = ContractMonitor(source, sink)

        [alert] = await monitor.check_for_new_dispute_settlement_events(price_one)

        assert "has failed." in alert.mrkdwn

    @pytest.mark.asyncio
    async def test_check_all(
        self, source, sink, price_one, sample_liquidation, sample_dispute, sample_settlement
    ) -> None:
        source.events[EventCategory.LIQUIDATION_CREATED] = (sample_liquidation,)
        source.events[EventCategory.LIQUIDATION_DISPUTED] = (sample_dispute,)
        source.events[EventCategory.DISPUTE_SETTLED] = (sample_settlement,)
        monitor = ContractMonitor(source, sink)

        sent = await monitor.check_all(price_one)

        assert [a.message for a in sent] == [
            "Liquidation Alert 🧙‍♂️!",
            "Dispute Alert 👻!",
            "Dispute Settlement Alert 👮‍♂️!",
        ]

    @pytest.mark.asyncio
    async def test_cursors_are_per_category(
        self, source, sink, price_one, sample_liquidation, sample_dispute
    ) -> None:
        """The same transaction hash in two categories alerts once per category."""
        source.events[EventCategory.LIQUIDATION_CREATED] = (
            replace(sample_liquidation, transaction_hash="0xSAME"),
        )
        source.events[EventCategory.LIQUIDATION_DISPUTED] = (
            replace(sample_dispute, transaction_hash="0xSAME"),
        )
        monitor = ContractMonitor(source, sink)

        sent = await monitor.check_all(price_one)

        assert len(sent) == 2


class TestDispatchFailures:
    """Tests for cursor handling when delivery fails."""

    @pytest.mark.asyncio
    async def test_failed_record_retried_next_call(
        self, source, sink, price_one, sample_liquidation, caplog
    ) -> None:
        source.events[EventCategory.LIQUIDATION_CREATED] = (
            replace(sample_liquidation, transaction_hash="0x1", block_number=10),
            replace(sample_liquidation, transaction_hash="0x2", block_number=11),
        )
        sink.send.side_effect = [None, AlertDispatchFailure("slack down")]
        monitor = ContractMonitor(source, sink)

        with caplog.at_level(logging.ERROR), pytest.raises(AlertDispatchFailure):
            await monitor.check_for_new_liquidations(price_one)

        assert monitor.alerted(EventCategory.LIQUIDATION_CREATED) == {"0x1"}
        assert "0x2" in caplog.text

        sink.send.side_effect = None
        retried = await monitor.check_for_new_liquidations(price_one)

        assert len(retried) == 1
        assert "tx/0x2|" in retried[0].mrkdwn

    @pytest.mark.asyncio
    async def test_unexpected_sink_error_is_wrapped(
        self, source, sink, price_one, sample_liquidation
    ) -> None:
        source.events[EventCategory.LIQUIDATION_CREATED] = (sample_liquidation,)
        sink.send.side_effect = RuntimeError("socket closed")
        monitor = ContractMonitor(source, sink)

        with pytest.raises(AlertDispatchFailure) as exc_info:
            await monitor.check_for_new_liquidations(price_one)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert monitor.alerted(EventCategory.LIQUIDATION_CREATED) == frozenset()


class TestDedupe:
    """Tests for the dedupe switch."""

    @pytest.mark.asyncio
    async def test_dedupe_disabled_realerts_history(
        self, source, sink, price_one, sample_liquidation
    ) -> None:
        source.events[EventCategory.LIQUIDATION_CREATED] = (sample_liquidation,)
        monitor = ContractMonitor(source, sink, dedupe=False)

        await monitor.check_for_new_liquidations(price_one)
        again = await monitor.check_for_new_liquidations(price_one)

        assert not monitor.dedupe
        assert len(again) == 1
        assert sink.send.await_count == 2

    @pytest.mark.asyncio
    async def test_reset_cursors(self, source, sink, price_one, sample_liquidation) -> None:
        source.events[EventCategory.LIQUIDATION_CREATED] = (sample_liquidation,)
        monitor = ContractMonitor(source, sink)
        await monitor.check_for_new_liquidations(price_one)

        monitor.reset_cursors()

        assert len(await monitor.check_for_new_liquidations(price_one)) == 1

    @pytest.mark.asyncio
    async def test_overlapping_checks_alert_once(
        self, source, price_one, sample_liquidation
    ) -> None:
        """Two concurrent checks against a slow sink send each record once."""
        source.events[EventCategory.LIQUIDATION_CREATED] = (sample_liquidation,)
        sent = []

        class SlowSink:
            async def send(self, alert) -> None:
                await asyncio.sleep(0.01)
                sent.append(alert)

        monitor = ContractMonitor(source, SlowSink())

        first, second = await asyncio.gather(
            monitor.check_for_new_liquidations(price_one),
            monitor.check_for_new_liquidations(price_one),
        )

        assert len(sent) == 1
        assert len(first) + len(second) == 1

    @pytest.mark.asyncio
    async def test_overlapping_checks_of_different_categories_both_send(
        self, source, price_one, sample_liquidation, sample_dispute
    ) -> None:
        source.events[EventCategory.LIQUIDATION_CREATED] = (sample_liquidation,)
        source.events[EventCategory.LIQUIDATION_DISPUTED] = (sample_dispute,)
        sink = MagicMock()
        sink.send = AsyncMock()
        monitor = ContractMonitor(source, sink)

        await asyncio.gather(
            monitor.check_for_new_liquidations(price_one),
            monitor.check_for_new_dispute_events(price_one),
        )

        assert sink.send.await_count == 2


class TestWithEventClient:
    """End-to-end: ledger → event client → monitor."""

    @pytest.mark.asyncio
    async def test_new_ledger_events_alerted_once(
        self, fake_ledger, make_raw, emp_address, sink, price_one, clock
    ) -> None:
        client = EventClient(fake_ledger, emp_address, clock=clock)
        monitor = ContractMonitor(client, sink)
        fake_ledger.add(
            EventCategory.LIQUIDATION_CREATED,
            make_raw(EventCategory.LIQUIDATION_CREATED, "0xA", 10),
        )
        fake_ledger.add(
            EventCategory.LIQUIDATION_CREATED,
            make_raw(EventCategory.LIQUIDATION_CREATED, "0xB", 12),
        )

        await client.update()
        first = await monitor.check_all(price_one)
        await client.force_update()
        second = await monitor.check_all(price_one)

        assert len(first) == 2
        assert second == []
