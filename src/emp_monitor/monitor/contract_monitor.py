"""Contract monitor - alerts on new EMP liquidation and dispute events.

The monitor reads snapshots from the event client and sends one alert per
record it has not alerted on before. Each category keeps its own cursor (the
transaction hashes already alerted), advanced per record right after that
record's alert is delivered. A failed delivery stops the batch: everything
sent before it stays marked and the failed record is retried on the next
call.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from decimal import Decimal
from typing import Protocol, TypeVar

from emp_monitor.alerter.formatter import AlertFormatter, collateralization_ratio
from emp_monitor.alerter.models import AlertMessage
from emp_monitor.errors import AlertDispatchFailure
from emp_monitor.ingestor.models import (
    DisputeEvent,
    DisputeSettlementEvent,
    EventCategory,
    EventRecord,
    LiquidationEvent,
)

R = TypeVar("R", bound=EventRecord)

PriceResolver = Callable[[int | None], Decimal | Awaitable[Decimal]]


class EventSource(Protocol):
    """Read side of the event client."""

    def get_events(self, category: EventCategory) -> tuple[EventRecord, ...]: ...


class AlertSink(Protocol):
    """Alert sink interface: raises on delivery failure."""

    async def send(self, alert: AlertMessage) -> None: ...


def constant_price_resolver(price: Decimal | str | int) -> PriceResolver:
    """Build a resolver that returns the same price for every timestamp."""
    value = Decimal(str(price))

    def resolve(timestamp: int | None) -> Decimal:
        return value

    return resolve


async def resolve_price(price_resolver: PriceResolver, timestamp: int | None) -> Decimal:
    """Call a sync or async price resolver and coerce the result to Decimal."""
    price = price_resolver(timestamp)
    if inspect.isawaitable(price):
        price = await price
    return Decimal(str(price))


class ContractMonitor:
    """Sends alerts for new EMP contract events.

    Example:
        ```python
        monitor = ContractMonitor(
            event_client,
            dispatcher,
            liquidator_bots=["0x6e44..."],
            dispute_bots=["0x34d7..."],
        )
        await event_client.update()
        await monitor.check_for_new_liquidations(constant_price_resolver("1"))
        ```
    """

    def __init__(
        self,
        event_client: EventSource,
        alert_sink: AlertSink,
        *,
        liquidator_bots: Iterable[str] = (),
        dispute_bots: Iterable[str] = (),
        formatter: AlertFormatter | None = None,
        dedupe: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            event_client: Source of event snapshots.
            alert_sink: Destination for alerts; `send` raises on failure.
            liquidator_bots: Addresses of monitored liquidator bots.
            dispute_bots: Addresses of monitored dispute bots.
            formatter: Message formatter (defaults to `AlertFormatter()`).
            dedupe: If False, every call alerts on the full snapshot.
            logger: Destination for observability events.
        """
        self._event_client = event_client
        self._sink = alert_sink
        self._liquidator_bots = frozenset(a.lower() for a in liquidator_bots)
        self._dispute_bots = frozenset(a.lower() for a in dispute_bots)
        self._formatter = formatter or AlertFormatter()
        self._dedupe = dedupe
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._alerted: dict[EventCategory, set[str]] = {category: set() for category in EventCategory}
        # Overlapping checks of one category must not both send the same record
        self._locks: dict[EventCategory, asyncio.Lock] = {
            category: asyncio.Lock() for category in EventCategory
        }

    @property
    def dedupe(self) -> bool:
        return self._dedupe

    def is_liquidator_bot(self, address: str) -> bool:
        return address.lower() in self._liquidator_bots

    def is_dispute_bot(self, address: str) -> bool:
        return address.lower() in self._dispute_bots

    def alerted(self, category: EventCategory) -> frozenset[str]:
        """Transaction hashes (lowercase) already alerted for a category."""
        return frozenset(self._alerted[category])

    def reset_cursors(self) -> None:
        """Forget which records were alerted."""
        for alerted in self._alerted.values():
            alerted.clear()

    async def check_for_new_liquidations(self, price_resolver: PriceResolver) -> list[AlertMessage]:
        """Alert on liquidations not yet alerted, with sponsor collateralization."""

        def build(event: LiquidationEvent, price: Decimal) -> AlertMessage:
            ratio = collateralization_ratio(event.locked_collateral, event.tokens_outstanding, price)
            return self._formatter.format_liquidation(
                event,
                ratio=ratio,
                liquidator_monitored=self.is_liquidator_bot(event.liquidator),
            )

        return await self._check(EventCategory.LIQUIDATION_CREATED, price_resolver, build)

    async def check_for_new_dispute_events(self, price_resolver: PriceResolver) -> list[AlertMessage]:
        """Alert on disputes not yet alerted."""

        def build(event: DisputeEvent, price: Decimal) -> AlertMessage:
            return self._formatter.format_dispute(
                event,
                price=price,
                liquidator_monitored=self.is_liquidator_bot(event.liquidator),
                disputer_monitored=self.is_dispute_bot(event.disputer),
            )

        return await self._check(EventCategory.LIQUIDATION_DISPUTED, price_resolver, build)

    async def check_for_new_dispute_settlement_events(
        self, price_resolver: PriceResolver
    ) -> list[AlertMessage]:
        """Alert on dispute settlements not yet alerted."""

        def build(event: DisputeSettlementEvent, price: Decimal) -> AlertMessage:
            return self._formatter.format_dispute_settlement(
                event,
                price=price,
                liquidator_monitored=self.is_liquidator_bot(event.liquidator),
                disputer_monitored=self.is_dispute_bot(event.disputer),
            )

        return await self._check(EventCategory.DISPUTE_SETTLED, price_resolver, build)

    async def check_all(self, price_resolver: PriceResolver) -> list[AlertMessage]:
        """Run all three checks in order and return every alert sent."""
        sent = await self.check_for_new_liquidations(price_resolver)
        sent += await self.check_for_new_dispute_events(price_resolver)
        sent += await self.check_for_new_dispute_settlement_events(price_resolver)
        return sent

    async def _check(
        self,
        category: EventCategory,
        price_resolver: PriceResolver,
        build: Callable[[R, Decimal], AlertMessage],
    ) -> list[AlertMessage]:
        async with self._locks[category]:
            alerted = self._alerted[category]
            sent: list[AlertMessage] = []

            for record in self._event_client.get_events(category):
                tx_key = record.transaction_hash.lower()
                if self._dedupe and tx_key in alerted:
                    continue

                price = await resolve_price(price_resolver, record.timestamp)
                alert = build(record, price)  # type: ignore[arg-type]

                try:
                    await self._sink.send(alert)
                except AlertDispatchFailure:
                    self._logger.error(
                        "Failed to dispatch %s alert (tx=%s); will retry next check",
                        category.value,
                        record.transaction_hash,
                    )
                    raise
                except Exception as e:
                    self._logger.error(
                        "Failed to dispatch %s alert (tx=%s): %s",
                        category.value,
                        record.transaction_hash,
                        e,
                    )
                    raise AlertDispatchFailure(
                        f"Dispatching {category.value} alert for {record.transaction_hash} failed: {e}"
                    ) from e

                alerted.add(tx_key)
                sent.append(alert)
                self._logger.info(
                    "%s alert sent (tx=%s, block=%d)",
                    category.value,
                    record.transaction_hash,
                    record.block_number,
                )

            return sent
