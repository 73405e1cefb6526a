"""Incremental event client for a single EMP contract.

The client keeps one append-only `EventStore` per event category and pulls
only new logs from the ledger on each refresh: every category is queried from
its own watermark (highest stored block + 1). Refreshes are rate limited by an
update threshold so a metered RPC endpoint is not over-queried; callers that
just changed on-chain state can bypass it with `force_update()`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from emp_monitor.errors import LedgerQueryFailure, MalformedEventError, OrderingViolation
from emp_monitor.ingestor.models import (
    DisputeEvent,
    DisputeSettlementEvent,
    EventCategory,
    EventRecord,
    LiquidationEvent,
    RawLogEntry,
    normalize,
)
from emp_monitor.ingestor.store import EventStore

# Default configuration
DEFAULT_UPDATE_THRESHOLD_SECONDS = 60
DEFAULT_POLL_INTERVAL_SECONDS = 10


class LedgerQuery(Protocol):
    """Ledger query interface consumed by the event client."""

    async def get_events(
        self,
        contract_address: str,
        event_name: str,
        from_block: int,
    ) -> Sequence[RawLogEntry]: ...


class ClientState(str, Enum):
    """Lifecycle state of the polling task."""

    STOPPED = "stopped"
    POLLING = "polling"
    STOPPING = "stopping"


@dataclass
class ClientStats:
    """Counters for the event client."""

    updates: int = 0
    forced_updates: int = 0
    skipped_updates: int = 0
    records_appended: int = 0
    malformed_records: int = 0
    query_failures: int = 0
    polling_errors: int = 0
    last_update_timestamp: float | None = None
    last_error: str | None = None


@dataclass
class RefreshResult:
    """Outcome of one refresh across all categories."""

    appended: dict[EventCategory, int] = field(default_factory=dict)
    failures: dict[EventCategory, LedgerQueryFailure] = field(default_factory=dict)
    malformed: list[MalformedEventError] = field(default_factory=list)
    ordering_violations: list[OrderingViolation] = field(default_factory=list)

    @property
    def total_appended(self) -> int:
        return sum(self.appended.values())

    @property
    def all_succeeded(self) -> bool:
        return not self.failures and not self.ordering_violations


class EventClient:
    """Thick client for an EMP contract's liquidation and dispute events.

    All store mutation happens inside `update()` / `force_update()`; run them
    from a single task (the polling task) and read from anywhere via
    `get_events()`.

    Example:
        ```python
        ledger = LedgerClient("https://mainnet.infura.io/v3/<key>")
        client = EventClient(ledger, emp_address, update_threshold=60)

        await client.update()
        liquidations = client.get_all_liquidation_events()

        client.start(interval_seconds=10)
        ...
        await client.stop()
        ```
    """

    def __init__(
        self,
        ledger: LedgerQuery,
        contract_address: str,
        *,
        update_threshold: float = DEFAULT_UPDATE_THRESHOLD_SECONDS,
        categories: Iterable[EventCategory] = tuple(EventCategory),
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the event client.

        Args:
            ledger: Ledger query implementation (see `LedgerQuery`).
            contract_address: Address of the monitored EMP contract.
            update_threshold: Minimum seconds between non-forced refreshes.
            categories: Event categories to track.
            clock: Returns the current unix time in seconds.
            logger: Destination for observability events.
        """
        if update_threshold < 0:
            raise ValueError("update_threshold must be >= 0")

        self._ledger = ledger
        self._contract_address = contract_address
        self._update_threshold = update_threshold
        self._clock = clock
        self._logger = logger if logger is not None else logging.getLogger(__name__)

        self._stores: dict[EventCategory, EventStore] = {
            category: EventStore(category) for category in categories
        }
        self._last_update_timestamp: float | None = None

        self._state = ClientState.STOPPED
        self._stats = ClientStats()
        self._poll_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def contract_address(self) -> str:
        return self._contract_address

    @property
    def update_threshold(self) -> float:
        return self._update_threshold

    @property
    def last_update_timestamp(self) -> float | None:
        """Time of the last refresh (successful or partial), or None."""
        return self._last_update_timestamp

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def stats(self) -> ClientStats:
        return self._stats

    @property
    def categories(self) -> tuple[EventCategory, ...]:
        return tuple(self._stores)

    def store(self, category: EventCategory) -> EventStore:
        """Return the store for a tracked category.

        Raises:
            KeyError: If the category is not tracked by this client.
        """
        try:
            return self._stores[category]
        except KeyError:
            raise KeyError(f"Category {category.value} is not tracked") from None

    async def update(self) -> RefreshResult | None:
        """Refresh unless the last refresh was within the update threshold.

        Returns:
            The refresh result, or None if the update was skipped.
        """
        now = self._clock()
        last = self._last_update_timestamp
        if last is not None and now < last + self._update_threshold:
            self._stats.skipped_updates += 1
            self._logger.debug(
                "EMP state update skipped (current_time=%.0f, last_update=%.0f, "
                "time_remaining_until_update=%.0fs)",
                now,
                last,
                last + self._update_threshold - now,
            )
            return None

        result = await self._refresh_at(now)
        self._stats.updates += 1
        self._logger.debug("EMP state updated (last_update=%.0f)", now)
        return result

    async def force_update(self) -> RefreshResult:
        """Refresh immediately, ignoring the update threshold."""
        now = self._clock()
        result = await self._refresh_at(now)
        self._stats.forced_updates += 1
        self._logger.debug("EMP state force updated (last_update=%.0f)", now)
        return result

    async def _refresh_at(self, now: float) -> RefreshResult:
        # The watermark moves forward even when the refresh fails part-way.
        try:
            return await self._refresh()
        finally:
            self._last_update_timestamp = now
            self._stats.last_update_timestamp = now

    def clear_state(self) -> None:
        """Delete all events held by the client."""
        for store in self._stores.values():
            store.clear()

    def get_events(self, category: EventCategory) -> tuple[EventRecord, ...]:
        """Return every stored record for `category`, in ledger order."""
        return self.store(category).all()

    def get_all_liquidation_events(self) -> tuple[LiquidationEvent, ...]:
        return self.get_events(EventCategory.LIQUIDATION_CREATED)  # type: ignore[return-value]

    def get_all_dispute_events(self) -> tuple[DisputeEvent, ...]:
        return self.get_events(EventCategory.LIQUIDATION_DISPUTED)  # type: ignore[return-value]

    def get_all_dispute_settlement_events(self) -> tuple[DisputeSettlementEvent, ...]:
        return self.get_events(EventCategory.DISPUTE_SETTLED)  # type: ignore[return-value]

    async def _refresh(self) -> RefreshResult:
        """Pull new logs for every category.

        Categories are independent: a failed query for one leaves its store
        untouched and the others still refresh. Ordering violations are
        collected and the first is re-raised once every category is done.

        Raises:
            OrderingViolation: If any fetched record regressed past its
                store's maximum block.
        """
        result = RefreshResult()
        for category, store in self._stores.items():
            try:
                result.appended[category] = await self._refresh_category(category, store, result)
            except LedgerQueryFailure as e:
                result.failures[category] = e
                self._stats.query_failures += 1
                self._stats.last_error = str(e)
                self._logger.warning(
                    "Failed to fetch %s events from block %d: %s",
                    category.value,
                    e.from_block,
                    e.__cause__ or e,
                )

        self._stats.records_appended += result.total_appended
        self._logger.debug(
            "Client updated (appended=%s, failed=%s)",
            {c.value: n for c, n in result.appended.items()},
            [c.value for c in result.failures],
        )

        if result.ordering_violations:
            raise result.ordering_violations[0]
        return result

    async def _refresh_category(
        self,
        category: EventCategory,
        store: EventStore,
        result: RefreshResult,
    ) -> int:
        from_block = store.next_query_from()
        try:
            entries = await self._ledger.get_events(self._contract_address, category.value, from_block)
        except Exception as e:
            raise LedgerQueryFailure(
                f"Querying {category.value} from block {from_block} failed: {e}",
                category=category.value,
                from_block=from_block,
            ) from e

        appended = 0
        for entry in entries:
            try:
                record = normalize(category, entry)
            except MalformedEventError as e:
                result.malformed.append(e)
                self._stats.malformed_records += 1
                self._logger.warning(
                    "Skipping malformed %s event (tx=%s, block=%d): %s",
                    category.value,
                    entry.transaction_hash,
                    entry.block_number,
                    e,
                )
                continue

            try:
                if store.append(record):
                    appended += 1
            except OrderingViolation as e:
                result.ordering_violations.append(e)
                self._stats.last_error = str(e)
                self._logger.error(
                    "Ordering violation in %s store (tx=%s): %s",
                    category.value,
                    record.transaction_hash,
                    e,
                )
        return appended

    def start(self, interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS) -> None:
        """Start the background polling task."""
        if self._state != ClientState.STOPPED:
            self._logger.warning("Cannot start polling: already in state %s", self._state)
            return

        self._stop_event.clear()
        self._poll_task = asyncio.create_task(self.poll(interval_seconds))
        self._state = ClientState.POLLING
        self._logger.info("Event client polling started (interval=%ss)", interval_seconds)

    async def stop(self) -> None:
        """Stop the background polling task."""
        if self._state == ClientState.STOPPED:
            return

        self._state = ClientState.STOPPING
        self._stop_event.set()

        if self._poll_task:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None

        self._state = ClientState.STOPPED
        self._logger.info("Event client polling stopped")

    async def poll_once(self) -> None:
        """Run one polling iteration: `update()` with errors logged, not raised."""
        try:
            await self.update()
        except Exception as e:
            self._stats.polling_errors += 1
            self._stats.last_error = str(e)
            self._logger.error("Client polling error: %s", e)

    async def poll(
        self,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Poll until `stop_event` is set or the task is cancelled."""
        stop = stop_event or self._stop_event
        while not stop.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
            except TimeoutError:
                pass
