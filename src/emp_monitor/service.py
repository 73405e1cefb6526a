"""Service orchestrator for the EMP monitor.

This module provides the MonitorService class that wires the ledger client,
event client, alert dispatcher and contract monitor together and runs the
polling and alerting loops.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from emp_monitor.alerter.channels.discord import DiscordChannel
from emp_monitor.alerter.channels.slack import SlackChannel
from emp_monitor.alerter.dispatcher import AlertChannel, AlertDispatcher
from emp_monitor.alerter.formatter import AlertFormatter
from emp_monitor.config import Settings, get_settings
from emp_monitor.errors import AlertDispatchFailure
from emp_monitor.ingestor.event_client import EventClient
from emp_monitor.ledger.chain import LedgerClient
from emp_monitor.monitor.contract_monitor import (
    ContractMonitor,
    PriceResolver,
    constant_price_resolver,
)

logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    """Service lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class MonitorStats:
    """Statistics for the service."""

    started_at: datetime | None = None
    checks_run: int = 0
    alerts_sent: int = 0
    errors: int = 0
    last_check_time: datetime | None = None
    last_error: str | None = None


class MonitorService:
    """Runs ingestion and alerting for one EMP contract.

    Service flow:
        Ledger (JSON-RPC) → EventClient (poll task) → ContractMonitor (monitor task) → Alerter

    Example:
        ```python
        from emp_monitor.config import get_settings
        from emp_monitor.service import MonitorService

        service = MonitorService(get_settings())

        await service.start()
        # Service runs until stop() is called
        await service.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        price_resolver: PriceResolver | None = None,
        dry_run: bool | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            price_resolver: Price source for alerts. Defaults to the constant
                `monitor.price` from settings.
            dry_run: If True, log alerts instead of sending them. Overrides
                settings.dry_run.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._price_resolver = price_resolver

        self._state = MonitorState.STOPPED
        self._stats = MonitorStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._ledger: LedgerClient | None = None
        self._event_client: EventClient | None = None
        self._dispatcher: AlertDispatcher | None = None
        self._monitor: ContractMonitor | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._monitor_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> MonitorState:
        """Current service state."""
        return self._state

    @property
    def stats(self) -> MonitorStats:
        """Current service statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if the service is running."""
        return self._state == MonitorState.RUNNING

    @property
    def event_client(self) -> EventClient | None:
        return self._event_client

    @property
    def monitor(self) -> ContractMonitor | None:
        return self._monitor

    async def start(self) -> None:
        """Start the service.

        Initializes all components and starts the poll and monitor tasks.

        Raises:
            RuntimeError: If the service is already running or no price
                source is configured.
            Exception: If any component fails to initialize.
        """
        if self._state != MonitorState.STOPPED:
            raise RuntimeError(f"Cannot start service in state {self._state}")

        self._state = MonitorState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting EMP monitor...")

        try:
            self._initialize_components()
            self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = MonitorState.RUNNING
            logger.info("EMP monitor started (contract=%s)", self._settings.ledger.emp_address)
        except Exception as e:
            self._state = MonitorState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start EMP monitor: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the service gracefully."""
        if self._state == MonitorState.STOPPED:
            return

        self._state = MonitorState.STOPPING
        logger.info("Stopping EMP monitor...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = MonitorState.STOPPED
        logger.info("EMP monitor stopped")

    def _initialize_components(self) -> None:
        """Initialize all service components."""
        settings = self._settings

        if self._price_resolver is None:
            if settings.monitor.price is None:
                raise RuntimeError("No price source: set MONITOR_PRICE or pass price_resolver")
            self._price_resolver = constant_price_resolver(settings.monitor.price)

        if settings.redis.url:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        logger.debug("Initializing ledger client...")
        self._ledger = LedgerClient(
            settings.ledger.rpc_url,
            fallback_rpc_url=settings.ledger.fallback_rpc_url,
            redis=self._redis,
            max_requests_per_second=settings.ledger.max_requests_per_second,
            max_retries=settings.ledger.max_retries,
        )

        logger.debug("Initializing event client...")
        self._event_client = EventClient(
            self._ledger,
            settings.ledger.emp_address,
            update_threshold=settings.event_client.update_threshold_seconds,
        )

        logger.debug("Initializing alerter...")
        self._dispatcher = AlertDispatcher(self._build_alert_channels(), dry_run=self._dry_run)

        self._monitor = ContractMonitor(
            self._event_client,
            self._dispatcher,
            liquidator_bots=settings.monitor.liquidator_bot_addresses,
            dispute_bots=settings.monitor.dispute_bot_addresses,
            formatter=AlertFormatter(
                collateral_symbol=settings.monitor.collateral_symbol,
                synthetic_symbol=settings.monitor.synthetic_symbol,
                explorer_url=settings.monitor.explorer_url,
            ),
            dedupe=settings.monitor.dedupe,
        )

        logger.info("All components initialized")

    def _build_alert_channels(self) -> list[AlertChannel]:
        """Build list of enabled alert channels."""
        channels: list[AlertChannel] = []
        settings = self._settings

        if settings.slack.enabled and settings.slack.webhook_url:
            channels.append(SlackChannel(settings.slack.webhook_url.get_secret_value()))
            logger.info("Slack channel enabled")

        if settings.discord.enabled and settings.discord.webhook_url:
            channels.append(DiscordChannel(settings.discord.webhook_url.get_secret_value()))
            logger.info("Discord channel enabled")

        if not channels:
            logger.warning("No alert channels configured")

        return channels

    def _start_background_services(self) -> None:
        """Start the poll and monitor tasks."""
        if self._event_client:
            logger.debug("Starting event client polling...")
            self._event_client.start(self._settings.event_client.poll_interval_seconds)

        if self._monitor:
            logger.debug("Starting monitor loop...")
            self._monitor_task = asyncio.create_task(self._run_monitor_loop())

    async def check_once(self) -> int:
        """Run one monitor pass over every category.

        Returns:
            Number of alerts sent.
        """
        if not self._monitor or not self._price_resolver:
            raise RuntimeError("Service components are not initialized")

        self._stats.checks_run += 1
        self._stats.last_check_time = datetime.now(UTC)
        sent = await self._monitor.check_all(self._price_resolver)
        self._stats.alerts_sent += len(sent)
        return len(sent)

    async def _run_monitor_loop(self) -> None:
        if not self._stop_event:
            return
        interval = self._settings.monitor.interval_seconds

        while not self._stop_event.is_set():
            try:
                await self.check_once()
            except AlertDispatchFailure as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.warning("Alert delivery failed, will retry next check: %s", e)
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.error("Monitor check failed: %s", e)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except TimeoutError:
                pass

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._monitor_task:
            self._monitor_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._monitor_task
            self._monitor_task = None

        if self._event_client:
            logger.debug("Stopping event client polling...")
            await self._event_client.stop()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._dispatcher:
            await self._dispatcher.aclose()
            self._dispatcher = None

        if self._ledger:
            await self._ledger.aclose()
            self._ledger = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the service and run until interrupted.

        Example:
            ```python
            service = MonitorService()
            try:
                await service.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> MonitorService:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
