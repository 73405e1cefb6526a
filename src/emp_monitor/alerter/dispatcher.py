"""Alert dispatcher fanning a message out to every configured channel."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from emp_monitor.alerter.models import AlertMessage
from emp_monitor.errors import AlertDispatchFailure


class AlertChannel(Protocol):
    """A delivery channel. `send` raises on failure."""

    name: str

    async def send(self, alert: AlertMessage) -> None: ...

    async def aclose(self) -> None: ...


@dataclass
class DispatchResult:
    """Per-channel outcome of one dispatch."""

    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def success_count(self) -> int:
        return len(self.delivered)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def any_succeeded(self) -> bool:
        return self.dry_run or bool(self.delivered)


class AlertDispatcher:
    """Sends alerts to all channels concurrently.

    `send()` is the alert sink used by the contract monitor: it raises
    `AlertDispatchFailure` when no channel accepted the message. A message
    accepted by at least one channel counts as delivered, and the failing
    channels are logged, so a retry never duplicates it on healthy channels.

    With `dry_run=True`, or no channels at all, alerts are logged instead of
    sent.
    """

    def __init__(
        self,
        channels: Sequence[AlertChannel],
        *,
        dry_run: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self._channels = list(channels)
        self._dry_run = dry_run
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    @property
    def channels(self) -> list[AlertChannel]:
        return list(self._channels)

    @property
    def dry_run(self) -> bool:
        return self._dry_run or not self._channels

    async def dispatch(self, alert: AlertMessage) -> DispatchResult:
        """Deliver an alert to every channel and report per-channel outcomes."""
        if self.dry_run:
            self._logger.info(
                "[DRY RUN] Would send alert (level=%s, at=%s): %s\n%s",
                alert.level,
                alert.at,
                alert.message,
                alert.mrkdwn,
            )
            return DispatchResult(dry_run=True)

        outcomes = await asyncio.gather(
            *(channel.send(alert) for channel in self._channels),
            return_exceptions=True,
        )

        result = DispatchResult()
        for channel, outcome in zip(self._channels, outcomes, strict=True):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                result.failed[channel.name] = str(outcome)
                self._logger.warning("Alert channel %s failed: %s", channel.name, outcome)
            else:
                result.delivered.append(channel.name)

        if result.failed and result.delivered:
            self._logger.warning(
                "Alert partially failed: %d/%d channels succeeded",
                result.success_count,
                result.success_count + result.failure_count,
            )
        return result

    async def send(self, alert: AlertMessage) -> None:
        """Alert sink interface.

        Raises:
            AlertDispatchFailure: If no channel accepted the alert.
        """
        result = await self.dispatch(alert)
        if not result.any_succeeded:
            failures = ", ".join(f"{name}: {error}" for name, error in result.failed.items())
            raise AlertDispatchFailure(f"Alert {alert.message!r} was not delivered ({failures})")

    async def aclose(self) -> None:
        """Close every channel's HTTP session."""
        for channel in self._channels:
            try:
                await channel.aclose()
            except Exception as e:
                self._logger.warning("Failed to close alert channel %s: %s", channel.name, e)
