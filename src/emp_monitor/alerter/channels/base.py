"""Shared HTTP webhook plumbing for alert channels."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import aiohttp

from emp_monitor.alerter.models import AlertMessage
from emp_monitor.errors import AlertDispatchFailure

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10


class WebhookChannel(ABC):
    """Posts JSON payloads to an incoming-webhook URL.

    Subclasses supply `name` and `build_payload`.
    """

    name = "webhook"
    success_statuses: tuple[int, ...] = (200, 204)

    def __init__(
        self,
        webhook_url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the channel.

        Args:
            webhook_url: Incoming webhook URL.
            session: Optional shared aiohttp session (not closed by `aclose`).
            timeout_seconds: Total request timeout.
        """
        self._webhook_url = webhook_url
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @abstractmethod
    def build_payload(self, alert: AlertMessage) -> dict[str, Any]:
        """Render an alert as the webhook's JSON body."""

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def send(self, alert: AlertMessage) -> None:
        """Post an alert.

        Raises:
            AlertDispatchFailure: On a non-success HTTP status or network error.
        """
        payload = self.build_payload(alert)
        try:
            async with self._get_session().post(self._webhook_url, json=payload) as resp:
                if resp.status not in self.success_statuses:
                    body = await resp.text()
                    raise AlertDispatchFailure(
                        f"{self.name} webhook returned HTTP {resp.status}: {body[:200]}"
                    )
        except aiohttp.ClientError as e:
            raise AlertDispatchFailure(f"{self.name} webhook request failed: {e}") from e
        logger.debug("Alert delivered via %s: %s", self.name, alert.message)

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
