"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

AlertLevel = Literal["debug", "info", "warning", "error"]


@dataclass(frozen=True)
class AlertMessage:
    """A structured alert ready for delivery.

    `mrkdwn` is the Slack-flavoured body (`<url|text>` links); `markdown`
    is the same body with standard `[text](url)` links for Discord.
    """

    level: AlertLevel
    at: str  # source tag, e.g. "ContractMonitor"
    message: str  # title
    mrkdwn: str
    markdown: str

    def to_dict(self) -> dict[str, str]:
        """Serialize to a dictionary."""
        return {
            "level": self.level,
            "at": self.at,
            "message": self.message,
            "mrkdwn": self.mrkdwn,
            "markdown": self.markdown,
        }
