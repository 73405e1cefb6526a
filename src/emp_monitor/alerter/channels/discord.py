"""Discord webhook channel."""

from __future__ import annotations

from typing import Any

from emp_monitor.alerter.channels.base import WebhookChannel
from emp_monitor.alerter.models import AlertMessage

# Discord embed colors (decimal values)
LEVEL_COLORS = {
    "debug": 9807270,  # Grey (#95A5A6)
    "info": 3447003,  # Blue (#3498DB)
    "warning": 15105570,  # Orange (#E67E22)
    "error": 15158332,  # Red (#E74C3C)
}


class DiscordChannel(WebhookChannel):
    """Delivers alerts as Discord embeds."""

    name = "discord"
    success_statuses = (200, 204)

    def build_payload(self, alert: AlertMessage) -> dict[str, Any]:
        return {
            "embeds": [
                {
                    "title": alert.message,
                    "description": alert.markdown,
                    "color": LEVEL_COLORS.get(alert.level, LEVEL_COLORS["info"]),
                    "footer": {"text": alert.at},
                }
            ]
        }
