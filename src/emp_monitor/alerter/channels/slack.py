"""Slack incoming-webhook channel."""

from __future__ import annotations

from typing import Any

from emp_monitor.alerter.channels.base import WebhookChannel
from emp_monitor.alerter.models import AlertMessage


class SlackChannel(WebhookChannel):
    """Delivers alerts as Slack mrkdwn messages."""

    name = "slack"
    success_statuses = (200,)

    def build_payload(self, alert: AlertMessage) -> dict[str, Any]:
        return {
            "text": f"*{alert.message}*\n{alert.mrkdwn}",
            "mrkdwn": True,
        }
