"""Alert delivery channels."""

from emp_monitor.alerter.channels.base import WebhookChannel
from emp_monitor.alerter.channels.discord import DiscordChannel
from emp_monitor.alerter.channels.slack import SlackChannel

__all__ = ["DiscordChannel", "SlackChannel", "WebhookChannel"]
