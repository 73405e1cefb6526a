"""Alerting layer - Alert formatting and delivery."""

from emp_monitor.alerter.channels.discord import DiscordChannel
from emp_monitor.alerter.channels.slack import SlackChannel
from emp_monitor.alerter.dispatcher import AlertChannel, AlertDispatcher, DispatchResult
from emp_monitor.alerter.formatter import AlertFormatter
from emp_monitor.alerter.models import AlertMessage

__all__ = [
    "AlertChannel",
    "AlertDispatcher",
    "AlertFormatter",
    "AlertMessage",
    "DiscordChannel",
    "DispatchResult",
    "SlackChannel",
]
