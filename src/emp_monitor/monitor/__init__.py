"""Monitoring layer - Alerts for new EMP contract events."""

from emp_monitor.monitor.contract_monitor import (
    AlertSink,
    ContractMonitor,
    EventSource,
    PriceResolver,
    constant_price_resolver,
    resolve_price,
)

__all__ = [
    "AlertSink",
    "ContractMonitor",
    "EventSource",
    "PriceResolver",
    "constant_price_resolver",
    "resolve_price",
]
