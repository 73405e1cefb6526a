"""Data ingestion layer - Incremental EMP contract event ingestion."""

from emp_monitor.ingestor.event_client import (
    ClientState,
    ClientStats,
    EventClient,
    LedgerQuery,
    RefreshResult,
)
from emp_monitor.ingestor.models import (
    EVENT_SCHEMAS,
    DisputeEvent,
    DisputeSettlementEvent,
    EventCategory,
    EventRecord,
    EventSchema,
    FieldSpec,
    LiquidationEvent,
    RawLogEntry,
    normalize,
)
from emp_monitor.ingestor.store import EventStore

__all__ = [
    "EVENT_SCHEMAS",
    "ClientState",
    "ClientStats",
    "DisputeEvent",
    "DisputeSettlementEvent",
    "EventCategory",
    "EventClient",
    "EventRecord",
    "EventSchema",
    "EventStore",
    "FieldSpec",
    "LedgerQuery",
    "LiquidationEvent",
    "RawLogEntry",
    "RefreshResult",
    "normalize",
]
