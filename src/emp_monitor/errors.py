"""Exception hierarchy shared by the ingestion and alerting layers."""

from __future__ import annotations


class EmpMonitorError(Exception):
    """Base exception for EMP monitor errors."""


class ValidationError(EmpMonitorError):
    """Raised when a record violates an event store invariant."""


class OrderingViolation(ValidationError):
    """Raised when an appended record's block regresses past the store maximum."""

    def __init__(self, message: str, *, block_number: int, max_block_number: int) -> None:
        super().__init__(message)
        self.block_number = block_number
        self.max_block_number = max_block_number


class MalformedEventError(EmpMonitorError):
    """Raised when a raw log entry cannot be normalized into an event record."""

    def __init__(self, message: str, *, category: str, transaction_hash: str | None) -> None:
        super().__init__(message)
        self.category = category
        self.transaction_hash = transaction_hash


class LedgerQueryFailure(EmpMonitorError):
    """Raised when fetching one category's logs fails for a refresh cycle."""

    def __init__(self, message: str, *, category: str, from_block: int) -> None:
        super().__init__(message)
        self.category = category
        self.from_block = from_block


class AlertDispatchFailure(EmpMonitorError):
    """Raised when an alert sink rejects a message."""
