"""Data models for the ingestor module.

Event records are immutable values normalized from raw ledger logs. The
mapping from on-chain field names to record attributes is declarative: each
category has an `EventSchema` listing its fields, so adding a category is a
new record class plus a schema entry.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, ClassVar, Literal

from emp_monitor.errors import MalformedEventError


class EventCategory(str, Enum):
    """Monitored EMP event kinds. Values are the on-chain event names."""

    LIQUIDATION_CREATED = "LiquidationCreated"
    LIQUIDATION_DISPUTED = "LiquidationDisputed"
    DISPUTE_SETTLED = "DisputeSettled"


def _to_hex(value: Any) -> str:
    """Render a web3 hash (HexBytes, bytes or str) as a 0x-prefixed string."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else f"0x{text}"


@dataclass(frozen=True)
class RawLogEntry:
    """A single decoded contract log as returned by the ledger."""

    transaction_hash: str
    block_number: int
    args: Mapping[str, Any]
    log_index: int = 0
    timestamp: int | None = None

    @classmethod
    def from_web3_log(cls, log: Mapping[str, Any], *, timestamp: int | None = None) -> RawLogEntry:
        """Create a RawLogEntry from a web3 decoded event (AttributeDict)."""
        return cls(
            transaction_hash=_to_hex(log["transactionHash"]),
            block_number=int(log["blockNumber"]),
            args=dict(log.get("args", {})),
            log_index=int(log.get("logIndex", 0)),
            timestamp=timestamp,
        )


@dataclass(frozen=True, kw_only=True)
class EventRecord:
    """Fields shared by every normalized event."""

    category: ClassVar[EventCategory]

    transaction_hash: str
    block_number: int
    log_index: int = 0
    timestamp: int | None = None

    @property
    def identity(self) -> tuple[str, EventCategory]:
        """Identity used for deduplication: (transaction hash, category)."""
        return (self.transaction_hash.lower(), self.category)


@dataclass(frozen=True, kw_only=True)
class LiquidationEvent(EventRecord):
    """A LiquidationCreated event."""

    category: ClassVar[EventCategory] = EventCategory.LIQUIDATION_CREATED

    sponsor: str
    liquidator: str
    liquidation_id: str
    tokens_outstanding: str  # wei
    locked_collateral: str  # wei
    liquidated_collateral: str  # wei


@dataclass(frozen=True, kw_only=True)
class DisputeEvent(EventRecord):
    """A LiquidationDisputed event."""

    category: ClassVar[EventCategory] = EventCategory.LIQUIDATION_DISPUTED

    sponsor: str
    liquidator: str
    disputer: str
    liquidation_id: str
    dispute_bond_amount: str  # wei


@dataclass(frozen=True, kw_only=True)
class DisputeSettlementEvent(EventRecord):
    """A DisputeSettled event."""

    category: ClassVar[EventCategory] = EventCategory.DISPUTE_SETTLED

    caller: str
    sponsor: str
    liquidator: str
    disputer: str
    liquidation_id: str
    dispute_succeeded: bool


FieldKind = Literal["address", "amount", "id", "bool"]


@dataclass(frozen=True)
class FieldSpec:
    """Maps one ledger field onto a record attribute."""

    source: str
    target: str
    kind: FieldKind
    required: bool = True


@dataclass(frozen=True)
class EventSchema:
    """Declarative normalization rules for one event category."""

    category: EventCategory
    record_type: type[EventRecord]
    fields: tuple[FieldSpec, ...] = field(default_factory=tuple)

    def normalize(self, raw: RawLogEntry) -> EventRecord:
        """Normalize a raw log into this schema's record type.

        Raises:
            MalformedEventError: If a required field is missing or a value
                cannot be converted to its declared kind.
        """
        values: dict[str, Any] = {}
        for spec in self.fields:
            value = raw.args.get(spec.source)
            if value is None:
                if spec.required:
                    raise MalformedEventError(
                        f"{self.category.value} log is missing required field {spec.source!r}",
                        category=self.category.value,
                        transaction_hash=raw.transaction_hash,
                    )
                continue
            try:
                values[spec.target] = _convert(value, spec.kind)
            except (TypeError, ValueError, InvalidOperation) as e:
                raise MalformedEventError(
                    f"{self.category.value} field {spec.source!r} has invalid value {value!r}: {e}",
                    category=self.category.value,
                    transaction_hash=raw.transaction_hash,
                ) from e

        if not raw.transaction_hash or raw.block_number < 0:
            raise MalformedEventError(
                f"{self.category.value} log has no transaction hash or a negative block number",
                category=self.category.value,
                transaction_hash=raw.transaction_hash or None,
            )

        return self.record_type(
            transaction_hash=raw.transaction_hash,
            block_number=raw.block_number,
            log_index=raw.log_index,
            timestamp=raw.timestamp,
            **values,
        )


def _convert(value: Any, kind: FieldKind) -> str | bool:
    if kind == "address":
        text = str(value)
        if not text.startswith("0x"):
            raise ValueError("address must be 0x-prefixed")
        return text
    if kind == "amount":
        amount = Decimal(str(value))
        if not amount.is_finite() or amount < 0 or amount != amount.to_integral_value():
            raise ValueError("amount must be a non-negative integer")
        return str(int(amount))
    if kind == "id":
        return str(int(str(value)))
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ValueError("expected a boolean")


EVENT_SCHEMAS: dict[EventCategory, EventSchema] = {
    EventCategory.LIQUIDATION_CREATED: EventSchema(
        category=EventCategory.LIQUIDATION_CREATED,
        record_type=LiquidationEvent,
        fields=(
            FieldSpec("sponsor", "sponsor", "address"),
            FieldSpec("liquidator", "liquidator", "address"),
            FieldSpec("liquidationId", "liquidation_id", "id"),
            FieldSpec("tokensOutstanding", "tokens_outstanding", "amount"),
            FieldSpec("lockedCollateral", "locked_collateral", "amount"),
            FieldSpec("liquidatedCollateral", "liquidated_collateral", "amount"),
        ),
    ),
    EventCategory.LIQUIDATION_DISPUTED: EventSchema(
        category=EventCategory.LIQUIDATION_DISPUTED,
        record_type=DisputeEvent,
        fields=(
            FieldSpec("sponsor", "sponsor", "address"),
            FieldSpec("liquidator", "liquidator", "address"),
            FieldSpec("disputer", "disputer", "address"),
            FieldSpec("liquidationId", "liquidation_id", "id"),
            FieldSpec("disputeBondAmount", "dispute_bond_amount", "amount"),
        ),
    ),
    EventCategory.DISPUTE_SETTLED: EventSchema(
        category=EventCategory.DISPUTE_SETTLED,
        record_type=DisputeSettlementEvent,
        fields=(
            FieldSpec("caller", "caller", "address"),
            FieldSpec("sponsor", "sponsor", "address"),
            FieldSpec("liquidator", "liquidator", "address"),
            FieldSpec("disputer", "disputer", "address"),
            FieldSpec("liquidationId", "liquidation_id", "id"),
            FieldSpec("DisputeSucceeded", "dispute_succeeded", "bool"),
        ),
    ),
}


def normalize(category: EventCategory, raw: RawLogEntry) -> EventRecord:
    """Normalize a raw log using the registered schema for `category`."""
    return EVENT_SCHEMAS[category].normalize(raw)
