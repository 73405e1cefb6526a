"""Event ABI fragments for the ExpiringMultiParty contract."""

from __future__ import annotations

from typing import Any


def _event(name: str, inputs: list[tuple[str, str, bool]]) -> dict[str, Any]:
    return {
        "anonymous": False,
        "inputs": [
            {"indexed": indexed, "internalType": type_, "name": arg, "type": type_}
            for arg, type_, indexed in inputs
        ],
        "name": name,
        "type": "event",
    }


EMP_EVENTS_ABI: list[dict[str, Any]] = [
    _event(
        "LiquidationCreated",
        [
            ("sponsor", "address", True),
            ("liquidator", "address", True),
            ("liquidationId", "uint256", True),
            ("tokensOutstanding", "uint256", False),
            ("lockedCollateral", "uint256", False),
            ("liquidatedCollateral", "uint256", False),
        ],
    ),
    _event(
        "LiquidationDisputed",
        [
            ("sponsor", "address", True),
            ("liquidator", "address", True),
            ("disputer", "address", True),
            ("liquidationId", "uint256", False),
            ("disputeBondAmount", "uint256", False),
        ],
    ),
    _event(
        "DisputeSettled",
        [
            ("caller", "address", True),
            ("sponsor", "address", True),
            ("liquidator", "address", True),
            ("disputer", "address", False),
            ("liquidationId", "uint256", False),
            ("DisputeSucceeded", "bool", False),
        ],
    ),
]
