"""Ledger access layer - EMP contract event logs over JSON-RPC."""

from emp_monitor.ledger.abi import EMP_EVENTS_ABI
from emp_monitor.ledger.chain import LedgerClient, LedgerClientError, RateLimiter, RPCError

__all__ = [
    "EMP_EVENTS_ABI",
    "LedgerClient",
    "LedgerClientError",
    "RPCError",
    "RateLimiter",
]
