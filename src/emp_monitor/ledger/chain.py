"""Ledger client for EMP contract event logs.

This module provides an Ethereum JSON-RPC client with:
- Retry logic with exponential backoff
- Failover to a secondary RPC URL
- Rate limiting to respect provider limits
- Optional Redis caching of block timestamps (blocks are immutable)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

import aiohttp
from redis.asyncio import Redis
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.providers import AsyncHTTPProvider

from emp_monitor.ingestor.models import RawLogEntry
from emp_monitor.ledger.abi import EMP_EVENTS_ABI

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default configuration
DEFAULT_MAX_REQUESTS_PER_SECOND = 10
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 30

RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    Web3Exception,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)


class LedgerClientError(Exception):
    """Base exception for ledger client errors."""


class RPCError(LedgerClientError):
    """Raised when an RPC call fails after all retries and failover."""


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            # Sleep only as long as the missing tokens take to refill
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class LedgerClient:
    """Reads EMP event logs from an Ethereum RPC endpoint.

    Implements the ledger query interface consumed by `EventClient`:
    `get_events(contract_address, event_name, from_block)`.

    Example:
        ```python
        client = LedgerClient(
            "https://mainnet.infura.io/v3/<key>",
            fallback_rpc_url="https://ethereum-rpc.publicnode.com",
        )
        logs = await client.get_events(emp_address, "LiquidationCreated", 0)
        await client.aclose()
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        redis: Redis | None = None,
        abi: list[dict[str, Any]] | None = None,
        cache_ttl_seconds: int | None = None,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        request_timeout: int = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialize the ledger client.

        Args:
            rpc_url: Primary RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            redis: Optional Redis client for caching block timestamps.
            abi: Contract ABI used to decode logs (defaults to the EMP events).
            cache_ttl_seconds: Redis TTL for cached timestamps. None stores
                them without expiry, since a mined block never changes.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Maximum attempts per endpoint.
            retry_delay_seconds: Initial delay between retries.
            request_timeout: HTTP request timeout in seconds.
        """
        self._rpc_url = rpc_url
        self._fallback_rpc_url = fallback_rpc_url
        self._redis = redis
        self._abi = abi or EMP_EVENTS_ABI
        self._cache_ttl = cache_ttl_seconds
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._request_timeout = request_timeout

        self._w3 = self._new_web3_client(rpc_url)
        self._w3_fallback: AsyncWeb3[AsyncHTTPProvider] | None = None
        if fallback_rpc_url:
            self._w3_fallback = self._new_web3_client(fallback_rpc_url)

        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0

        self._cache_prefix = "emp:"
        self._timestamps: dict[int, int] = {}

    def _new_web3_client(self, rpc_url: str) -> AsyncWeb3[AsyncHTTPProvider]:
        return AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": self._request_timeout})
        )

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str) -> None:
        if not self._redis:
            return
        try:
            # ex=None means no expiry
            await self._redis.set(key, value, ex=self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    def _should_try_primary(self) -> bool:
        if self._primary_healthy:
            return True
        # Probe a failed primary again once per recovery interval
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _attempt(
        self,
        w3: AsyncWeb3[AsyncHTTPProvider],
        operation: Callable[[AsyncWeb3[AsyncHTTPProvider]], Awaitable[T]],
        description: str,
        label: str,
    ) -> tuple[bool, T | None, Exception | None]:
        delay = self._retry_delay
        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                return True, await operation(w3), None
            except RETRYABLE_ERRORS as e:
                last_error = e
                logger.warning(
                    "%s RPC %s failed (attempt %d/%d): %s",
                    label,
                    description,
                    attempt + 1,
                    self._max_retries,
                    e,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= 2
        return False, None, last_error

    async def _execute_with_retry(
        self,
        operation: Callable[[AsyncWeb3[AsyncHTTPProvider]], Awaitable[T]],
        description: str,
    ) -> T:
        """Run an RPC operation with retry and failover.

        Raises:
            RPCError: If all retries and failover fail.
        """
        await self._rate_limiter.acquire()

        last_error: Exception | None = None

        if self._should_try_primary():
            ok, result, last_error = await self._attempt(self._w3, operation, description, "Primary")
            if ok:
                self._primary_healthy = True
                return result  # type: ignore[return-value]
            self._primary_healthy = False
            self._last_primary_check = time.monotonic()

        if self._w3_fallback:
            ok, result, error = await self._attempt(
                self._w3_fallback, operation, description, "Fallback"
            )
            if ok:
                logger.info("Fallback RPC succeeded for %s", description)
                return result  # type: ignore[return-value]
            last_error = error

        raise RPCError(f"RPC call {description} failed after all retries: {last_error}")

    async def get_block_timestamp(self, block_number: int) -> int:
        """Get a block's timestamp (unix seconds)."""
        if block_number < 0:
            raise ValueError("block_number must be >= 0")

        if block_number in self._timestamps:
            return self._timestamps[block_number]

        cache_key = f"{self._cache_prefix}block_ts:{block_number}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            self._timestamps[block_number] = int(cached)
            return int(cached)

        block = await self._execute_with_retry(
            lambda w3: w3.eth.get_block(block_number),
            f"get_block({block_number})",
        )
        timestamp = int(block["timestamp"])
        self._timestamps[block_number] = timestamp
        await self._set_cached(cache_key, str(timestamp))
        return timestamp

    async def get_events(
        self,
        contract_address: str,
        event_name: str,
        from_block: int,
    ) -> Sequence[RawLogEntry]:
        """Fetch decoded contract events from `from_block` (inclusive) to latest.

        Entries are returned in ledger order (block number, then log index),
        each annotated with its block timestamp.
        """
        if from_block < 0:
            raise ValueError("from_block must be >= 0")

        address = AsyncWeb3.to_checksum_address(contract_address)

        async def fetch(w3: AsyncWeb3[AsyncHTTPProvider]) -> Any:
            contract = w3.eth.contract(address=address, abi=self._abi)
            event = getattr(contract.events, event_name)
            return await event.get_logs(from_block=from_block)

        logs = await self._execute_with_retry(
            fetch, f"get_logs({event_name}, from_block={from_block})"
        )
        ordered = sorted(logs, key=lambda log: (int(log["blockNumber"]), int(log["logIndex"])))

        entries: list[RawLogEntry] = []
        for log in ordered:
            timestamp = await self.get_block_timestamp(int(log["blockNumber"]))
            entries.append(RawLogEntry.from_web3_log(log, timestamp=timestamp))
        return entries

    async def health_check(self) -> bool:
        """Check if the client can reach the RPC."""
        try:
            await self._execute_with_retry(lambda w3: w3.eth.block_number, "block_number")
            return True
        except RPCError:
            return False

    async def aclose(self) -> None:
        """Close async HTTP provider sessions to avoid leaked aiohttp sessions."""
        providers = [self._w3.provider]
        if self._w3_fallback is not None:
            providers.append(self._w3_fallback.provider)

        for provider in providers:
            disconnect = getattr(provider, "disconnect", None)
            if not callable(disconnect):
                continue
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)
