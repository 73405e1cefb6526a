"""Alert message formatter for EMP contract events.

This module turns normalized liquidation, dispute and settlement events into
human-readable alert messages with explorer links, for Slack (mrkdwn) and
Discord (markdown) delivery.
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import ROUND_DOWN, Decimal

from emp_monitor.alerter.models import AlertLevel, AlertMessage
from emp_monitor.ingestor.models import DisputeEvent, DisputeSettlementEvent, LiquidationEvent

DEFAULT_EXPLORER_URL = "https://etherscan.io"
WEI_PER_TOKEN = Decimal(10) ** 18
SOURCE_TAG = "ContractMonitor"

LIQUIDATOR_BOT_LABEL = "UMA liquidator bot"
DISPUTE_BOT_LABEL = "UMA dispute bot"

LinkRenderer = Callable[[str, str], str]


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an Ethereum address or hash to 0x1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def format_token_amount(amount_wei: str | int | Decimal) -> str:
    """Format a wei amount as a token amount with commas and 2 decimal places."""
    value = (Decimal(str(amount_wei)) / WEI_PER_TOKEN).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    return f"{value:,.2f}"


def collateralization_ratio(
    locked_collateral: str | int | Decimal,
    tokens_outstanding: str | int | Decimal,
    price: Decimal,
) -> Decimal | None:
    """Locked collateral over debt value (tokens outstanding x price).

    Both amounts are in the same base unit (wei), so the ratio is unitless.
    Returns None when the debt value is zero.
    """
    debt_value = Decimal(str(tokens_outstanding)) * Decimal(str(price))
    if debt_value == 0:
        return None
    return Decimal(str(locked_collateral)) / debt_value


def format_ratio(ratio: Decimal | None) -> str:
    """Render a ratio as a percentage truncated (ROUND_DOWN) to two decimals."""
    if ratio is None:
        return "n/a"
    percent = (ratio * 100).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    return f"{percent}%"


def format_outcome(dispute_succeeded: bool) -> str:
    return "succeeded" if dispute_succeeded else "failed"


def slack_link(url: str, text: str) -> str:
    return f"<{url}|{text}>"


def markdown_link(url: str, text: str) -> str:
    return f"[{text}]({url})"


class AlertFormatter:
    """Formats EMP events into alert messages.

    Example:
        ```python
        formatter = AlertFormatter(collateral_symbol="DAI", synthetic_symbol="UMATEST")
        alert = formatter.format_liquidation(event, ratio=Decimal("0.2"), liquidator_monitored=True)
        print(alert.mrkdwn)
        ```
    """

    def __init__(
        self,
        *,
        collateral_symbol: str = "DAI",
        synthetic_symbol: str = "UMATEST",
        explorer_url: str = DEFAULT_EXPLORER_URL,
        source: str = SOURCE_TAG,
    ) -> None:
        """Initialize the formatter.

        Args:
            collateral_symbol: Symbol shown next to collateral amounts.
            synthetic_symbol: Symbol shown next to synthetic token amounts.
            explorer_url: Block explorer base URL for address and tx links.
            source: Source tag attached to every message.
        """
        self.collateral_symbol = collateral_symbol
        self.synthetic_symbol = synthetic_symbol
        self.explorer_url = explorer_url.rstrip("/")
        self.source = source

    def _address(self, link: LinkRenderer, address: str, label: str | None = None) -> str:
        rendered = link(f"{self.explorer_url}/address/{address}", truncate_address(address))
        return f"{rendered} ({label})" if label else rendered

    def _tx(self, link: LinkRenderer, tx_hash: str) -> str:
        return link(f"{self.explorer_url}/tx/{tx_hash}", truncate_address(tx_hash))

    def _message(self, level: AlertLevel, title: str, body: Callable[[LinkRenderer], str]) -> AlertMessage:
        return AlertMessage(
            level=level,
            at=self.source,
            message=title,
            mrkdwn=body(slack_link),
            markdown=body(markdown_link),
        )

    def format_liquidation(
        self,
        event: LiquidationEvent,
        *,
        ratio: Decimal | None,
        liquidator_monitored: bool,
    ) -> AlertMessage:
        """Format a LiquidationCreated alert."""

        def body(link: LinkRenderer) -> str:
            liquidator = self._address(
                link, event.liquidator, LIQUIDATOR_BOT_LABEL if liquidator_monitored else None
            )
            return (
                f"{liquidator} initiated liquidation for "
                f"{format_token_amount(event.locked_collateral)} {self.collateral_symbol} "
                f"of sponsor {self._address(link, event.sponsor)} collateral backing "
                f"{format_token_amount(event.tokens_outstanding)} {self.synthetic_symbol} tokens. "
                f"Sponsor collateralization was {format_ratio(ratio)}. "
                f"tx: {self._tx(link, event.transaction_hash)}"
            )

        return self._message("info", "Liquidation Alert 🧙‍♂️!", body)

    def format_dispute(
        self,
        event: DisputeEvent,
        *,
        price: Decimal,
        liquidator_monitored: bool,
        disputer_monitored: bool,
    ) -> AlertMessage:
        """Format a LiquidationDisputed alert."""

        def body(link: LinkRenderer) -> str:
            disputer = self._address(
                link, event.disputer, DISPUTE_BOT_LABEL if disputer_monitored else None
            )
            liquidator = self._address(
                link, event.liquidator, LIQUIDATOR_BOT_LABEL if liquidator_monitored else None
            )
            return (
                f"{disputer} initiated a dispute against liquidator {liquidator} "
                f"for liquidation {event.liquidation_id} of sponsor {self._address(link, event.sponsor)} "
                f"with a dispute bond of {format_token_amount(event.dispute_bond_amount)} "
                f"{self.collateral_symbol}. Price at dispute time was {price}. "
                f"tx: {self._tx(link, event.transaction_hash)}"
            )

        return self._message("info", "Dispute Alert 👻!", body)

    def format_dispute_settlement(
        self,
        event: DisputeSettlementEvent,
        *,
        price: Decimal,
        liquidator_monitored: bool,
        disputer_monitored: bool,
    ) -> AlertMessage:
        """Format a DisputeSettled alert."""

        def body(link: LinkRenderer) -> str:
            liquidator = self._address(
                link, event.liquidator, LIQUIDATOR_BOT_LABEL if liquidator_monitored else None
            )
            disputer = self._address(
                link, event.disputer, DISPUTE_BOT_LABEL if disputer_monitored else None
            )
            return (
                f"Dispute between liquidator {liquidator} and disputer {disputer} "
                f"over liquidation {event.liquidation_id} of sponsor {self._address(link, event.sponsor)} "
                f"has {format_outcome(event.dispute_succeeded)}. "
                f"Settled by {self._address(link, event.caller)} at price {price}. "
                f"tx: {self._tx(link, event.transaction_hash)}"
            )

        return self._message("info", "Dispute Settlement Alert 👮‍♂️!", body)
