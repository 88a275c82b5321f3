"""Alert message formatter for multi-channel delivery.

This module transforms LargeOrderAlert objects into human-readable alert
messages optimized for Telegram and plain text log output.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from hyperliquid_order_tracker.alerter.models import FormattedAlert, LargeOrderAlert

# Hyperliquid URLs
HYPERLIQUID_ADDRESS_URL = "https://hyperliquid.xyz/address/{address}"

TELEGRAM_SPECIAL_CHARS = "_*[]()~`>#+-=|{}.!\\"

VALUATION_LABELS = {
    "limit_price": "order limit price",
    "market": "market price",
    "fallback": "fallback price",
    "none": "no price available",
}


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an address to 0x1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def format_usd(amount: Decimal, places: int = 0) -> str:
    """Format a USD amount with thousands separators."""
    return f"${amount:,.{places}f}"


def escape_telegram_markdown(text: str) -> str:
    """Escape special Telegram MarkdownV2 characters."""
    return "".join(f"\\{ch}" if ch in TELEGRAM_SPECIAL_CHARS else ch for ch in text)


def side_label(alert: LargeOrderAlert) -> str:
    order = alert.order
    if not order.side_is_known:
        return f"{order.side} (unconfirmed)"
    return order.side


def price_label(alert: LargeOrderAlert) -> str:
    """Limit price as "$X", or "Market" for orders without one."""
    limit_price = alert.order.limit_price
    if limit_price is None:
        return "Market"
    return f"${limit_price}"


class AlertFormatter:
    """Formats LargeOrderAlerts into multi-channel alert messages.

    Supports two verbosity levels:
    - compact: One line with instrument, side and value
    - detailed: Full context (address, size, price, time, link)
    """

    def __init__(
        self,
        verbosity: Literal["compact", "detailed"] = "detailed",
    ) -> None:
        """Initialize the formatter.

        Args:
            verbosity: Level of detail in formatted messages.
        """
        self.verbosity = verbosity

    def format(self, alert: LargeOrderAlert) -> FormattedAlert:
        """Format a large-order alert for every channel.

        Args:
            alert: The alert to format.

        Returns:
            FormattedAlert with all channel formats.
        """
        links = {"address": HYPERLIQUID_ADDRESS_URL.format(address=alert.address)}
        title = "🚨 LARGE ORDER ALERT 🚨"

        return FormattedAlert(
            title=title,
            body=self._build_body(alert),
            telegram_markdown=self._build_telegram_markdown(alert, links),
            plain_text=self._build_plain_text(alert, links),
            links=links,
        )

    def _build_body(self, alert: LargeOrderAlert) -> str:
        order = alert.order
        if self.verbosity == "compact":
            return (
                f"{side_label(alert)} {order.size_text or order.size} {order.display_coin} "
                f"({format_usd(alert.value_usd)}) on {truncate_address(alert.address)}"
            )

        lines = [
            f"Address: {truncate_address(alert.address)}",
            f"Coin: {order.display_coin}",
            f"Side: {side_label(alert)}",
            f"Total Value: {format_usd(alert.value_usd)}",
        ]
        return "\n".join(lines)

    def _build_telegram_markdown(self, alert: LargeOrderAlert, links: dict[str, str]) -> str:
        """Build Telegram MarkdownV2 format."""
        esc = escape_telegram_markdown
        order = alert.order

        lines = ["🚨 *LARGE ORDER ALERT* 🚨", ""]
        lines.append(f"*Address:* `{alert.address}`")
        lines.append(f"*Coin:* {esc(order.display_coin)}")
        lines.append(f"*Side:* {esc(side_label(alert))}")
        lines.append(f"*Size:* {esc(order.size_text or 'Unknown')}")
        lines.append(f"*Price:* {esc(price_label(alert))}")
        lines.append(f"*Total Value:* {esc(format_usd(alert.value_usd))}")
        if self.verbosity == "detailed" and alert.valuation.source != "limit_price":
            basis = VALUATION_LABELS[alert.valuation.source]
            lines.append(f"*Valued by:* {esc(basis)}")
        lines.append(f"*Time:* {esc(alert.detected_at.isoformat())}")

        lines.append("")
        lines.append(f"[View Address]({links['address']})")
        return "\n".join(lines)

    def _build_plain_text(self, alert: LargeOrderAlert, links: dict[str, str]) -> str:
        """Build plain text format for logs and generic channels."""
        order = alert.order

        lines = [
            "LARGE ORDER ALERT",
            "=" * 30,
            "",
            f"Address: {alert.address}",
            f"Coin: {order.display_coin}",
            f"Side: {side_label(alert)}",
            f"Size: {order.size_text or 'Unknown'}",
            f"Price: {price_label(alert)}",
            f"Total Value: {format_usd(alert.value_usd)}",
        ]
        if self.verbosity == "detailed" and alert.valuation.source != "limit_price":
            lines.append(f"Valued by: {VALUATION_LABELS[alert.valuation.source]}")
        lines.append(f"Time: {alert.detected_at.isoformat()}")

        lines.append("")
        lines.append(f"View Address: {links['address']}")
        return "\n".join(lines)
