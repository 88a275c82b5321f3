"""Data models for the ingestor module."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

OrderSide = Literal["BUY", "SELL"]
SideSource = Literal["explicit", "flag", "default"]

# Time component of the key for orders that carry no timestamp. The ledger's
# retention window bounds how long such a key suppresses alerts.
UNTIMED_KEY_MARKER = "untimed"

# Numeric-coded instrument ids used by the exchange ("@1" == BTC).
# Known to be incomplete; unknown codes are shown as-is.
COIN_INDEX_MAP: dict[str, str] = {
    "@1": "BTC",
    "@2": "ETH",
    "@3": "SOL",
    "@4": "AVAX",
    "@5": "ARB",
    "@6": "DOGE",
    "@7": "MATIC",
    "@8": "XRP",
    "@9": "LINK",
}


def coded_instrument_key(instrument: str) -> str | None:
    """Return the "@N" form of a numeric instrument id, or None if not numeric."""
    if instrument.isdigit():
        return f"@{instrument}"
    if instrument.startswith("@") and instrument[1:].isdigit():
        return instrument
    return None


def instrument_symbol(instrument: str) -> str | None:
    """Resolve a numeric-coded instrument id to its symbol, if known."""
    coded = coded_instrument_key(instrument)
    if coded is None:
        return None
    return COIN_INDEX_MAP.get(coded)


@dataclass(frozen=True)
class Order:
    """Canonical open order, rebuilt from the exchange on every poll.

    Attributes:
        coin: Instrument identifier as reported (symbol or numeric code).
        side: BUY or SELL.
        side_source: How the side was determined. "default" means the
            source carried no side information at all.
        size: Order size; zero when missing or unparseable.
        size_text: Size exactly as the source reported it (fingerprinting).
        limit_price: Positive limit price, or None.
        raw_id: Exchange order id, if present.
        timestamp_hint: Order timestamp in epoch milliseconds, if present.
    """

    coin: str
    side: OrderSide
    size: Decimal
    size_text: str = ""
    limit_price: Decimal | None = None
    raw_id: str | None = None
    timestamp_hint: int | None = None
    side_source: SideSource = "explicit"

    @property
    def side_is_known(self) -> bool:
        return self.side_source != "default"

    @property
    def display_coin(self) -> str:
        """Instrument label for humans, e.g. "@3 (SOL)" for coded ids."""
        symbol = instrument_symbol(self.coin)
        if symbol is None:
            return self.coin or "Unknown"
        return f"{self.coin} ({symbol})"

    def order_key(self) -> str:
        """Build the deduplication fingerprint for this order.

        Composite of raw id, instrument, size and timestamp. When the source
        provides no timestamp a fixed marker stands in, so the key does not
        change between polls. Distinct orders with identical fields share a key.
        """
        ts = self.timestamp_hint if self.timestamp_hint is not None else UNTIMED_KEY_MARKER
        return f"{self.raw_id or ''}-{self.coin}-{self.size_text}-{ts}"
