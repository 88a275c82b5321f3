"""Best-effort USD price table for instruments.

Live mid prices are merged over a static table of known prices for the
major instruments. The resolver never raises: when the live source is
unreachable or malformed the static table is returned as-is.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Literal, Protocol

from hyperliquid_order_tracker.ingestor.models import COIN_INDEX_MAP, coded_instrument_key
from hyperliquid_order_tracker.ingestor.normalizer import parse_decimal

logger = logging.getLogger(__name__)

STATIC_PRICES: dict[str, Decimal] = {
    "BTC": Decimal("80000"),
    "ETH": Decimal("1950"),
    "SOL": Decimal("145"),
    "AVAX": Decimal("25"),
    "ARB": Decimal("1.15"),
    "DOGE": Decimal("0.12"),
    "MATIC": Decimal("0.65"),
    "XRP": Decimal("0.52"),
    "LINK": Decimal("13.5"),
}

PriceSource = Literal["live", "fallback"]


def _with_coded_aliases(prices: Mapping[str, Decimal]) -> dict[str, Decimal]:
    """Make each mapped "@N" key and its symbol resolve to one price.

    The symbol's price wins; a coded price only fills in a missing symbol.
    """
    out = dict(prices)
    for code, symbol in COIN_INDEX_MAP.items():
        if symbol in out:
            out[code] = out[symbol]
        elif code in out:
            out[symbol] = out[code]
    return out


def static_price_table() -> PriceTable:
    """Return the static fallback table (symbols and coded aliases)."""
    return PriceTable(prices=_with_coded_aliases(STATIC_PRICES), source="fallback")


@dataclass(frozen=True)
class PriceTable:
    """Instrument id to positive USD price, rebuilt every cycle."""

    prices: Mapping[str, Decimal]
    source: PriceSource = "fallback"
    resolved_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __len__(self) -> int:
        return len(self.prices)

    def __contains__(self, instrument: object) -> bool:
        return isinstance(instrument, str) and self.get(instrument) is not None

    def get(self, instrument: str) -> Decimal | None:
        """Look up a price trying the symbolic and numeric-coded forms.

        A mapped coded id ("@1", "1") resolves through its symbol first.
        """
        if not instrument:
            return None
        coded = coded_instrument_key(instrument)
        candidates = []
        if coded is not None and coded in COIN_INDEX_MAP:
            candidates.append(COIN_INDEX_MAP[coded])
        candidates.append(instrument)
        if coded is not None and coded != instrument:
            candidates.append(coded)
        for key in candidates:
            price = self.prices.get(key)
            if price is not None and price > 0:
                return price
        return None


class MidPriceSource(Protocol):
    """Anything that can return the exchange's current mid prices."""

    async def get_all_mids(self) -> dict[str, str]: ...


class PriceResolver:
    """Builds a PriceTable from live mids with static fallback values.

    Example:
        ```python
        resolver = PriceResolver(client)
        prices = await resolver.resolve()
        prices.get("BTC")
        ```
    """

    def __init__(
        self,
        source: MidPriceSource,
        *,
        static_prices: Mapping[str, Decimal] | None = None,
    ) -> None:
        self._source = source
        self._static = dict(STATIC_PRICES if static_prices is None else static_prices)

    async def resolve(self) -> PriceTable:
        """Return the best available price table. Never raises."""
        static = _with_coded_aliases(self._static)
        try:
            mids = await self._source.get_all_mids()
        except Exception as e:
            logger.warning("Failed to fetch live mid prices, using fallback table: %s", e)
            return PriceTable(prices=static, source="fallback")

        if not isinstance(mids, Mapping):
            logger.warning("Unexpected mid price payload %r, using fallback table", type(mids))
            return PriceTable(prices=static, source="fallback")

        live: dict[str, Decimal] = {}
        dropped = 0
        for instrument, raw_price in mids.items():
            price = parse_decimal(raw_price)
            if price is None or price <= 0:
                dropped += 1
                continue
            live[str(instrument)] = price
        if dropped:
            logger.debug("Dropped %d unusable live prices", dropped)

        # Static prices only fill gaps. Mapped coded keys then follow their symbol.
        merged = dict(live)
        for code, symbol in COIN_INDEX_MAP.items():
            if code in live and symbol not in live:
                merged[symbol] = live[code]
        filled = 0
        for instrument, price in self._static.items():
            if instrument not in merged:
                merged[instrument] = price
                filled += 1
        merged = _with_coded_aliases(merged)

        logger.debug(
            "Resolved %d prices (%d live, %d from fallback table)",
            len(merged),
            len(live),
            filled,
        )
        return PriceTable(prices=merged, source="live")
