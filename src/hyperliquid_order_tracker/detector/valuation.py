"""USD valuation of open orders.

Sources are consulted in a fixed precedence, first match wins:

1. The order's own limit price (with a positive size).
2. The resolved PriceTable (symbolic or numeric-coded instrument key).
3. A small hardcoded last-resort table keyed by the raw instrument id.
4. Zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

from hyperliquid_order_tracker.ingestor.models import Order
from hyperliquid_order_tracker.ingestor.prices import PriceTable

logger = logging.getLogger(__name__)

LAST_RESORT_PRICES: dict[str, Decimal] = {
    "ETH": Decimal("1950"),
    "BTC": Decimal("80000"),
    "SOL": Decimal("145"),
    "1": Decimal("80000"),
    "2": Decimal("1950"),
    "3": Decimal("145"),
}

ValuationSource = Literal["limit_price", "market", "fallback", "none"]

_ZERO = Decimal("0")


@dataclass(frozen=True)
class Valuation:
    """Result of valuing an order.

    Attributes:
        value_usd: Notional value (price x size), never negative.
        price_usd: Unit price that was used, if any.
        source: Which precedence rule produced the price.
    """

    value_usd: Decimal
    price_usd: Decimal | None
    source: ValuationSource


def _usable(value: Decimal | None) -> Decimal:
    if value is None or not value.is_finite() or value <= 0:
        return _ZERO
    return value


def value_order(order: Order, prices: PriceTable) -> Valuation:
    """Compute the USD notional of an order.

    Zero, negative or non-numeric components are treated as zero rather
    than raising.
    """
    size = _usable(order.size)
    limit_price = _usable(order.limit_price)

    if limit_price > 0 and size > 0:
        value = limit_price * size
        logger.debug(
            "Valued %s using order price: %s * %s = %s", order.coin, limit_price, size, value
        )
        return Valuation(value_usd=value, price_usd=limit_price, source="limit_price")

    market_price = prices.get(order.coin)
    if market_price is not None:
        value = market_price * size
        logger.debug(
            "Valued %s using market price: %s * %s = %s", order.coin, market_price, size, value
        )
        return Valuation(value_usd=value, price_usd=market_price, source="market")

    fallback_price = LAST_RESORT_PRICES.get(order.coin)
    if fallback_price is not None:
        value = fallback_price * size
        logger.debug(
            "Valued %s using last-resort price: %s * %s = %s",
            order.coin,
            fallback_price,
            size,
            value,
        )
        return Valuation(value_usd=value, price_usd=fallback_price, source="fallback")

    logger.debug("No price available for %s; valuing at 0", order.coin or "<unknown>")
    return Valuation(value_usd=_ZERO, price_usd=None, source="none")


def value_usd(order: Order, prices: PriceTable) -> Decimal:
    """Return only the USD notional of an order."""
    return value_order(order, prices).value_usd
