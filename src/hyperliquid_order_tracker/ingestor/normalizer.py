"""Normalization of raw open-order payloads into canonical Order records.

Order payloads differ between API versions and test fixtures. Every
"which field name wins" decision lives here, as an ordered tuple of
candidate keys per logical attribute. Normalization never raises: a field
that cannot be recovered falls back to a neutral value and is logged.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from hyperliquid_order_tracker.ingestor.models import Order, OrderSide, SideSource

logger = logging.getLogger(__name__)

SIZE_FIELDS = ("sz", "size", "quantity", "amount")
LIMIT_PRICE_FIELDS = ("limitPx", "px", "price")
COIN_FIELDS = ("coin", "asset", "symbol")
ID_FIELDS = ("oid", "orderId", "id")
TIMESTAMP_FIELDS = ("timestamp", "time")
SIDE_FIELDS = ("side",)
BUY_FLAG_FIELDS = ("isBuy", "is_buy")

BUY_SIDE_VALUES = frozenset({"B", "BUY", "BID", "LONG"})
SELL_SIDE_VALUES = frozenset({"A", "S", "SELL", "ASK", "SHORT"})

_ZERO = Decimal("0")


def _first_present(data: Mapping[str, Any], fields: tuple[str, ...]) -> tuple[str, Any] | None:
    for name in fields:
        value = data.get(name)
        if value is not None and value != "":
            return name, value
    return None


def parse_decimal(value: Any) -> Decimal | None:
    """Parse a numeric value into a finite Decimal, or None."""
    if isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def _parse_timestamp_ms(value: Any) -> int | None:
    parsed = parse_decimal(value)
    if parsed is None or parsed <= 0:
        return None
    ts = int(parsed)
    if ts < 1_000_000_000_000:
        ts *= 1000
    return ts


def _normalize_side(data: Mapping[str, Any], order_ref: str) -> tuple[OrderSide, SideSource]:
    found = _first_present(data, SIDE_FIELDS)
    if found is not None:
        side_text = str(found[1]).strip().upper()
        if side_text in BUY_SIDE_VALUES:
            return "BUY", "explicit"
        if side_text in SELL_SIDE_VALUES:
            return "SELL", "explicit"
        logger.warning("Order %s has unrecognized side %r", order_ref, found[1])

    for name in BUY_FLAG_FIELDS:
        flag = data.get(name)
        if isinstance(flag, bool):
            return ("BUY" if flag else "SELL"), "flag"

    logger.warning(
        "Order %s carries no side information; defaulting to SELL (unconfirmed)",
        order_ref,
    )
    return "SELL", "default"


def normalize_order(raw: Any) -> Order:
    """Map a heterogeneous order payload into the canonical Order shape.

    Args:
        raw: A single order as returned by the exchange or a fixture.

    Returns:
        Order with unrecoverable fields set to neutral values.
    """
    if not isinstance(raw, Mapping):
        logger.warning("Order payload is not a mapping: %r", raw)
        return Order(coin="", side="SELL", size=_ZERO, side_source="default")

    found_id = _first_present(raw, ID_FIELDS)
    raw_id = str(found_id[1]) if found_id else None

    found_coin = _first_present(raw, COIN_FIELDS)
    coin = str(found_coin[1]).strip() if found_coin else ""
    order_ref = raw_id or coin or "<unidentified>"
    if not coin:
        logger.warning("Order %s has no instrument field", order_ref)

    size = _ZERO
    size_text = ""
    found_size = _first_present(raw, SIZE_FIELDS)
    if found_size is None:
        logger.warning("Order %s has no size field (tried %s); using 0", order_ref, SIZE_FIELDS)
    else:
        size_text = str(found_size[1])
        parsed_size = parse_decimal(found_size[1])
        if parsed_size is None:
            logger.warning(
                "Order %s has non-numeric %s=%r; using 0", order_ref, found_size[0], found_size[1]
            )
        else:
            size = parsed_size

    limit_price = None
    found_price = _first_present(raw, LIMIT_PRICE_FIELDS)
    if found_price is not None:
        parsed_price = parse_decimal(found_price[1])
        if parsed_price is None or parsed_price <= 0:
            logger.debug(
                "Order %s has unusable %s=%r; ignoring limit price",
                order_ref,
                found_price[0],
                found_price[1],
            )
        else:
            limit_price = parsed_price

    found_ts = _first_present(raw, TIMESTAMP_FIELDS)
    timestamp_hint = _parse_timestamp_ms(found_ts[1]) if found_ts else None

    side, side_source = _normalize_side(raw, order_ref)

    return Order(
        coin=coin,
        side=side,
        size=size,
        size_text=size_text,
        limit_price=limit_price,
        raw_id=raw_id,
        timestamp_hint=timestamp_hint,
        side_source=side_source,
    )
