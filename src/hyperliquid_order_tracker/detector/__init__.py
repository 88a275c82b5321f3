"""Detection layer - Order valuation for large-order alerts."""

from hyperliquid_order_tracker.detector.valuation import Valuation, value_order, value_usd

__all__ = [
    "Valuation",
    "value_order",
    "value_usd",
]
