"""Data ingestion layer - Hyperliquid open orders and mid prices."""

from hyperliquid_order_tracker.ingestor.hyperliquid_client import (
    HyperliquidClient,
    HyperliquidClientError,
    HyperliquidClientTransientError,
    RetryError,
)
from hyperliquid_order_tracker.ingestor.models import Order
from hyperliquid_order_tracker.ingestor.normalizer import normalize_order
from hyperliquid_order_tracker.ingestor.prices import PriceResolver, PriceTable

__all__ = [
    "HyperliquidClient",
    "HyperliquidClientError",
    "HyperliquidClientTransientError",
    "Order",
    "PriceResolver",
    "PriceTable",
    "RetryError",
    "normalize_order",
]
