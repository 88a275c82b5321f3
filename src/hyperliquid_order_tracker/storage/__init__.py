"""Storage layer - Durable seen-order ledgers."""

from hyperliquid_order_tracker.storage.ledger import (
    RETENTION_MS,
    InMemorySeenOrderLedger,
    JsonFileSeenOrderLedger,
    SeenOrderLedger,
    SeenOrderRecord,
)
from hyperliquid_order_tracker.storage.redis_ledger import RedisSeenOrderLedger

__all__ = [
    "RETENTION_MS",
    "InMemorySeenOrderLedger",
    "JsonFileSeenOrderLedger",
    "RedisSeenOrderLedger",
    "SeenOrderLedger",
    "SeenOrderRecord",
]
