"""Seen-order ledger backed by a Redis hash.

Each field of the hash is an order key whose value is the same JSON
record the file ledger writes. Redis is the durable copy, so every
mutation is applied there directly; there is no local snapshot to flush.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal

from redis.asyncio import Redis
from redis.exceptions import ResponseError

from hyperliquid_order_tracker.storage.ledger import (
    RETENTION_MS,
    SeenOrderRecord,
    current_time_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_KEY = "hyperliquid:seen_orders"


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class RedisSeenOrderLedger:
    """Ledger stored in one Redis hash.

    Unparseable entries found at load time are moved into a timestamped
    quarantine hash (``<key>:quarantine-<ms>``) rather than deleted. If the
    key holds a non-hash value, the whole key is renamed aside.

    Example:
        ```python
        redis = Redis.from_url("redis://localhost:6379")
        ledger = await RedisSeenOrderLedger(redis).load()
        ```
    """

    def __init__(self, redis: Redis, *, key: str = DEFAULT_LEDGER_KEY) -> None:
        self._redis = redis
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    async def load(self) -> RedisSeenOrderLedger:
        try:
            raw = await self._redis.hgetall(self._key)
        except ResponseError as e:
            backup = f"{self._key}:backup-{current_time_ms()}"
            logger.error("Seen-order key %s is not a hash (%s); renaming to %s", self._key, e, backup)
            await self._redis.rename(self._key, backup)
            return self

        quarantine: dict[str, str] = {}
        loaded = 0
        for field_raw, value_raw in raw.items():
            field = _decode(field_raw)
            value = _decode(value_raw)
            try:
                SeenOrderRecord.from_dict(field, json.loads(value))
                loaded += 1
            except (json.JSONDecodeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
                logger.warning("Quarantining malformed seen-order record %r: %s", field, e)
                quarantine[field] = value

        if quarantine:
            quarantine_key = f"{self._key}:quarantine-{current_time_ms()}"
            await self._redis.hset(quarantine_key, mapping=quarantine)
            await self._redis.hdel(self._key, *quarantine.keys())
            logger.warning(
                "Moved %d malformed seen-order records to %s", len(quarantine), quarantine_key
            )

        logger.info("Loaded %d previously seen orders from redis key %s", loaded, self._key)
        return self

    async def is_seen(self, order_key: str) -> bool:
        return bool(await self._redis.hexists(self._key, order_key))

    async def mark_seen(self, order_key: str, value_usd: Decimal, now_ms: int) -> None:
        record = SeenOrderRecord(order_key, now_ms, value_usd)
        await self._redis.hset(self._key, order_key, json.dumps(record.to_dict()))

    async def expire_older_than(self, now_ms: int, retention_ms: int = RETENTION_MS) -> int:
        cutoff = now_ms - retention_ms
        raw = await self._redis.hgetall(self._key)
        expired: list[str] = []
        for field_raw, value_raw in raw.items():
            field = _decode(field_raw)
            try:
                record = SeenOrderRecord.from_dict(field, json.loads(_decode(value_raw)))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError, ArithmeticError):
                logger.warning("Skipping malformed seen-order record %r during sweep", field)
                continue
            if record.first_seen_at_ms < cutoff:
                expired.append(field)

        if expired:
            await self._redis.hdel(self._key, *expired)
            logger.info("Cleaned up %d old orders", len(expired))
        return len(expired)
