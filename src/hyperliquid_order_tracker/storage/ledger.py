"""Seen-order ledger: durable at-most-once alert bookkeeping.

The ledger records every order key that has already produced an alert.
Once a key is present no further alert is sent for it until the record
ages out of the retention window. Every mutation that changes contents
rewrites the full durable snapshot.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

RETENTION_MS = 24 * 60 * 60 * 1000


class LedgerCorruptError(Exception):
    """Raised internally when a durable snapshot cannot be parsed."""


def current_time_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SeenOrderRecord:
    """One alerted order."""

    order_key: str
    first_seen_at_ms: int
    value_usd: Decimal

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the on-disk field names."""
        return {"timestamp": self.first_seen_at_ms, "value": str(self.value_usd)}

    @classmethod
    def from_dict(cls, order_key: str, data: Any) -> SeenOrderRecord:
        """Parse a stored record; raises ValueError/TypeError/KeyError if malformed."""
        if not isinstance(data, dict):
            raise TypeError(f"record for {order_key!r} is not an object")
        first_seen = data["timestamp"]
        if isinstance(first_seen, bool) or not isinstance(first_seen, (int, float)):
            raise TypeError(f"record for {order_key!r} has non-numeric timestamp")
        value = Decimal(str(data.get("value", "0")))
        if not value.is_finite():
            raise ValueError(f"record for {order_key!r} has non-finite value")
        return cls(order_key=order_key, first_seen_at_ms=int(first_seen), value_usd=value)


class SeenOrderLedger(Protocol):
    """Deduplicating store of orders that have already been alerted."""

    async def load(self) -> SeenOrderLedger:
        """Read durable storage; quarantine it and start empty if corrupt."""
        ...

    async def is_seen(self, order_key: str) -> bool: ...

    async def mark_seen(self, order_key: str, value_usd: Decimal, now_ms: int) -> None:
        """Insert or overwrite a record and persist the ledger."""
        ...

    async def expire_older_than(self, now_ms: int, retention_ms: int = RETENTION_MS) -> int:
        """Drop records older than the cutoff; return how many were removed."""
        ...


def _expired_keys(records: dict[str, SeenOrderRecord], now_ms: int, retention_ms: int) -> list[str]:
    cutoff = now_ms - retention_ms
    return [key for key, rec in records.items() if rec.first_seen_at_ms < cutoff]


class InMemorySeenOrderLedger:
    """Ledger held only in memory. Used by tests and dry runs."""

    def __init__(self, records: dict[str, SeenOrderRecord] | None = None) -> None:
        self._records: dict[str, SeenOrderRecord] = dict(records or {})

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> dict[str, SeenOrderRecord]:
        return dict(self._records)

    async def load(self) -> InMemorySeenOrderLedger:
        return self

    async def is_seen(self, order_key: str) -> bool:
        return order_key in self._records

    async def mark_seen(self, order_key: str, value_usd: Decimal, now_ms: int) -> None:
        self._records[order_key] = SeenOrderRecord(order_key, now_ms, value_usd)

    async def expire_older_than(self, now_ms: int, retention_ms: int = RETENTION_MS) -> int:
        expired = _expired_keys(self._records, now_ms, retention_ms)
        for key in expired:
            del self._records[key]
        return len(expired)


class JsonFileSeenOrderLedger:
    """Ledger mirrored to a single human-readable JSON file.

    The file maps order keys to ``{"timestamp": <ms>, "value": "<usd>"}``.
    It is rewritten wholesale through a temporary file and an atomic
    rename, so a crash never leaves a half-written snapshot. A file that
    cannot be parsed at load time is renamed to ``<name>.backup-<ms>``
    and the ledger starts empty.

    Example:
        ```python
        ledger = await JsonFileSeenOrderLedger(Path("seenOrders.json")).load()
        if not await ledger.is_seen(key):
            await ledger.mark_seen(key, value, current_time_ms())
        ```
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._records: dict[str, SeenOrderRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def records(self) -> dict[str, SeenOrderRecord]:
        return dict(self._records)

    async def load(self) -> JsonFileSeenOrderLedger:
        self._records = {}
        if not self._path.exists():
            logger.info("No seen-orders file at %s; starting empty", self._path)
            return self

        try:
            self._records = self._read_snapshot()
        except LedgerCorruptError as e:
            logger.error("Seen-orders file %s is corrupt: %s", self._path, e)
            self._quarantine()
            self._records = {}
        except OSError as e:
            logger.error("Failed to read seen-orders file %s: %s", self._path, e)
            self._records = {}
        else:
            logger.info("Loaded %d previously seen orders from %s", len(self._records), self._path)
        return self

    def _read_snapshot(self) -> dict[str, SeenOrderRecord]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise LedgerCorruptError(str(e)) from e
        if not isinstance(raw, dict):
            raise LedgerCorruptError(f"top-level value is {type(raw).__name__}, expected object")

        records: dict[str, SeenOrderRecord] = {}
        skipped = 0
        for key, data in raw.items():
            try:
                records[key] = SeenOrderRecord.from_dict(key, data)
            except (KeyError, TypeError, ValueError, ArithmeticError) as e:
                skipped += 1
                logger.warning("Skipping malformed seen-order record %r: %s", key, e)
        if skipped:
            logger.warning("Skipped %d malformed seen-order records", skipped)
        return records

    def _quarantine(self) -> None:
        backup = self._path.with_name(f"{self._path.name}.backup-{current_time_ms()}")
        try:
            os.replace(self._path, backup)
            logger.warning("Moved corrupt seen-orders file to %s", backup)
        except OSError as e:
            logger.error("Failed to quarantine corrupt seen-orders file %s: %s", self._path, e)

    def _persist(self) -> None:
        payload = {key: rec.to_dict() for key, rec in self._records.items()}
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        try:
            if not self._path.parent.exists():
                self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            logger.error("Failed to save seen orders to %s: %s", self._path, e)

    async def is_seen(self, order_key: str) -> bool:
        return order_key in self._records

    async def mark_seen(self, order_key: str, value_usd: Decimal, now_ms: int) -> None:
        self._records[order_key] = SeenOrderRecord(order_key, now_ms, value_usd)
        self._persist()

    async def expire_older_than(self, now_ms: int, retention_ms: int = RETENTION_MS) -> int:
        expired = _expired_keys(self._records, now_ms, retention_ms)
        for key in expired:
            del self._records[key]
        if expired:
            logger.info("Cleaned up %d old orders", len(expired))
            self._persist()
        return len(expired)
