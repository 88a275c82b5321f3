"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

from hyperliquid_order_tracker.detector.valuation import Valuation
from hyperliquid_order_tracker.ingestor.models import Order


@dataclass(frozen=True)
class LargeOrderAlert:
    """A newly detected order at or above the alert threshold."""

    address: str
    order: Order
    valuation: Valuation
    order_key: str
    threshold_usd: Decimal
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def value_usd(self) -> Decimal:
        return self.valuation.value_usd


@dataclass(frozen=True)
class FormattedAlert:
    """An alert rendered for every supported channel."""

    title: str
    body: str
    telegram_markdown: str
    plain_text: str
    links: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of sending one alert to all configured channels."""

    success_count: int = 0
    failure_count: int = 0
    failed_channels: tuple[str, ...] = ()

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0 and self.success_count > 0

    @property
    def delivered(self) -> bool:
        return self.success_count > 0
