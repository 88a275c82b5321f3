"""Alerter module - formatting and delivery of large-order alerts."""

from hyperliquid_order_tracker.alerter.channels.telegram import TelegramChannel, TelegramError
from hyperliquid_order_tracker.alerter.dispatcher import AlertChannel, AlertDispatcher
from hyperliquid_order_tracker.alerter.formatter import AlertFormatter
from hyperliquid_order_tracker.alerter.models import (
    DispatchResult,
    FormattedAlert,
    LargeOrderAlert,
)

__all__ = [
    "AlertChannel",
    "AlertDispatcher",
    "AlertFormatter",
    "DispatchResult",
    "FormattedAlert",
    "LargeOrderAlert",
    "TelegramChannel",
    "TelegramError",
]
