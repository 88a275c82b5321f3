"""Alert delivery channels."""

from hyperliquid_order_tracker.alerter.channels.telegram import TelegramChannel, TelegramError

__all__ = ["TelegramChannel", "TelegramError"]
