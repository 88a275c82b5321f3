"""Hyperliquid Order Tracker - Large-order alerts for a monitored account."""

__version__ = "0.1.0"
