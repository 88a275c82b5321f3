"""Operator diagnostics: startup notification, Telegram test and API probe."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from hyperliquid_order_tracker.alerter.channels.telegram import TelegramChannel, TelegramError
from hyperliquid_order_tracker.ingestor.hyperliquid_client import (
    HyperliquidClient,
    HyperliquidClientError,
)

logger = logging.getLogger(__name__)

STARTUP_MESSAGE = "🤖 Hyperliquid order tracker started successfully!"
TEST_MESSAGE = "🧪 TEST MESSAGE 🧪\n\nHyperliquid order tracker is running and can send alerts."

TELEGRAM_FAILURE_HINTS = (
    "Bot token is invalid",
    "Chat ID is incorrect",
    "User has not started a chat with the bot",
    "Bot has been blocked by the user",
)


async def send_startup_message(channel: TelegramChannel) -> bool:
    """Announce that the tracker is running. Failures are logged only."""
    try:
        await channel.send_text(STARTUP_MESSAGE)
    except TelegramError as e:
        logger.error("Error sending Telegram startup message: %s", e)
        return False
    logger.info("Startup message sent")
    return True


async def check_telegram_connection(channel: TelegramChannel) -> bool:
    """Send a test message and log the outcome.

    On failure, the common causes are logged when the Bot API itself
    rejected the request (as opposed to a network failure).
    """
    logger.info("--- TESTING TELEGRAM CONNECTION ---")
    logger.info("Attempting to send test message...")
    try:
        result = await channel.send_text(TEST_MESSAGE)
    except TelegramError as e:
        logger.error("Failed to send test message: %s", e)
        if e.status is not None:
            logger.info("Telegram API error. Common issues:")
            for i, hint in enumerate(TELEGRAM_FAILURE_HINTS, start=1):
                logger.info("%d. %s", i, hint)
        return False
    finally:
        logger.info("--- END TELEGRAM TEST ---")

    logger.info("Test message sent successfully! Message ID: %s", result.get("message_id"))
    return True


@dataclass
class ApiDebugReport:
    """What the API probe observed."""

    mids_count: int = 0
    mids_sample_keys: list[str] = field(default_factory=list)
    universe_size: int | None = None
    coin_mappings: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


async def run_api_debug(client: HyperliquidClient) -> ApiDebugReport:
    """Query allMids and meta and log the response shapes."""
    report = ApiDebugReport()
    logger.info("--- API DEBUG MODE ---")

    logger.info("Testing allMids endpoint...")
    try:
        mids = await client.get_all_mids()
    except HyperliquidClientError as e:
        logger.error("allMids endpoint error: %s", e)
        report.errors.append(f"allMids: {e}")
    else:
        report.mids_count = len(mids)
        report.mids_sample_keys = list(mids)[:5]
        logger.info("allMids returned %d prices", report.mids_count)
        logger.info("First 5 keys: %s", report.mids_sample_keys)
        logger.info(
            "Sample values: %s",
            ", ".join(f"{k}: {v}" for k, v in list(mids.items())[:3]),
        )

    logger.info("Testing meta endpoint...")
    try:
        meta = await client.get_meta()
    except HyperliquidClientError as e:
        logger.error("meta endpoint error: %s", e)
        report.errors.append(f"meta: {e}")
    else:
        universe = meta.get("universe")
        if isinstance(universe, list):
            report.universe_size = len(universe)
            report.coin_mappings = [
                {"index": i, "name": item.get("name")}
                for i, item in enumerate(universe)
                if isinstance(item, dict)
            ]
            logger.info("Universe contains: %d items", report.universe_size)
            logger.info("Coin mappings: %s", json.dumps(report.coin_mappings)[:300])
        else:
            logger.info("meta response has no universe list (keys: %s)", sorted(meta))

    logger.info("--- END DEBUG ---")
    return report
