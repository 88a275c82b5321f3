"""Pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from hyperliquid_order_tracker.config import (
    HyperliquidSettings,
    LedgerSettings,
    Settings,
    TelegramSettings,
    TrackerSettings,
)

# 2026-01-15T12:00:00Z
NOW_MS = 1_768_478_400_000


@pytest.fixture
def target_address() -> str:
    """Sample monitored account address."""
    return "0xf3f496c9486be5924a93d67e98298733bb47057c"


@pytest.fixture
def now_ms() -> int:
    """Fixed wall-clock time in epoch milliseconds."""
    return NOW_MS


@pytest.fixture
def settings(tmp_path: Path, target_address: str) -> Settings:
    """Settings isolated from the process environment and any .env file."""
    return Settings(
        _env_file=None,
        hyperliquid=HyperliquidSettings(_env_file=None),
        tracker=TrackerSettings(
            _env_file=None,
            TARGET_ADDRESS=target_address,
            LARGE_ORDER_THRESHOLD=50_000,
            CHECK_INTERVAL="*/30 * * * * *",
        ),
        ledger=LedgerSettings(
            _env_file=None,
            LEDGER_BACKEND="file",
            SEEN_ORDERS_PATH=tmp_path / "seenOrders.json",
        ),
        telegram=TelegramSettings(
            _env_file=None,
            TELEGRAM_BOT_TOKEN=None,
            TELEGRAM_CHAT_ID=None,
        ),
        LOG_LEVEL="INFO",
        DRY_RUN=False,
        SEND_STARTUP_MESSAGE=False,
        DEBUG_MODE=False,
        TEST_TELEGRAM=False,
    )


@pytest.fixture
def btc_order() -> dict[str, object]:
    """Raw BTC buy order worth 60,000 USD at its limit price."""
    return {
        "coin": "BTC",
        "side": "B",
        "sz": "1",
        "limitPx": "60000",
        "oid": 101,
        "timestamp": NOW_MS - 60_000,
    }


@pytest.fixture
def mids() -> dict[str, str]:
    """Live mid prices as returned by allMids."""
    return {"BTC": "80000", "ETH": "1950", "@3": "145"}
