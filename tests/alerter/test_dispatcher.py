"""Tests for alert dispatch."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock

import pytest

from hyperliquid_order_tracker.alerter.dispatcher import AlertDispatcher
from hyperliquid_order_tracker.alerter.models import FormattedAlert


@pytest.fixture
def formatted_alert() -> FormattedAlert:
    return FormattedAlert(
        title="🚨 LARGE ORDER ALERT 🚨",
        body="BUY 1 BTC ($60,000)",
        telegram_markdown="🚨 *LARGE ORDER ALERT* 🚨",
        plain_text="LARGE ORDER ALERT\nCoin: BTC",
        links={},
    )


def make_channel(name: str, result: bool | Exception = True) -> AsyncMock:
    channel = AsyncMock()
    channel.name = name
    if isinstance(result, Exception):
        channel.send.side_effect = result
    else:
        channel.send.return_value = result
    return channel


class TestAlertDispatcher:
    """Tests for AlertDispatcher."""

    @pytest.mark.asyncio
    async def test_all_channels_succeed(self, formatted_alert: FormattedAlert) -> None:
        channels = [make_channel("telegram"), make_channel("other")]
        result = await AlertDispatcher(channels).dispatch(formatted_alert)

        assert result.all_succeeded
        assert result.success_count == 2
        for channel in channels:
            channel.send.assert_awaited_once_with(formatted_alert)

    @pytest.mark.asyncio
    async def test_failures_are_counted_not_raised(self, formatted_alert: FormattedAlert) -> None:
        channels = [
            make_channel("ok"),
            make_channel("refused", result=False),
            make_channel("broken", result=RuntimeError("boom")),
        ]

        result = await AlertDispatcher(channels).dispatch(formatted_alert)

        assert result.success_count == 1
        assert result.failure_count == 2
        assert result.failed_channels == ("refused", "broken")
        assert result.delivered
        assert not result.all_succeeded

    @pytest.mark.asyncio
    async def test_no_channels_logs_alert(
        self, formatted_alert: FormattedAlert, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING):
            result = await AlertDispatcher([]).dispatch(formatted_alert)

        assert not result.delivered
        assert "Coin: BTC" in caplog.text

