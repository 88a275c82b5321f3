"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import SecretStr

from hyperliquid_order_tracker.config import Settings, TelegramSettings
from hyperliquid_order_tracker.ingestor.hyperliquid_client import (
    HyperliquidClient,
    HyperliquidClientError,
    RetryError,
)
from hyperliquid_order_tracker.ingestor.normalizer import normalize_order
from hyperliquid_order_tracker.pipeline import CycleResult, Pipeline, PipelineState
from hyperliquid_order_tracker.storage.ledger import (
    RETENTION_MS,
    InMemorySeenOrderLedger,
    JsonFileSeenOrderLedger,
    SeenOrderRecord,
)

DAY_MS = 24 * 60 * 60 * 1000


@pytest.fixture
def mock_client(mids: dict[str, str]) -> AsyncMock:
    client = AsyncMock(spec=HyperliquidClient)
    client.get_open_orders.return_value = []
    client.get_all_mids.return_value = mids
    return client


@pytest.fixture
def ledger() -> InMemorySeenOrderLedger:
    return InMemorySeenOrderLedger()


@pytest.fixture
def channel() -> AsyncMock:
    channel = AsyncMock()
    channel.name = "telegram"
    channel.send.return_value = True
    return channel


@pytest.fixture
def pipeline(
    settings: Settings,
    mock_client: AsyncMock,
    ledger: InMemorySeenOrderLedger,
    channel: AsyncMock,
    now_ms: int,
) -> Pipeline:
    return Pipeline(
        settings,
        client=mock_client,
        ledger=ledger,
        channels=[channel],
        clock=lambda: now_ms,
    )


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, pipeline: Pipeline) -> None:
        """Pipeline should start in stopped state."""
        assert pipeline.state == PipelineState.STOPPED
        assert not pipeline.is_running

    def test_initial_stats(self, pipeline: Pipeline) -> None:
        """Pipeline should have zero stats initially."""
        stats = pipeline.stats
        assert stats.started_at is None
        assert stats.cycles_run == 0
        assert stats.alerts_sent == 0
        assert stats.errors == 0


class TestPipelineInitialization:
    """Tests for pipeline initialization."""

    def test_dry_run_from_settings(self, settings: Settings) -> None:
        """Pipeline should use dry_run from settings by default."""
        assert Pipeline(settings)._dry_run is False
        assert Pipeline(settings.model_copy(update={"dry_run": True}))._dry_run is True

    def test_dry_run_override(self, settings: Settings) -> None:
        """Pipeline should allow overriding dry_run."""
        assert Pipeline(settings, dry_run=True)._dry_run is True

    def test_uses_get_settings_when_none_provided(self, settings: Settings) -> None:
        """Pipeline should call get_settings if no settings provided."""
        with patch("hyperliquid_order_tracker.pipeline.get_settings") as mock_get:
            mock_get.return_value = settings
            Pipeline()
            mock_get.assert_called_once()


class TestBuildComponents:
    """Tests for component construction from settings."""

    def test_no_channels_when_telegram_unconfigured(self, settings: Settings) -> None:
        """No channels are built without Telegram credentials."""
        assert Pipeline(settings)._build_alert_channels() == []

    def test_telegram_channel_when_enabled(self, settings: Settings) -> None:
        """Telegram credentials produce a Telegram channel."""
        settings = settings.model_copy(
            update={
                "telegram": TelegramSettings(
                    _env_file=None,
                    TELEGRAM_BOT_TOKEN=SecretStr("123:abc"),
                    TELEGRAM_CHAT_ID="42",
                )
            }
        )
        channels = Pipeline(settings)._build_alert_channels()

        assert len(channels) == 1
        assert channels[0].name == "telegram"

    def test_file_ledger_by_default(self, settings: Settings) -> None:
        """The file ledger is used unless Redis is configured."""
        ledger = Pipeline(settings)._create_ledger()

        assert isinstance(ledger, JsonFileSeenOrderLedger)
        assert ledger.path == settings.ledger.path


class TestRunCycle:
    """Tests for one polling cycle."""

    @pytest.mark.asyncio
    async def test_large_limit_order_alerts_and_is_marked_seen(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
        ledger: InMemorySeenOrderLedger,
        channel: AsyncMock,
        btc_order: dict[str, Any],
        target_address: str,
    ) -> None:
        """An order above the threshold alerts and is marked seen."""
        mock_client.get_open_orders.return_value = [btc_order]

        result = await pipeline.run_cycle()

        mock_client.get_open_orders.assert_awaited_once_with(target_address)
        assert result.error is None
        assert result.alerts_triggered == 1
        assert result.alerts_delivered == 1
        alert = result.alerts[0]
        assert alert.value_usd == Decimal("60000")
        assert alert.valuation.source == "limit_price"
        assert await ledger.is_seen(alert.order_key)

        channel.send.assert_awaited_once()
        formatted = channel.send.await_args.args[0]
        assert "Total Value: $60,000" in formatted.plain_text
        assert pipeline.stats.alerts_sent == 1

    @pytest.mark.asyncio
    async def test_same_order_next_cycle_does_not_alert_again(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
        channel: AsyncMock,
        btc_order: dict[str, Any],
    ) -> None:
        """An already seen order does not alert on the next cycle."""
        mock_client.get_open_orders.return_value = [btc_order]

        await pipeline.run_cycle()
        second = await pipeline.run_cycle()

        assert second.alerts_triggered == 0
        assert channel.send.await_count == 1

    @pytest.mark.asyncio
    async def test_order_without_timestamp_alerts_once(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
        channel: AsyncMock,
    ) -> None:
        """An order without a timestamp alerts only once."""
        mock_client.get_open_orders.return_value = [
            {"coin": "ETH", "side": "A", "sz": "40", "oid": 7}
        ]

        first = await pipeline.run_cycle()
        second = await pipeline.run_cycle()

        assert first.alerts_triggered == 1
        assert second.alerts_triggered == 0
        assert channel.send.await_count == 1

    @pytest.mark.asyncio
    async def test_untimed_order_not_realerted_across_day_boundary(
        self,
        settings: Settings,
        mock_client: AsyncMock,
        ledger: InMemorySeenOrderLedger,
        channel: AsyncMock,
    ) -> None:
        """An untimed order keeps its key when polls straddle midnight UTC."""
        clock_ms = [3 * DAY_MS - 15_000]
        pipeline = Pipeline(
            settings,
            client=mock_client,
            ledger=ledger,
            channels=[channel],
            clock=lambda: clock_ms[0],
        )
        mock_client.get_open_orders.return_value = [
            {"oid": "A1", "coin": "BTC", "side": "B", "sz": "1", "limitPx": "60000"}
        ]

        first = await pipeline.run_cycle()
        clock_ms[0] = 3 * DAY_MS + 15_000
        second = await pipeline.run_cycle()

        assert first.alerts_triggered == 1
        assert second.alerts_triggered == 0
        assert channel.send.await_count == 1

    @pytest.mark.asyncio
    async def test_small_market_order_does_not_alert(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
        ledger: InMemorySeenOrderLedger,
        channel: AsyncMock,
    ) -> None:
        """An order below the threshold neither alerts nor is recorded."""
        mock_client.get_open_orders.return_value = [{"coin": "ETH", "side": "A", "sz": "2"}]

        result = await pipeline.run_cycle()

        assert result.orders_evaluated == 1
        assert result.alerts_triggered == 0
        assert len(ledger) == 0
        channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_numeric_size_is_logged_and_skipped(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
        channel: AsyncMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A non-numeric size is logged and valued at zero."""
        mock_client.get_open_orders.return_value = [
            {"coin": "BTC", "side": "B", "sz": "lots", "limitPx": "60000", "oid": 3}
        ]

        with caplog.at_level(logging.WARNING):
            result = await pipeline.run_cycle()

        assert result.error is None
        assert result.alerts_triggered == 0
        assert "non-numeric" in caplog.text
        channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_failure_is_not_rolled_back(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
        ledger: InMemorySeenOrderLedger,
        channel: AsyncMock,
        btc_order: dict[str, Any],
    ) -> None:
        """A failed send leaves the order marked seen."""
        channel.send.return_value = False
        mock_client.get_open_orders.return_value = [btc_order]

        first = await pipeline.run_cycle()
        second = await pipeline.run_cycle()

        assert first.alerts_triggered == 1
        assert first.alerts_delivered == 0
        assert await ledger.is_seen(first.alerts[0].order_key)
        assert second.alerts_triggered == 0
        assert channel.send.await_count == 1
        assert pipeline.stats.alert_failures == 1

    @pytest.mark.asyncio
    async def test_fetch_error_ends_cycle_cleanly(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
    ) -> None:
        """A failed order fetch ends the cycle without fetching prices."""
        mock_client.get_open_orders.side_effect = RetryError("all attempts failed")

        result = await pipeline.run_cycle()

        assert result.error == "all attempts failed"
        mock_client.get_all_mids.assert_not_awaited()
        assert pipeline.stats.errors == 1

    @pytest.mark.asyncio
    async def test_malformed_response_is_a_failed_fetch(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
    ) -> None:
        """A malformed response is treated as a failed fetch."""
        mock_client.get_open_orders.side_effect = HyperliquidClientError("Unexpected shape")

        result = await pipeline.run_cycle()

        assert result.orders_fetched == 0
        assert result.error is not None

    @pytest.mark.asyncio
    async def test_empty_order_list_skips_price_fetch(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
    ) -> None:
        """No prices are fetched when there are no open orders."""
        result = await pipeline.run_cycle()

        assert result.orders_fetched == 0
        assert result.error is None
        mock_client.get_all_mids.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_price_failure_uses_static_prices(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
    ) -> None:
        """Static prices value orders when live prices are unavailable."""
        mock_client.get_all_mids.side_effect = RetryError("mids down")
        mock_client.get_open_orders.return_value = [{"coin": "ETH", "side": "B", "sz": "30"}]

        result = await pipeline.run_cycle()

        assert result.alerts_triggered == 1
        assert result.alerts[0].value_usd == Decimal("58500")

    @pytest.mark.asyncio
    async def test_per_order_error_does_not_stop_cycle(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
        btc_order: dict[str, Any],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """An error in one order does not stop the others."""
        bad_order = {**btc_order, "oid": 1}
        mock_client.get_open_orders.return_value = [bad_order, btc_order]

        def flaky_normalize(raw: Any) -> Any:
            if raw.get("oid") == 1:
                raise RuntimeError("unexpected payload")
            return normalize_order(raw)

        with (
            patch(
                "hyperliquid_order_tracker.pipeline.normalize_order",
                side_effect=flaky_normalize,
            ),
            caplog.at_level(logging.ERROR),
        ):
            result = await pipeline.run_cycle()

        assert result.alerts_triggered == 1
        assert result.orders_evaluated == 1
        assert "Error processing order" in caplog.text
        assert pipeline.stats.errors == 1

    @pytest.mark.asyncio
    async def test_dry_run_marks_seen_without_sending(
        self,
        settings: Settings,
        mock_client: AsyncMock,
        ledger: InMemorySeenOrderLedger,
        channel: AsyncMock,
        btc_order: dict[str, Any],
        now_ms: int,
    ) -> None:
        """Dry run records the order but sends nothing."""
        pipeline = Pipeline(
            settings,
            dry_run=True,
            client=mock_client,
            ledger=ledger,
            channels=[channel],
            clock=lambda: now_ms,
        )
        mock_client.get_open_orders.return_value = [btc_order]

        result = await pipeline.run_cycle()

        assert result.alerts_triggered == 1
        assert len(ledger) == 1
        channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_overlapping_cycle_is_skipped(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
    ) -> None:
        """A cycle is skipped while another holds the lock."""
        async with pipeline._cycle_lock:
            result = await pipeline.run_cycle()

        assert result.skipped
        mock_client.get_open_orders.assert_not_awaited()
        assert pipeline.stats.cycles_skipped == 1

    @pytest.mark.asyncio
    async def test_alerts_logged_when_no_channels(
        self,
        settings: Settings,
        mock_client: AsyncMock,
        ledger: InMemorySeenOrderLedger,
        btc_order: dict[str, Any],
        now_ms: int,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Alerts are logged when no channel is configured."""
        pipeline = Pipeline(
            settings,
            client=mock_client,
            ledger=ledger,
            channels=[],
            clock=lambda: now_ms,
        )
        mock_client.get_open_orders.return_value = [btc_order]

        with caplog.at_level(logging.WARNING):
            result = await pipeline.run_cycle()

        assert result.alerts_triggered == 1
        assert result.alerts_delivered == 0
        assert "LARGE ORDER ALERT" in caplog.text

    @pytest.mark.asyncio
    async def test_uninitialized_components_raise(self, settings: Settings) -> None:
        """Checking orders before components exist raises."""
        with pytest.raises(RuntimeError):
            await Pipeline(settings)._check_orders(CycleResult())


class TestSweepLedger:
    """Tests for ledger expiry."""

    @pytest.mark.asyncio
    async def test_sweep_removes_expired_records(self, pipeline: Pipeline, now_ms: int) -> None:
        """Only records past the retention window are removed."""
        pipeline._ledger = InMemorySeenOrderLedger(
            {
                "old": SeenOrderRecord("old", now_ms - RETENTION_MS - 1, Decimal("1")),
                "new": SeenOrderRecord("new", now_ms, Decimal("1")),
            }
        )

        assert await pipeline.sweep_ledger() == 1
        assert not await pipeline._ledger.is_seen("old")
        assert await pipeline._ledger.is_seen("new")


class TestPipelineLifecycle:
    """Tests for start/stop and background loops."""

    @pytest.mark.asyncio
    async def test_start_runs_first_cycle_and_stops(
        self,
        pipeline: Pipeline,
        mock_client: AsyncMock,
    ) -> None:
        """Start runs a first cycle and stop leaves injected clients open."""
        await pipeline.start()
        assert pipeline.is_running

        for _ in range(5):
            await asyncio.sleep(0)

        await pipeline.stop()

        assert pipeline.state == PipelineState.STOPPED
        mock_client.get_open_orders.assert_awaited()
        mock_client.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_context_manager(self, pipeline: Pipeline) -> None:
        """The async context manager starts and stops the pipeline."""
        async with pipeline as running:
            assert running.is_running
        assert pipeline.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, pipeline: Pipeline) -> None:
        """Starting a running pipeline raises."""
        await pipeline.start()
        try:
            with pytest.raises(RuntimeError):
                await pipeline.start()
        finally:
            await pipeline.stop()

    @pytest.mark.asyncio
    async def test_startup_diagnostics(
        self,
        settings: Settings,
        mock_client: AsyncMock,
        ledger: InMemorySeenOrderLedger,
    ) -> None:
        """Startup runs the API debug check and sends the startup message."""
        settings = settings.model_copy(
            update={"debug_mode": True, "send_startup_message": True}
        )
        telegram = MagicMock()
        with (
            patch("hyperliquid_order_tracker.pipeline.run_api_debug", new=AsyncMock()) as debug,
            patch(
                "hyperliquid_order_tracker.pipeline.send_startup_message", new=AsyncMock()
            ) as startup,
            patch.object(Pipeline, "_telegram_channel", return_value=telegram),
        ):
            pipeline = Pipeline(settings, client=mock_client, ledger=ledger, channels=[])
            await pipeline.start()
            await pipeline.stop()

        debug.assert_awaited_once_with(mock_client)
        startup.assert_awaited_once_with(telegram)
