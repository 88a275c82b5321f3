"""Main pipeline orchestrator for the Hyperliquid Order Tracker.

This module provides the Pipeline class that wires together the info
client, price resolution, valuation, the seen-order ledger and alerting,
and drives the polling and ledger-expiry loops.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from redis.asyncio import Redis

from hyperliquid_order_tracker.alerter.channels.telegram import TelegramChannel
from hyperliquid_order_tracker.alerter.dispatcher import AlertChannel, AlertDispatcher
from hyperliquid_order_tracker.alerter.formatter import AlertFormatter, format_usd
from hyperliquid_order_tracker.alerter.models import LargeOrderAlert
from hyperliquid_order_tracker.config import Settings, get_settings
from hyperliquid_order_tracker.detector.valuation import value_order
from hyperliquid_order_tracker.diagnostics import (
    check_telegram_connection,
    run_api_debug,
    send_startup_message,
)
from hyperliquid_order_tracker.ingestor.hyperliquid_client import (
    HyperliquidClient,
    HyperliquidClientError,
)
from hyperliquid_order_tracker.ingestor.normalizer import normalize_order
from hyperliquid_order_tracker.ingestor.prices import PriceResolver, PriceTable
from hyperliquid_order_tracker.storage.ledger import (
    JsonFileSeenOrderLedger,
    SeenOrderLedger,
    current_time_ms,
)
from hyperliquid_order_tracker.storage.redis_ledger import RedisSeenOrderLedger

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    cycles_run: int = 0
    cycles_skipped: int = 0
    orders_evaluated: int = 0
    large_orders_detected: int = 0
    alerts_sent: int = 0
    alert_failures: int = 0
    errors: int = 0
    last_cycle_time: datetime | None = None
    last_error: str | None = None


@dataclass
class CycleResult:
    """Outcome of one polling cycle."""

    orders_fetched: int = 0
    orders_evaluated: int = 0
    alerts: list[LargeOrderAlert] = field(default_factory=list)
    alerts_delivered: int = 0
    skipped: bool = False
    error: str | None = None

    @property
    def alerts_triggered(self) -> int:
        return len(self.alerts)


class Pipeline:
    """Main pipeline orchestrator for the Hyperliquid Order Tracker.

    Pipeline flow:
        openOrders poll -> Normalizer -> Valuation (PriceTable) -> Ledger -> Alerter

    Polling cycles and ledger sweeps share one lock, so at most one of
    them touches the ledger at a time. A poll that comes due while the
    previous one is still running is skipped.

    Example:
        ```python
        from hyperliquid_order_tracker.config import get_settings
        from hyperliquid_order_tracker.pipeline import Pipeline

        settings = get_settings()
        pipeline = Pipeline(settings)

        await pipeline.start()
        # Pipeline runs until stop() is called
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        client: HyperliquidClient | None = None,
        ledger: SeenOrderLedger | None = None,
        channels: Sequence[AlertChannel] | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, skip sending alerts. Overrides settings.dry_run.
            client: Info API client. Built from settings when omitted.
            ledger: Seen-order ledger. Built from settings when omitted.
            channels: Alert channels. Built from settings when omitted.
            clock: Returns the current time in epoch milliseconds.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._clock = clock or current_time_ms

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized lazily, see _ensure_components())
        self._client = client
        self._owns_client = client is None
        self._ledger = ledger
        self._channels = list(channels) if channels is not None else None
        self._owns_channels = channels is None
        self._redis: Redis | None = None
        self._price_resolver: PriceResolver | None = None
        self._alert_formatter: AlertFormatter | None = None
        self._alert_dispatcher: AlertDispatcher | None = None
        self._initialized = False

        # Synchronization
        self._cycle_lock = asyncio.Lock()
        self._stop_event: asyncio.Event | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    async def start(self) -> None:
        """Start the pipeline.

        Initializes all components, runs the configured startup diagnostics
        and begins polling.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._ensure_components()
            await self._run_startup_diagnostics()
            self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info(
                "Pipeline started: monitoring %s every %ds (threshold %s)",
                self._settings.tracker.target_address,
                self._settings.tracker.check_interval_seconds,
                format_usd(Decimal(self._settings.tracker.large_order_threshold)),
            )
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        Stops all background loops and cleans up resources.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    def request_stop(self) -> None:
        """Ask a running pipeline to stop; safe to call from a signal handler."""
        if self._stop_event:
            self._stop_event.set()

    async def _ensure_components(self) -> None:
        """Initialize all pipeline components once."""
        if self._initialized:
            return
        settings = self._settings

        if self._client is None:
            logger.debug("Initializing Hyperliquid client...")
            self._client = HyperliquidClient(
                info_url=settings.hyperliquid.info_url,
                timeout_seconds=settings.hyperliquid.request_timeout_seconds,
                max_retries=settings.hyperliquid.max_retries,
            )
            self._owns_client = True

        if self._ledger is None:
            logger.debug("Initializing %s seen-order ledger...", settings.ledger.backend)
            self._ledger = self._create_ledger()
        await self._ledger.load()

        self._price_resolver = PriceResolver(self._client)

        logger.debug("Initializing alerting components...")
        self._alert_formatter = AlertFormatter(verbosity="detailed")
        if self._channels is None:
            self._channels = self._build_alert_channels()
        self._alert_dispatcher = AlertDispatcher(self._channels)

        self._initialized = True
        logger.info("All components initialized")

    def _create_ledger(self) -> SeenOrderLedger:
        """Build the configured seen-order ledger backend."""
        ledger_settings = self._settings.ledger
        if ledger_settings.backend == "redis":
            self._redis = Redis.from_url(ledger_settings.redis_url)
            return RedisSeenOrderLedger(self._redis, key=ledger_settings.redis_key)
        return JsonFileSeenOrderLedger(ledger_settings.path)

    def _build_alert_channels(self) -> list[AlertChannel]:
        """Build list of enabled alert channels."""
        channels: list[AlertChannel] = []
        settings = self._settings

        if settings.telegram.enabled:
            bot_token = settings.telegram.bot_token
            chat_id = settings.telegram.chat_id
            if bot_token and chat_id:
                channels.append(
                    TelegramChannel(
                        bot_token.get_secret_value(),
                        chat_id,
                    )
                )
                logger.info("Telegram channel enabled")

        if not channels:
            logger.warning("No alert channels configured; alerts will only be logged")

        return channels

    def _telegram_channel(self) -> TelegramChannel | None:
        for channel in self._channels or []:
            if isinstance(channel, TelegramChannel):
                return channel
        return None

    async def _run_startup_diagnostics(self) -> None:
        """Run the optional probes requested by configuration."""
        settings = self._settings

        if settings.debug_mode and self._client is not None:
            await run_api_debug(self._client)

        telegram = self._telegram_channel()
        if settings.test_telegram:
            if telegram is None:
                logger.error("Cannot test Telegram: TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID are not set")
            else:
                await check_telegram_connection(telegram)

        if settings.send_startup_message and telegram is not None:
            if self._dry_run:
                logger.info("[DRY RUN] Would send startup message")
            else:
                await send_startup_message(telegram)

    def _start_background_services(self) -> None:
        """Start the polling and ledger-sweep loops."""
        logger.debug("Starting order polling loop...")
        self._poll_task = asyncio.create_task(self._run_poll_loop())
        logger.debug("Starting ledger sweep loop...")
        self._sweep_task = asyncio.create_task(self._run_sweep_loop())

    async def _run_poll_loop(self) -> None:
        if not self._stop_event:
            return

        interval = self._settings.tracker.check_interval_seconds
        while not self._stop_event.is_set():
            await self.run_cycle()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass

    async def _run_sweep_loop(self) -> None:
        if not self._stop_event:
            return

        interval = self._settings.tracker.cleanup_interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass

            try:
                await self.sweep_ledger()
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.warning("Ledger sweep loop error: %s", e)

    async def _stop_background_services(self) -> None:
        """Stop background loops."""
        for task in (self._poll_task, self._sweep_task):
            if task:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._poll_task = None
        self._sweep_task = None

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._alert_dispatcher and self._owns_channels:
            await self._alert_dispatcher.close()
            self._channels = None
        self._alert_dispatcher = None

        if self._client and self._owns_client:
            await self._client.close()
            self._client = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._ledger = None

        self._initialized = False

    async def run_cycle(self) -> CycleResult:
        """Run one polling cycle.

        Never raises: failures are logged and reported in the result so
        that the next cycle runs independently.
        """
        if self._cycle_lock.locked():
            logger.warning("Previous order check still running; skipping this cycle")
            self._stats.cycles_skipped += 1
            return CycleResult(skipped=True)

        async with self._cycle_lock:
            result = CycleResult()
            try:
                await self._ensure_components()
                await self._check_orders(result)
            except Exception as e:
                logger.exception("Error checking orders")
                self._stats.errors += 1
                self._stats.last_error = str(e)
                result.error = str(e)
            finally:
                self._stats.cycles_run += 1
                self._stats.last_cycle_time = datetime.now(UTC)
            return result

    async def _check_orders(self, result: CycleResult) -> None:
        if self._client is None or self._price_resolver is None:
            raise RuntimeError("Pipeline components are not initialized")

        address = self._settings.tracker.target_address
        if not address:
            logger.error("TARGET_ADDRESS is not configured; nothing to monitor")
            result.error = "TARGET_ADDRESS is not configured"
            return

        logger.debug("Checking open orders for %s", address)
        try:
            raw_orders = await self._client.get_open_orders(address)
        except HyperliquidClientError as e:
            logger.error("Error fetching open orders: %s", e)
            self._stats.errors += 1
            self._stats.last_error = str(e)
            result.error = str(e)
            return

        result.orders_fetched = len(raw_orders)
        if not raw_orders:
            logger.info("No open orders found for %s", address)
            return
        logger.info("Found %d open orders", len(raw_orders))

        prices = await self._price_resolver.resolve()
        threshold = Decimal(self._settings.tracker.large_order_threshold)
        now_ms = self._clock()

        for raw in raw_orders:
            try:
                alert = await self._evaluate_order(address, raw, prices, threshold, now_ms)
                result.orders_evaluated += 1
                if alert is None:
                    continue
                result.alerts.append(alert)
                if await self._deliver(alert):
                    result.alerts_delivered += 1
            except Exception as e:
                logger.exception("Error processing order %r", raw)
                self._stats.errors += 1
                self._stats.last_error = str(e)

    async def _evaluate_order(
        self,
        address: str,
        raw: Any,
        prices: PriceTable,
        threshold: Decimal,
        now_ms: int,
    ) -> LargeOrderAlert | None:
        """Decide whether a raw order produces a new alert.

        The order is marked seen before any notification is attempted, so a
        failed send is never retried on the next cycle.
        """
        if self._ledger is None:
            raise RuntimeError("Seen-order ledger is not initialized")

        order = normalize_order(raw)
        self._stats.orders_evaluated += 1
        order_key = order.order_key()
        valuation = value_order(order, prices)

        logger.debug(
            "Order %s: %s %s %s valued at %s (%s)",
            order_key,
            order.side,
            order.size_text or order.size,
            order.coin,
            valuation.value_usd,
            valuation.source,
        )

        if valuation.value_usd < threshold:
            return None

        if await self._ledger.is_seen(order_key):
            logger.debug("Order %s already alerted", order_key)
            return None

        await self._ledger.mark_seen(order_key, valuation.value_usd, now_ms)
        self._stats.large_orders_detected += 1
        logger.info(
            "Large order detected: %s %s %s worth %s",
            order.side,
            order.size_text or order.size,
            order.display_coin,
            format_usd(valuation.value_usd),
        )

        return LargeOrderAlert(
            address=address,
            order=order,
            valuation=valuation,
            order_key=order_key,
            threshold_usd=threshold,
            detected_at=datetime.fromtimestamp(now_ms / 1000, tz=UTC),
        )

    async def _deliver(self, alert: LargeOrderAlert) -> bool:
        """Format and dispatch an alert. Returns True if any channel accepted it."""
        if self._alert_formatter is None or self._alert_dispatcher is None:
            raise RuntimeError("Alerting components are not initialized")

        formatted_alert = self._alert_formatter.format(alert)

        if self._dry_run:
            logger.info("[DRY RUN] Would send alert:\n%s", formatted_alert.plain_text)
            return False

        result = await self._alert_dispatcher.dispatch(formatted_alert)

        if result.all_succeeded:
            self._stats.alerts_sent += 1
            logger.info(
                "Alert sent successfully: %s %s",
                alert.order.display_coin,
                format_usd(alert.value_usd),
            )
        elif result.failure_count:
            self._stats.alert_failures += 1
            logger.warning(
                "Alert partially failed: %d/%d channels succeeded (failed: %s)",
                result.success_count,
                result.success_count + result.failure_count,
                ", ".join(result.failed_channels),
            )
        return result.delivered

    async def sweep_ledger(self) -> int:
        """Expire seen-order records older than the retention window.

        Waits for a running poll cycle to finish rather than skipping.

        Returns:
            Number of records removed.
        """
        async with self._cycle_lock:
            await self._ensure_components()
            if self._ledger is None:
                raise RuntimeError("Seen-order ledger is not initialized")
            removed = await self._ledger.expire_older_than(self._clock())
        logger.debug("Ledger sweep removed %d records", removed)
        return removed

    async def close(self) -> None:
        """Release resources acquired by run_cycle()/sweep_ledger() outside start()."""
        await self._cleanup()

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        This is a convenience method that starts the pipeline and
        blocks until a stop signal is received.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
