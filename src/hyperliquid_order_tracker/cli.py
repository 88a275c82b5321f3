"""Command-line entry point."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
from collections.abc import Iterable

from pydantic import ValidationError

from hyperliquid_order_tracker import __version__
from hyperliquid_order_tracker.alerter.channels.telegram import TelegramChannel
from hyperliquid_order_tracker.config import Settings, get_settings
from hyperliquid_order_tracker.diagnostics import check_telegram_connection, run_api_debug
from hyperliquid_order_tracker.ingestor.hyperliquid_client import HyperliquidClient
from hyperliquid_order_tracker.pipeline import Pipeline

logger = logging.getLogger("hyperliquid_order_tracker")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for noisy in ("aiohttp", "asyncio", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _load_settings(command: str) -> Settings | None:
    try:
        settings = get_settings()
    except ValidationError as exc:
        _setup_logging("INFO")
        logger.error("Invalid configuration: %s", exc)
        return None
    _setup_logging(settings.log_level)
    try:
        settings.validate_requirements(command=command)  # type: ignore[arg-type]
    except ValueError as exc:
        logger.error(str(exc))
        return None
    return settings


async def _run_pipeline(settings: Settings, dry_run: bool | None) -> int:
    pipeline = Pipeline(settings, dry_run=dry_run)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, pipeline.request_stop)
    await pipeline.run()
    return 0


def _run_command(args: argparse.Namespace) -> int:
    settings = _load_settings("run")
    if settings is None:
        return 2
    logger.info("Hyperliquid order tracker %s", __version__)
    logger.info("Configuration: %s", json.dumps(settings.redacted_summary()))
    try:
        return asyncio.run(_run_pipeline(settings, args.dry_run))
    except Exception as exc:
        logger.error("Fatal runtime error: %s", exc)
        return 2


async def _check_once(settings: Settings, dry_run: bool | None) -> int:
    pipeline = Pipeline(settings, dry_run=dry_run)
    try:
        result = await pipeline.run_cycle()
    finally:
        await pipeline.close()
    print(
        json.dumps(
            {
                "orders_fetched": result.orders_fetched,
                "orders_evaluated": result.orders_evaluated,
                "alerts_triggered": result.alerts_triggered,
                "alerts_delivered": result.alerts_delivered,
                "error": result.error,
            },
            indent=2,
        )
    )
    return 1 if result.error else 0


def _check_once_command(args: argparse.Namespace) -> int:
    settings = _load_settings("check-once")
    if settings is None:
        return 2
    return asyncio.run(_check_once(settings, args.dry_run))


async def _sweep(settings: Settings) -> int:
    pipeline = Pipeline(settings)
    try:
        removed = await pipeline.sweep_ledger()
    finally:
        await pipeline.close()
    print(json.dumps({"removed": removed}))
    return 0


def _sweep_command(args: argparse.Namespace) -> int:
    settings = _load_settings("sweep")
    if settings is None:
        return 2
    return asyncio.run(_sweep(settings))


async def _test_telegram(settings: Settings) -> int:
    bot_token, chat_id = settings.telegram.bot_token, settings.telegram.chat_id
    if bot_token is None or chat_id is None:
        logger.error("Telegram is not configured")
        return 2
    channel = TelegramChannel(bot_token.get_secret_value(), chat_id)
    try:
        ok = await check_telegram_connection(channel)
    finally:
        await channel.close()
    return 0 if ok else 1


def _test_telegram_command(args: argparse.Namespace) -> int:
    settings = _load_settings("test-telegram")
    if settings is None:
        return 2
    return asyncio.run(_test_telegram(settings))


async def _debug_api(settings: Settings) -> int:
    async with HyperliquidClient(
        info_url=settings.hyperliquid.info_url,
        timeout_seconds=settings.hyperliquid.request_timeout_seconds,
        max_retries=settings.hyperliquid.max_retries,
    ) as client:
        report = await run_api_debug(client)
    return 1 if report.errors else 0


def _debug_api_command(args: argparse.Namespace) -> int:
    settings = _load_settings("debug-api")
    if settings is None:
        return 2
    return asyncio.run(_debug_api(settings))


def _show_config_command(args: argparse.Namespace) -> int:
    try:
        settings = get_settings()
    except ValidationError as exc:
        _setup_logging("INFO")
        logger.error("Invalid configuration: %s", exc)
        return 2
    print(json.dumps(settings.redacted_summary(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hyperliquid-order-tracker",
        description="Alert on large open orders of a Hyperliquid account",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.set_defaults(func=_run_command, dry_run=None)
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Poll open orders until interrupted (default)")
    run.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Log alerts instead of sending them",
    )
    run.set_defaults(func=_run_command)

    check = sub.add_parser("check-once", help="Run a single polling cycle and exit")
    check.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Log alerts instead of sending them",
    )
    check.set_defaults(func=_check_once_command)

    sweep = sub.add_parser("sweep", help="Expire seen-order records older than 24h")
    sweep.set_defaults(func=_sweep_command)

    test_telegram = sub.add_parser("test-telegram", help="Send a Telegram test message")
    test_telegram.set_defaults(func=_test_telegram_command)

    debug_api = sub.add_parser("debug-api", help="Probe the info API and log response shapes")
    debug_api.set_defaults(func=_debug_api_command)

    show_config = sub.add_parser("show-config", help="Print configuration with secrets redacted")
    show_config.set_defaults(func=_show_config_command)
    return parser


def cli(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return int(args.func(args))


def main() -> None:
    raise SystemExit(cli())
