"""Tests for the command-line entry point."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from hyperliquid_order_tracker import cli
from hyperliquid_order_tracker.config import Settings, TrackerSettings
from hyperliquid_order_tracker.pipeline import CycleResult


@pytest.fixture
def patched_settings(settings: Settings):
    with patch("hyperliquid_order_tracker.cli.get_settings", return_value=settings):
        yield settings


class TestParser:
    """Tests for argument parsing."""

    def test_default_command_is_run(self) -> None:
        args = cli.build_parser().parse_args([])
        assert args.func is cli._run_command
        assert args.dry_run is None

    def test_dry_run_flag(self) -> None:
        args = cli.build_parser().parse_args(["check-once", "--dry-run"])
        assert args.func is cli._check_once_command
        assert args.dry_run is True


class TestCommands:
    """Tests for subcommand behavior."""

    def test_show_config_redacts(
        self, patched_settings: Settings, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert cli.cli(["show-config"]) == 0

        summary = json.loads(capsys.readouterr().out)
        assert summary["tracker"]["target_address"] == patched_settings.tracker.target_address
        assert summary["telegram_bot_token"] == "(not set)"

    def test_check_once_requires_address(self, settings: Settings) -> None:
        no_address = settings.model_copy(
            update={"tracker": TrackerSettings(_env_file=None, TARGET_ADDRESS=None)}
        )
        with patch("hyperliquid_order_tracker.cli.get_settings", return_value=no_address):
            assert cli.cli(["check-once"]) == 2

    def test_check_once_prints_result(
        self, patched_settings: Settings, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with (
            patch.object(
                cli.Pipeline, "run_cycle", new=AsyncMock(return_value=CycleResult(orders_fetched=3))
            ),
            patch.object(cli.Pipeline, "close", new=AsyncMock()) as close,
        ):
            assert cli.cli(["check-once"]) == 0

        close.assert_awaited_once()
        assert json.loads(capsys.readouterr().out)["orders_fetched"] == 3

    def test_check_once_reports_failure(self, patched_settings: Settings) -> None:
        with (
            patch.object(
                cli.Pipeline,
                "run_cycle",
                new=AsyncMock(return_value=CycleResult(error="fetch failed")),
            ),
            patch.object(cli.Pipeline, "close", new=AsyncMock()),
        ):
            assert cli.cli(["check-once"]) == 1

    def test_test_telegram_requires_credentials(self, patched_settings: Settings) -> None:
        assert cli.cli(["test-telegram"]) == 2

    def test_sweep(
        self, patched_settings: Settings, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with (
            patch.object(cli.Pipeline, "sweep_ledger", new=AsyncMock(return_value=4)),
            patch.object(cli.Pipeline, "close", new=AsyncMock()),
        ):
            assert cli.cli(["sweep"]) == 0

        assert json.loads(capsys.readouterr().out) == {"removed": 4}
