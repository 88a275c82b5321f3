"""Fan-out of formatted alerts to every configured channel."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from hyperliquid_order_tracker.alerter.models import DispatchResult, FormattedAlert

logger = logging.getLogger(__name__)


class AlertChannel(Protocol):
    """A destination for alerts."""

    name: str

    async def send(self, alert: FormattedAlert) -> bool:
        """Deliver the alert; return False on failure."""
        ...


class AlertDispatcher:
    """Sends each alert to all channels concurrently.

    Delivery failures are counted and logged, never raised. With no
    channels configured the alert is written to the log instead.
    """

    def __init__(self, channels: Sequence[AlertChannel]) -> None:
        self._channels = list(channels)

    @property
    def channels(self) -> list[AlertChannel]:
        return list(self._channels)

    async def dispatch(self, alert: FormattedAlert) -> DispatchResult:
        if not self._channels:
            logger.warning("No alert channels configured; alert logged only:\n%s", alert.plain_text)
            return DispatchResult()

        results = await asyncio.gather(
            *(channel.send(alert) for channel in self._channels),
            return_exceptions=True,
        )

        success = 0
        failed: list[str] = []
        for channel, outcome in zip(self._channels, results, strict=True):
            if isinstance(outcome, BaseException):
                logger.error("Channel %s raised while sending alert: %s", channel.name, outcome)
                failed.append(channel.name)
            elif outcome:
                success += 1
            else:
                failed.append(channel.name)

        return DispatchResult(
            success_count=success,
            failure_count=len(failed),
            failed_channels=tuple(failed),
        )

    async def close(self) -> None:
        """Close channels that hold network resources."""
        for channel in self._channels:
            close = getattr(channel, "close", None)
            if close is not None:
                await close()
