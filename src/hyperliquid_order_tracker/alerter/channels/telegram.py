"""Telegram Bot API alert channel."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from hyperliquid_order_tracker.alerter.models import FormattedAlert

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/{method}"
DEFAULT_TIMEOUT_SECONDS = 10.0


class TelegramError(Exception):
    """Raised when the Bot API rejects a request or cannot be reached."""

    def __init__(self, message: str, *, status: int | None = None, description: str | None = None):
        super().__init__(message)
        self.status = status
        self.description = description


class TelegramChannel:
    """Sends alerts to a single Telegram chat through a bot.

    Example:
        ```python
        channel = TelegramChannel(bot_token, chat_id)
        delivered = await channel.send(formatted_alert)
        await channel.close()
        ```
    """

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def chat_id(self) -> str:
        return self._chat_id

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def send(self, alert: FormattedAlert) -> bool:
        """Deliver a formatted alert. Returns False instead of raising."""
        try:
            await self.send_text(alert.telegram_markdown, parse_mode="MarkdownV2")
        except TelegramError as e:
            logger.error("Error sending Telegram alert: %s", e)
            return False
        return True

    async def send_text(self, text: str, parse_mode: str | None = None) -> dict[str, Any]:
        """Send a raw message to the configured chat.

        Args:
            text: Message body.
            parse_mode: Optional Bot API parse mode ("MarkdownV2", "HTML").

        Returns:
            The ``result`` object of the sendMessage response.

        Raises:
            TelegramError: If the request fails or the API reports an error.
        """
        payload: dict[str, Any] = {"chat_id": self._chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode

        url = TELEGRAM_API_URL.format(token=self._bot_token, method="sendMessage")
        session = self._get_session()
        try:
            async with session.post(url, json=payload, timeout=self._timeout) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = {}
                if not isinstance(body, dict):
                    body = {}
                if resp.status >= 400 or not body.get("ok", False):
                    description = body.get("description")
                    raise TelegramError(
                        f"sendMessage returned HTTP {resp.status}: {description or 'no description'}",
                        status=resp.status,
                        description=description,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TelegramError(f"sendMessage request failed: {e}") from e

        result = body.get("result") or {}
        logger.debug("Telegram message %s sent to chat %s", result.get("message_id"), self._chat_id)
        return result
