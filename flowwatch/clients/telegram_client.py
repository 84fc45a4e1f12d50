"""
Telegram Bot API client.
Delivers alert text and long-polls the chat for runtime config commands.
"""

import asyncio
from typing import Any, Optional

import aiohttp

from ..runtime.commands import CommandHandler
from ..utils.logger import get_logger

logger = get_logger("telegram")


class TelegramError(RuntimeError):
    """Bot API returned ok=false or an unexpected response."""


class TelegramClient:
    """
    Minimal async client over the Bot HTTP API.

    Without a token the client runs in log-only mode: alerts are written to
    the log and no command polling happens.
    """

    BASE_URL = "https://api.telegram.org"

    def __init__(
        self,
        bot_token: Optional[str],
        chat_id: Optional[str],
        base_url: str = BASE_URL,
        poll_timeout: int = 30
    ):
        self.bot_token = bot_token
        self.chat_id = str(chat_id) if chat_id else None
        self.base_url = base_url
        self.poll_timeout = poll_timeout

        self._session: Optional[aiohttp.ClientSession] = None
        self._update_offset = 0
        self._running = False

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def initialize(self) -> None:
        """Initialize HTTP session."""
        if not self._session:
            timeout = aiohttp.ClientTimeout(total=self.poll_timeout + 10)
            self._session = aiohttp.ClientSession(timeout=timeout)
        if self.enabled:
            logger.info("Telegram client initialized")
        else:
            logger.warning("Telegram not configured (missing token or chat id), alerts go to the log only")

    async def close(self) -> None:
        """Close HTTP session."""
        self._running = False
        if self._session:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, payload: dict) -> Any:
        """POST a Bot API method and return its result field."""
        if not self._session:
            await self.initialize()

        url = f"{self.base_url}/bot{self.bot_token}/{method}"
        try:
            async with self._session.post(url, json=payload) as response:
                data = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.error(f"Telegram {method} request failed: {e}")
            raise

        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else data
            raise TelegramError(f"{method} failed: {description}")
        return data.get("result")

    async def send_message(self, text: str, chat_id: Optional[str] = None) -> None:
        """Send HTML text; raises on failure so the caller can log it."""
        if not self.enabled:
            logger.info("Alert (log only)", extra={"text": text})
            return

        await self._request("sendMessage", {
            "chat_id": chat_id or self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        })
        logger.debug(f"Telegram message sent to {chat_id or self.chat_id}")

    async def poll_commands(self, handler: CommandHandler) -> None:
        """
        Long-poll getUpdates and answer commands from the configured chat.

        Runs until close() is called. Errors back off and retry; they never
        propagate to the caller.
        """
        if not self.enabled:
            return

        self._running = True
        backoff = 1.0
        logger.info("Listening for Telegram commands")

        while self._running:
            try:
                updates = await self._request("getUpdates", {
                    "offset": self._update_offset,
                    "timeout": self.poll_timeout,
                    "allowed_updates": ["message", "channel_post"],
                })
                backoff = 1.0
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Telegram polling error: {e}")
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 60.0)
                continue

            for update in updates or []:
                await self._handle_update(update, handler)

    async def _handle_update(self, update: dict, handler: CommandHandler) -> None:
        self._update_offset = max(self._update_offset, int(update.get("update_id", 0)) + 1)

        message = update.get("message") or update.get("channel_post") or {}
        text = message.get("text") or ""
        chat_id = str(message.get("chat", {}).get("id", ""))

        if not text.startswith("/"):
            return
        if chat_id != self.chat_id:
            logger.warning(f"Ignoring command from unauthorized chat {chat_id}")
            return

        reply = handler.handle(text)
        try:
            await self.send_message(reply.text, chat_id=chat_id)
        except Exception as e:
            logger.error(f"Failed to reply to command: {e}")
