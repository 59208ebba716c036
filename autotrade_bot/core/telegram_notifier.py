"""
Telegram integration for per-user trade notifications.

Each user id doubles as the Telegram chat id. Delivery is best effort: send
failures are logged and never raised into the engine.
"""

import html
import logging
from typing import List, Optional, Tuple

import aiohttp

from ..config import Settings

logger = logging.getLogger(__name__)


class Notifier:
    """One-way notification sink."""

    async def notify(self, user_id: str, message: str) -> bool:
        raise NotImplementedError

    async def close(self):
        pass


class LoggingNotifier(Notifier):
    """Writes notifications to the log; used in paper mode and tests."""

    def __init__(self):
        self.sent: List[Tuple[str, str]] = []

    async def notify(self, user_id: str, message: str) -> bool:
        self.sent.append((user_id, message))
        logger.info(f"[notify {user_id}] {message}")
        return True


class TelegramNotifier(Notifier):
    def __init__(self, bot_token: Optional[str], session: Optional[aiohttp.ClientSession] = None):
        self.bot_token = bot_token
        self.enabled = bool(bot_token)
        self.base_url = f"https://api.telegram.org/bot{bot_token}" if bot_token else None
        self._session = session

        if not self.enabled:
            logger.warning("Telegram disabled - bot token missing")
        else:
            logger.info("Telegram notifier initialized")

    @classmethod
    def from_settings(cls, settings: Settings) -> Notifier:
        if not settings.TELEGRAM_ENABLED or not settings.TELEGRAM_BOT_TOKEN:
            return LoggingNotifier()
        return cls(settings.TELEGRAM_BOT_TOKEN)

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def notify(self, user_id: str, message: str) -> bool:
        return await self.send_message(user_id, html.escape(message))

    async def send_message(
        self,
        chat_id: str,
        text: str,
        parse_mode: str = "HTML",
        disable_notification: bool = False,
    ) -> bool:
        """
        Send a text message to one chat.

        Returns:
            True if sent successfully
        """
        if not self.enabled:
            logger.debug("Telegram disabled, skipping message")
            return False

        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_notification": disable_notification,
        }
        try:
            session = await self._ensure_session()
            async with session.post(f"{self.base_url}/sendMessage", json=payload, timeout=10) as resp:
                if resp.status == 200:
                    logger.debug(f"Telegram message sent to {chat_id}")
                    return True
                result = await resp.text()
                logger.error(f"Telegram send failed: status={resp.status}, response={result}")
                return False
        except Exception as e:
            logger.error(f"Telegram send exception: {e}")
            return False

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
