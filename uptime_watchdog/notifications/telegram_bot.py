"""Telegram delivery for watchdog alerts."""

from abc import ABC, abstractmethod

import structlog

from telegram import Bot
from telegram.error import TelegramError

logger = structlog.get_logger(__name__)

TELEGRAM_MAX_MESSAGE_LEN = 3900


def split_telegram_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        parts.append(s[:cut].rstrip())
        s = s[cut:].lstrip()
    return parts


class Notifier(ABC):
    """Delivers one alert to a list of recipients."""

    @abstractmethod
    async def send(self, recipients: list[str], subject: str, body: str) -> bool:
        """Return True when every recipient received the message."""


class TelegramNotifier(Notifier):
    """Sends alerts as Telegram messages; recipients are chat ids."""

    def __init__(self, bot_token: str | None = None, bot: Bot | None = None):
        """Initialize Telegram notifier.

        Args:
            bot_token: Telegram bot token
            bot: Pre-built bot instance (takes precedence over the token)
        """
        self.bot = bot
        if self.bot is None and bot_token:
            self.bot = Bot(token=bot_token)
            logger.info("Telegram notifier initialized")
        elif self.bot is None:
            logger.warning("Telegram bot token not configured")

    def _is_configured(self) -> bool:
        return self.bot is not None

    async def send(self, recipients: list[str], subject: str, body: str) -> bool:
        if not self._is_configured():
            logger.warning("Telegram not configured, skipping notification", subject=subject)
            return False
        if not recipients:
            return False

        text = f"{subject}\n\n{body}".strip()
        ok_all = True
        for chat_id in recipients:
            for part in split_telegram_message(text):
                ok_all = await self._send_message(chat_id, part) and ok_all
        return ok_all

    async def _send_message(self, chat_id: str, message: str) -> bool:
        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=message,
                disable_web_page_preview=True
            )
            logger.info("Telegram notification sent", chat_id=chat_id)
            return True

        except TelegramError as e:
            logger.error("Failed to send Telegram notification", chat_id=chat_id, error=str(e))
            return False
