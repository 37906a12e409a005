"""Alert delivery."""

from .telegram_bot import Notifier, TelegramNotifier, split_telegram_message

__all__ = ["Notifier", "TelegramNotifier", "split_telegram_message"]
