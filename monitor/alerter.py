"""Trade notifications to a Telegram chat."""

import logging
from html import escape

from telegram import Bot

import config
from trading.collaborators import NullNotifier

logger = logging.getLogger(__name__)


class TelegramNotifier:
    def __init__(self, token: str, chat_id: str, bot: Bot | None = None) -> None:
        self.chat_id = chat_id
        self.bot = bot or Bot(token=token)

    async def notify(self, message: str) -> None:
        prefix = f"[{config.BOT_INSTANCE_ID}] " if config.BOT_INSTANCE_ID else ""
        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=escape(prefix + message),
                parse_mode="HTML",
                disable_web_page_preview=True,
            )
        except Exception as exc:
            logger.warning("Telegram notify failed chat_id=%s err=%s", self.chat_id, exc)


def build_notifier() -> "TelegramNotifier | NullNotifier":
    if not config.TELEGRAM_BOT_TOKEN or not config.TELEGRAM_CHAT_ID:
        logger.info("Telegram notifications disabled (token or chat id missing)")
        return NullNotifier()
    return TelegramNotifier(config.TELEGRAM_BOT_TOKEN, config.TELEGRAM_CHAT_ID)
