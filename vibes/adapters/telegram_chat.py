"""Telegram chat adapter — implements ChatPort.

Wraps a telegram.Bot instance to satisfy the ChatPort protocol.
"""

from __future__ import annotations

import logging

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import BadRequest

from vibes.ports.chat_port import Keyboard

logger = logging.getLogger(__name__)


def _to_markup(keyboard: Keyboard | None) -> InlineKeyboardMarkup | None:
    if not keyboard:
        return None
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton(b.label, url=b.url)
                if b.url
                else InlineKeyboardButton(b.label, callback_data=b.data)
                for b in row
            ]
            for row in keyboard
        ]
    )


class TelegramChat:
    """Telegram implementation of ChatPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(
        self,
        chat_id: int,
        text: str,
        keyboard: Keyboard | None = None,
        markdown: bool = False,
    ) -> int:
        markup = _to_markup(keyboard)
        if markdown:
            try:
                msg = await self._bot.send_message(
                    chat_id=chat_id, text=text, reply_markup=markup,
                    parse_mode=ParseMode.MARKDOWN,
                )
                return msg.message_id
            except BadRequest as exc:
                # LLM output is not always valid Markdown
                if "can't parse entities" not in str(exc).lower():
                    raise
                logger.warning("Markdown rejected for chat %d, resending as plain text", chat_id)
        msg = await self._bot.send_message(chat_id=chat_id, text=text, reply_markup=markup)
        return msg.message_id

    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        keyboard: Keyboard | None = None,
    ) -> None:
        await self._bot.edit_message_text(
            chat_id=chat_id, message_id=message_id, text=text,
            reply_markup=_to_markup(keyboard),
        )

    async def clear_buttons(self, chat_id: int, message_id: int) -> None:
        try:
            await self._bot.edit_message_reply_markup(
                chat_id=chat_id, message_id=message_id, reply_markup=None
            )
        except BadRequest as exc:
            if "message is not modified" not in str(exc).lower():
                raise

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None:
        await self._bot.answer_callback_query(callback_query_id=callback_id, text=text)

    async def download_file(self, file_id: str) -> bytes:
        tg_file = await self._bot.get_file(file_id)
        data = await tg_file.download_as_bytearray()
        return bytes(data)
