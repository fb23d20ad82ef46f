#!/usr/bin/env python3

import logging
from typing import List, Optional, Sequence, Tuple

from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode

from sendapp import texts
from sendapp.deletion_queue import MessageDeletionQueue
from sendapp.entities import ChatId, MessageId
from sendapp.utils.logging_helpers import LoggerLike
from sendapp.utils.telegram_safeops import TelegramSafeOps


JOIN_CALLBACK_DATA = "join_game"


def build_join_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(text=texts.JOIN_BUTTON, callback_data=JOIN_CALLBACK_DATA)]]
    )


def build_url_keyboard(buttons: Sequence[Tuple[str, str]]) -> InlineKeyboardMarkup:
    """One row holding a URL button per ``(label, url)`` pair."""

    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(text=label, url=url) for label, url in buttons]]
    )


class SendBotViewer:
    """Everything the bot shows in a chat goes through this class."""

    def __init__(
        self,
        safe_ops: TelegramSafeOps,
        deletion_queue: MessageDeletionQueue,
        *,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._safe_ops = safe_ops
        self._deletion_queue = deletion_queue
        self._logger = logger or logging.getLogger(__name__)

    @property
    def safe_ops(self) -> TelegramSafeOps:
        return self._safe_ops

    async def send_message(
        self,
        chat_id: ChatId,
        text: str,
        *,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
        parse_mode: Optional[str] = None,
        reply_to_message_id: Optional[MessageId] = None,
    ) -> Optional[MessageId]:
        return await self._safe_ops.send_message(
            chat_id,
            text,
            reply_markup=reply_markup,
            parse_mode=parse_mode,
            reply_to_message_id=reply_to_message_id,
        )

    async def send_markdown(
        self,
        chat_id: ChatId,
        text: str,
        *,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
        reply_to_message_id: Optional[MessageId] = None,
    ) -> Optional[MessageId]:
        return await self.send_message(
            chat_id,
            text,
            reply_markup=reply_markup,
            parse_mode=ParseMode.MARKDOWN_V2,
            reply_to_message_id=reply_to_message_id,
        )

    async def edit_message_text(
        self,
        chat_id: ChatId,
        message_id: Optional[MessageId],
        text: str,
        *,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
        parse_mode: Optional[str] = None,
    ) -> Optional[MessageId]:
        return await self._safe_ops.edit_message_text(
            chat_id,
            message_id,
            text,
            reply_markup=reply_markup,
            parse_mode=parse_mode,
        )

    def delete_message(
        self,
        chat_id: ChatId,
        message_id: Optional[MessageId],
        *,
        bot_owned: bool = True,
    ) -> None:
        """Queue ``message_id`` for deletion; bot messages jump the queue."""

        self._deletion_queue.enqueue(chat_id, message_id, priority=bot_owned)

    async def answer_callback(
        self,
        callback_query_id: str,
        text: Optional[str] = None,
        *,
        show_alert: bool = False,
    ) -> bool:
        return await self._safe_ops.answer_callback_query(
            callback_query_id, text, show_alert=show_alert
        )

    async def get_chat_administrators(self, chat_id: ChatId) -> List[int]:
        return await self._safe_ops.get_chat_administrators(chat_id)
