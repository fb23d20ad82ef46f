"""Robust wrappers around Telegram messaging operations.

Every call goes through :class:`sendapp.retry.TelegramRetryManager`. The
wrappers turn the remaining failures into return values the game layer can
act on: a missing message id, ``False`` for a delete, or a replacement
message when an edit cannot be applied.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from cachetools import LRUCache
from telegram import Bot, LinkPreviewOptions, ReplyParameters
from telegram.error import BadRequest, TelegramError

from sendapp.entities import ChatId, MessageId
from sendapp.retry import TelegramRetryManager
from sendapp.utils.logging_helpers import LoggerLike


class TelegramSafeOps:
    """Execute Telegram operations with retry and structured logging."""

    def __init__(
        self,
        bot: Bot,
        *,
        retry_manager: TelegramRetryManager,
        logger: LoggerLike,
    ) -> None:
        if bot is None:
            raise ValueError("bot dependency must be provided")
        if logger is None:
            raise ValueError("logger dependency must be provided")

        self._bot = bot
        self._retry = retry_manager
        self._logger = logger
        self._last_edit_cache: LRUCache[tuple[ChatId, MessageId], str] = LRUCache(
            maxsize=1024
        )
        self._cache_lock = asyncio.Lock()

    async def send_message(
        self,
        chat_id: ChatId,
        text: str,
        *,
        reply_markup: Optional[Any] = None,
        parse_mode: Optional[str] = None,
        reply_to_message_id: Optional[MessageId] = None,
        log_extra: Optional[Mapping[str, Any]] = None,
    ) -> Optional[MessageId]:
        reply_parameters = None
        if reply_to_message_id:
            reply_parameters = ReplyParameters(
                message_id=reply_to_message_id,
                allow_sending_without_reply=True,
            )
        try:
            message = await self._retry.call(
                "send_message",
                lambda: self._bot.send_message(
                    chat_id=chat_id,
                    text=text,
                    reply_markup=reply_markup,
                    parse_mode=parse_mode,
                    reply_parameters=reply_parameters,
                    link_preview_options=LinkPreviewOptions(is_disabled=True),
                ),
                log_extra=self._build_extra(
                    chat_id=chat_id, message_id=None, operation="send_message", extra=log_extra
                ),
            )
        except TelegramError as exc:
            self._logger.error(
                "Failed to send message",
                extra=self._build_extra(
                    chat_id=chat_id,
                    message_id=None,
                    operation="send_message",
                    error_type=type(exc).__name__,
                    error_message=str(exc),
                    extra=log_extra,
                ),
            )
            return None
        if message is None:
            return None
        return message.message_id

    async def edit_message_text(
        self,
        chat_id: ChatId,
        message_id: Optional[MessageId],
        text: str,
        *,
        reply_markup: Optional[Any] = None,
        parse_mode: Optional[str] = None,
        log_extra: Optional[Mapping[str, Any]] = None,
    ) -> Optional[MessageId]:
        """Edit ``message_id`` in place or post a replacement.

        Returns the id of the message that now carries ``text``; this differs
        from ``message_id`` when a replacement had to be sent, and is
        ``None`` when nothing could be delivered.
        """

        if not message_id:
            return await self.send_message(
                chat_id,
                text,
                reply_markup=reply_markup,
                parse_mode=parse_mode,
                log_extra=log_extra,
            )

        cache_key = (chat_id, message_id)
        async with self._cache_lock:
            if self._last_edit_cache.get(cache_key) == text:
                self._logger.debug(
                    "Skipping edit_message_text because content unchanged",
                    extra=self._build_extra(
                        chat_id=chat_id,
                        message_id=message_id,
                        operation="edit_message_text",
                        extra=log_extra,
                    ),
                )
                return message_id

        try:
            await self._retry.call(
                "edit_message_text",
                lambda: self._bot.edit_message_text(
                    chat_id=chat_id,
                    message_id=message_id,
                    text=text,
                    reply_markup=reply_markup,
                    parse_mode=parse_mode,
                    link_preview_options=LinkPreviewOptions(is_disabled=True),
                ),
                log_extra=self._build_extra(
                    chat_id=chat_id,
                    message_id=message_id,
                    operation="edit_message_text",
                    extra=log_extra,
                ),
            )
        except BadRequest as exc:
            self._log_bad_request(chat_id, message_id, text, exc, extra=log_extra)
        except TelegramError as exc:
            self._logger.error(
                "TelegramError when editing message; will send a replacement",
                extra=self._build_extra(
                    chat_id=chat_id,
                    message_id=message_id,
                    operation="edit_message_text",
                    error_type=type(exc).__name__,
                    extra=log_extra,
                ),
            )
        else:
            async with self._cache_lock:
                self._last_edit_cache[cache_key] = text
            return message_id

        new_id = await self.send_message(
            chat_id,
            text,
            reply_markup=reply_markup,
            parse_mode=parse_mode,
            log_extra=log_extra,
        )
        async with self._cache_lock:
            self._last_edit_cache.pop(cache_key, None)
            if new_id:
                self._last_edit_cache[(chat_id, new_id)] = text

        if new_id and new_id != message_id:
            await self.delete_message(chat_id, message_id, log_extra=log_extra)
            self._logger.info(
                "Sent replacement message after edit failure",
                extra=self._build_extra(
                    chat_id=chat_id,
                    message_id=message_id,
                    operation="edit_message_text",
                    new_message_id=new_id,
                    extra=log_extra,
                ),
            )
        return new_id

    async def delete_message(
        self,
        chat_id: ChatId,
        message_id: MessageId,
        *,
        log_extra: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Delete one message; an already missing message counts as deleted."""

        try:
            await self._retry.call(
                "delete_message",
                lambda: self._bot.delete_message(chat_id=chat_id, message_id=message_id),
                log_extra=self._build_extra(
                    chat_id=chat_id,
                    message_id=message_id,
                    operation="delete_message",
                    extra=log_extra,
                ),
            )
        except TelegramError as exc:
            self._logger.warning(
                "Failed to delete message",
                extra=self._build_extra(
                    chat_id=chat_id,
                    message_id=message_id,
                    operation="delete_message",
                    error_type=type(exc).__name__,
                    error_message=str(exc),
                    extra=log_extra,
                ),
            )
            return False
        async with self._cache_lock:
            self._last_edit_cache.pop((chat_id, message_id), None)
        return True

    async def delete_messages(
        self,
        chat_id: ChatId,
        message_ids: Sequence[MessageId],
    ) -> bool:
        if not message_ids:
            return True
        try:
            await self._retry.call(
                "delete_messages",
                lambda: self._bot.delete_messages(
                    chat_id=chat_id, message_ids=list(message_ids)
                ),
                log_extra={"chat_id": chat_id, "batch_size": len(message_ids)},
            )
        except TelegramError as exc:
            self._logger.warning(
                "Bulk delete failed",
                extra=self._build_extra(
                    chat_id=chat_id,
                    message_id=None,
                    operation="delete_messages",
                    error_type=type(exc).__name__,
                    batch_size=len(message_ids),
                ),
            )
            return False
        async with self._cache_lock:
            for message_id in message_ids:
                self._last_edit_cache.pop((chat_id, message_id), None)
        return True

    async def answer_callback_query(
        self,
        callback_query_id: str,
        text: Optional[str] = None,
        *,
        show_alert: bool = False,
        log_extra: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        try:
            await self._retry.call(
                "answer_callback_query",
                lambda: self._bot.answer_callback_query(
                    callback_query_id=callback_query_id,
                    text=text,
                    show_alert=show_alert,
                ),
                log_extra=log_extra,
            )
        except BadRequest as exc:
            # Queries expire after a short while; late answers are dropped.
            self._logger.debug(
                "Callback query could not be answered",
                extra=self._build_extra(
                    chat_id=None,
                    message_id=None,
                    operation="answer_callback_query",
                    error_type=type(exc).__name__,
                    error_message=str(exc),
                    extra=log_extra,
                ),
            )
            return False
        except TelegramError as exc:
            self._logger.warning(
                "Failed to answer callback query",
                extra=self._build_extra(
                    chat_id=None,
                    message_id=None,
                    operation="answer_callback_query",
                    error_type=type(exc).__name__,
                    extra=log_extra,
                ),
            )
            return False
        return True

    async def get_chat_administrators(self, chat_id: ChatId) -> List[int]:
        """Return the user ids of the chat's administrators.

        Raises :class:`telegram.error.TelegramError` when the list cannot be
        fetched; callers decide on the fallback.
        """

        members = await self._retry.call(
            "get_chat_administrators",
            lambda: self._bot.get_chat_administrators(chat_id=chat_id),
            log_extra={"chat_id": chat_id},
        )
        return _member_ids(members or ())

    def _build_extra(
        self,
        *,
        chat_id: Optional[ChatId],
        message_id: Optional[MessageId],
        operation: str,
        extra: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "operation": operation,
        }
        if extra is not None:
            payload.update(dict(extra))
        payload.update(kwargs)
        return payload

    def _log_bad_request(
        self,
        chat_id: ChatId,
        message_id: MessageId,
        text: str,
        exc: BadRequest,
        *,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        preview = text
        max_preview_length = 120
        if len(preview) > max_preview_length:
            preview = preview[: max_preview_length - 3] + "..."
        self._logger.warning(
            "BadRequest when editing message; will send a replacement",
            extra=self._build_extra(
                chat_id=chat_id,
                message_id=message_id,
                operation="edit_message_text",
                error_type=type(exc).__name__,
                error_message=getattr(exc, "message", None) or str(exc),
                text_preview=preview,
                extra=extra,
            ),
        )


def _member_ids(members: Iterable[Any]) -> List[int]:
    ids: List[int] = []
    for member in members:
        user = getattr(member, "user", None)
        if user is not None and getattr(user, "id", None) is not None:
            ids.append(user.id)
    return ids
