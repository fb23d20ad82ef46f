"""Cached lookup of chat administrators."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, FrozenSet, Optional

from cachetools import TTLCache
from telegram.error import TelegramError

from sendapp.entities import ChatId, UserId
from sendapp.utils.logging_helpers import LoggerLike
from sendapp.utils.telegram_safeops import TelegramSafeOps


class AdminDirectory:
    """Answer "is this user an admin here?" with at most one fetch per TTL.

    When Telegram cannot be reached the last successfully fetched list is
    used, and a chat never fetched counts as having no admins.
    """

    def __init__(
        self,
        safe_ops: TelegramSafeOps,
        *,
        ttl_seconds: float = 3600,
        maxsize: int = 1024,
        timer: Optional[Callable[[], float]] = None,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._safe_ops = safe_ops
        self._cache: TTLCache = TTLCache(
            maxsize=maxsize, ttl=ttl_seconds, timer=timer or time.monotonic
        )
        self._last_known: Dict[ChatId, FrozenSet[UserId]] = {}
        self._logger = logger or logging.getLogger(__name__)

    async def admin_ids(self, chat_id: ChatId) -> FrozenSet[UserId]:
        cached = self._cache.get(chat_id)
        if cached is not None:
            return cached
        try:
            ids = frozenset(await self._safe_ops.get_chat_administrators(chat_id))
        except TelegramError as exc:
            self._logger.warning(
                "Could not fetch chat administrators; using last known list",
                extra={
                    "category": "admins",
                    "chat_id": chat_id,
                    "error_type": type(exc).__name__,
                },
            )
            return self._last_known.get(chat_id, frozenset())
        self._cache[chat_id] = ids
        self._last_known[chat_id] = ids
        return ids

    async def is_admin(self, chat_id: ChatId, user_id: UserId) -> bool:
        return user_id in await self.admin_ids(chat_id)

    def invalidate(self, chat_id: ChatId) -> None:
        self._cache.pop(chat_id, None)
