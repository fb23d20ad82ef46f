"""Removal of sendtag spam from group chats."""

from __future__ import annotations

import logging
from typing import Optional

from sendapp.admin_directory import AdminDirectory
from sendapp.cooldown import TagCooldownManager
from sendapp.entities import ChatId, MessageId, UserId
from sendapp.metrics import MESSAGES_MODERATED_TOTAL
from sendapp.sendbotview import SendBotViewer
from sendapp.session_store import SessionStore
from sendapp.tags import find_tags
from sendapp.utils.logging_helpers import LoggerLike


class SpamModerator:
    """Deletes chat messages that advertise sendtags at the wrong time.

    Two or more tags in one message are always removed. A single tag is
    removed while a game is collecting or the post-game cooldown runs.
    Administrators are never moderated.
    """

    def __init__(
        self,
        view: SendBotViewer,
        *,
        session_store: SessionStore,
        cooldowns: TagCooldownManager,
        admin_directory: AdminDirectory,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._view = view
        self._sessions = session_store
        self._cooldowns = cooldowns
        self._admins = admin_directory
        self._logger = logger or logging.getLogger(__name__)

    def classify(self, chat_id: ChatId, text: Optional[str]) -> Optional[str]:
        tags = find_tags(text)
        if not tags:
            return None
        if len(tags) >= 2:
            return "multiple_tags"
        if self._cooldowns.is_active(chat_id):
            return "cooldown"
        if self._sessions.has_active(chat_id):
            return "active_game"
        return None

    async def inspect_message(
        self,
        chat_id: ChatId,
        message_id: MessageId,
        user_id: UserId,
        text: Optional[str],
    ) -> bool:
        reason = self.classify(chat_id, text)
        if reason is None:
            return False
        if await self._admins.is_admin(chat_id, user_id):
            return False

        self._view.delete_message(chat_id, message_id, bot_owned=False)
        MESSAGES_MODERATED_TOTAL.labels(reason).inc()
        self._logger.debug(
            "Removed sendtag message",
            extra={
                "category": "moderation",
                "chat_id": chat_id,
                "message_id": message_id,
                "user_id": user_id,
                "outcome": reason,
            },
        )
        if reason == "cooldown":
            await self._cooldowns.refresh(chat_id)
        return True
