"""Post-game sendtag cooldown.

After a winner is announced the chat gets a short quiet period in which
messages carrying a sendtag are removed, so the payout is not buried under
people advertising their own tags.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional

from sendapp import texts
from sendapp.entities import ChatId, MessageId
from sendapp.scheduler import DeferredScheduler
from sendapp.sendbotview import SendBotViewer
from sendapp.utils.logging_helpers import LoggerLike


@dataclass
class TagCooldown:
    chat_id: ChatId
    ends_at: float
    last_refresh_at: float
    message_id: Optional[MessageId] = None


class TagCooldownManager:
    def __init__(
        self,
        view: SendBotViewer,
        scheduler: DeferredScheduler,
        *,
        duration_seconds: float = 30,
        refresh_interval: float = 1.0,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._view = view
        self._scheduler = scheduler
        self._duration = float(duration_seconds)
        self._refresh_interval = float(refresh_interval)
        self._logger = logger or logging.getLogger(__name__)
        self._cooldowns: Dict[ChatId, TagCooldown] = {}

    def is_active(self, chat_id: ChatId) -> bool:
        return chat_id in self._cooldowns

    def get(self, chat_id: ChatId) -> Optional[TagCooldown]:
        return self._cooldowns.get(chat_id)

    def _seconds_left(self, cooldown: TagCooldown) -> int:
        return math.ceil(cooldown.ends_at - self._scheduler.clock.monotonic())

    async def start(self, chat_id: ChatId) -> TagCooldown:
        self.end(chat_id)
        now = self._scheduler.clock.monotonic()
        cooldown = TagCooldown(
            chat_id=chat_id,
            ends_at=now + self._duration,
            last_refresh_at=now,
        )
        self._cooldowns[chat_id] = cooldown
        self._scheduler.schedule(
            ("tag_cooldown", chat_id),
            self._duration,
            lambda: self._expire(chat_id, cooldown),
        )
        message_id = await self._view.send_message(
            chat_id, texts.cooldown_notice(int(self._duration))
        )
        if self._cooldowns.get(chat_id) is not cooldown:
            # Ended while the notice was in flight.
            self._view.delete_message(chat_id, message_id)
            return cooldown
        cooldown.message_id = message_id
        self._logger.info(
            "Sendtag cooldown started",
            extra={
                "category": "cooldown",
                "chat_id": chat_id,
                "duration_seconds": self._duration,
            },
        )
        return cooldown

    def end(self, chat_id: ChatId) -> None:
        cooldown = self._cooldowns.pop(chat_id, None)
        if cooldown is not None and cooldown.message_id is not None:
            self._view.delete_message(chat_id, cooldown.message_id)

    async def refresh(self, chat_id: ChatId) -> bool:
        """Repost the notice with the time left, at most once per interval."""

        cooldown = self._cooldowns.get(chat_id)
        if cooldown is None:
            return False
        now = self._scheduler.clock.monotonic()
        if now - cooldown.last_refresh_at < self._refresh_interval:
            return False
        cooldown.last_refresh_at = now
        message_id = await self._view.send_message(
            chat_id, texts.cooldown_notice(self._seconds_left(cooldown))
        )
        if self._cooldowns.get(chat_id) is not cooldown:
            self._view.delete_message(chat_id, message_id)
            return False
        previous, cooldown.message_id = cooldown.message_id, message_id
        self._view.delete_message(chat_id, previous)
        return True

    async def _expire(self, chat_id: ChatId, cooldown: TagCooldown) -> None:
        if self._cooldowns.get(chat_id) is not cooldown:
            return
        self.end(chat_id)
