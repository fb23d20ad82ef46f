"""Background queue that removes chat messages in batches."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Deque, List, Optional, Tuple

from sendapp.entities import ChatId, MessageId
from sendapp.utils.logging_helpers import LoggerLike
from sendapp.utils.telegram_safeops import TelegramSafeOps


class MessageDeletionQueue:
    """Deletes queued messages up to ``batch_size`` at a time per chat.

    Bot-owned messages are queued ahead of user messages so stale game
    messages disappear first. When a bulk delete fails, each message of the
    batch is retried on its own.
    """

    def __init__(
        self,
        safe_ops: TelegramSafeOps,
        *,
        batch_size: int = 10,
        batch_delay: float = 0.1,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._safe_ops = safe_ops
        self._batch_size = max(1, int(batch_size))
        self._batch_delay = max(0.0, float(batch_delay))
        self._logger = logger or logging.getLogger(__name__)
        self._queue: Deque[Tuple[ChatId, MessageId]] = deque()
        self._worker: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(
        self, chat_id: ChatId, message_id: Optional[MessageId], *, priority: bool = False
    ) -> None:
        if not message_id:
            return
        item = (chat_id, message_id)
        if item in self._queue:
            return
        if priority:
            self._queue.appendleft(item)
        else:
            self._queue.append(item)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    def _next_batch(self) -> Tuple[ChatId, List[MessageId]]:
        chat_id, first = self._queue.popleft()
        batch = [first]
        remaining: Deque[Tuple[ChatId, MessageId]] = deque()
        while self._queue and len(batch) < self._batch_size:
            item = self._queue.popleft()
            if item[0] == chat_id:
                batch.append(item[1])
            else:
                remaining.append(item)
        self._queue.extendleft(reversed(remaining))
        return chat_id, batch

    async def _drain(self) -> None:
        while self._queue:
            chat_id, batch = self._next_batch()
            deleted = await self._safe_ops.delete_messages(chat_id, batch)
            if not deleted:
                self._logger.info(
                    "Falling back to single message deletes",
                    extra={
                        "category": "deletion",
                        "chat_id": chat_id,
                        "batch_size": len(batch),
                    },
                )
                for message_id in batch:
                    await self._safe_ops.delete_message(chat_id, message_id)
            if self._queue and self._batch_delay:
                await asyncio.sleep(self._batch_delay)

    async def flush(self) -> None:
        """Wait until everything queued so far has been processed."""

        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    async def close(self) -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._queue.clear()
