"""In-memory registry holding at most one live session per chat."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterator, Optional

from sendapp.entities import (
    CancelReason,
    ChatId,
    MessageId,
    Session,
    SessionAlreadyActive,
)
from sendapp.session import cancel_session
from sendapp.utils.logging_helpers import LoggerLike


class SessionStore:
    """Keeps only collecting sessions; terminal ones are dropped on update.

    All methods are synchronous so a read-modify-write sequence from the
    event loop cannot interleave with another coroutine.
    """

    def __init__(self, *, logger: Optional[LoggerLike] = None) -> None:
        self._sessions: Dict[ChatId, Session] = {}
        self._logger = logger or logging.getLogger(__name__)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, chat_id: object) -> bool:
        return chat_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def active(self, chat_id: ChatId) -> Optional[Session]:
        session = self._sessions.get(chat_id)
        if session is None or not session.is_collecting:
            return None
        return session

    def has_active(self, chat_id: ChatId) -> bool:
        return self.active(chat_id) is not None

    def insert(self, session: Session) -> Session:
        if not session.is_collecting:
            raise ValueError("only collecting sessions can be stored")
        if self.has_active(session.chat_id):
            raise SessionAlreadyActive(session.chat_id)
        self._sessions[session.chat_id] = session
        self._logger.info(
            "Session opened",
            extra={
                "category": "session",
                "chat_id": session.chat_id,
                "session_id": session.session_id,
                "user_id": session.owner.user_id,
                "capacity": session.capacity,
            },
        )
        return session

    def update(self, session: Session) -> bool:
        """Commit ``session`` as the successor of the stored one.

        A terminal successor removes the entry. Returns ``False`` when the
        stored session was replaced or removed in the meantime.
        """

        current = self._sessions.get(session.chat_id)
        if current is None or current.session_id != session.session_id:
            self._logger.warning(
                "Discarding update for a session that is no longer stored",
                extra={
                    "category": "session",
                    "chat_id": session.chat_id,
                    "session_id": session.session_id,
                    "error_type": "StaleSession",
                },
            )
            return False
        if session.is_terminal:
            del self._sessions[session.chat_id]
            self._logger.info(
                "Session finished",
                extra={
                    "category": "session",
                    "chat_id": session.chat_id,
                    "session_id": session.session_id,
                    "outcome": type(session.state).__name__.lower(),
                },
            )
        else:
            self._sessions[session.chat_id] = session
        return True

    def set_display_message(
        self, chat_id: ChatId, session_id: str, message_id: Optional[MessageId]
    ) -> Optional[Session]:
        current = self.active(chat_id)
        if current is None or current.session_id != session_id:
            return None
        updated = replace(current, display_message_id=message_id)
        self._sessions[chat_id] = updated
        return updated

    def cancel(
        self,
        chat_id: ChatId,
        reason: CancelReason,
        *,
        session_id: Optional[str] = None,
    ) -> Optional[Session]:
        """Cancel the collecting session in ``chat_id`` and drop it.

        With ``session_id`` only that particular session is cancelled.
        """

        current = self.active(chat_id)
        if current is None:
            return None
        if session_id is not None and current.session_id != session_id:
            return None
        cancelled = cancel_session(current, reason)
        self.update(cancelled)
        return cancelled
