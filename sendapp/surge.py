"""Per-chat demand tracking that raises the stake of busy chats."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from sendapp.entities import Amount, ChatId, SurgeState
from sendapp.scheduler import Clock
from sendapp.session_store import SessionStore
from sendapp.utils.logging_helpers import LoggerLike


class SurgeTracker:
    """Counts /guess requests that arrive while a chat is still "hot".

    A request inside ``cooldown_seconds`` of the previous one bumps the
    multiplier, unless a session is already collecting. A request after the
    window resets it. Either way the activity timestamp moves to now.
    """

    def __init__(
        self,
        *,
        session_store: SessionStore,
        clock: Clock,
        cooldown_seconds: float,
        increase_per_step: Amount,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._sessions = session_store
        self._clock = clock
        self._cooldown = float(cooldown_seconds)
        self._increase = int(increase_per_step)
        self._logger = logger or logging.getLogger(__name__)
        self._states: Dict[ChatId, SurgeState] = {}

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown

    @property
    def increase_per_step(self) -> Amount:
        return self._increase

    def state(self, chat_id: ChatId) -> Optional[SurgeState]:
        return self._states.get(chat_id)

    def _within_window(self, state: SurgeState, now: float) -> bool:
        return now - state.last_activity_at < self._cooldown

    def record_activity(self, chat_id: ChatId) -> int:
        now = self._clock.monotonic()
        previous = self._states.get(chat_id)

        if previous is None:
            multiplier = 0
        elif self._sessions.has_active(chat_id):
            multiplier = previous.multiplier
        elif self._within_window(previous, now):
            multiplier = previous.multiplier + 1
        else:
            multiplier = 0

        self._states[chat_id] = SurgeState(multiplier=multiplier, last_activity_at=now)
        if previous is None or multiplier != previous.multiplier:
            self._logger.debug(
                "Surge multiplier changed",
                extra={
                    "category": "surge",
                    "chat_id": chat_id,
                    "surge_multiplier": multiplier,
                },
            )
        return multiplier

    def multiplier(self, chat_id: ChatId) -> int:
        state = self._states.get(chat_id)
        if state is None or not self._within_window(state, self._clock.monotonic()):
            return 0
        return state.multiplier

    def current_stake_floor(self, chat_id: ChatId, base: Amount) -> Amount:
        return base + self.multiplier(chat_id) * self._increase
