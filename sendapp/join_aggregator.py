"""Collects /join taps over a short window and admits them in one batch.

Telegram delivers callback queries concurrently, so each tap only records a
candidate. The first candidate of a window schedules the resolution; every
tap that arrives before it fires lands in the same batch. Resolution admits
candidates in arrival order, commits the session once, then fans out the
acknowledgements and a single chat message update.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from sendapp.entities import (
    AckToken,
    ChatId,
    InternalError,
    JoinOutcome,
    JoinOutcomeKind,
    JoinSubmission,
    Player,
    Session,
    UserId,
)
from sendapp.metrics import JOIN_BATCH_SIZE, JOIN_OUTCOMES_TOTAL, SESSIONS_TOTAL
from sendapp.notifier import JoinNotifier
from sendapp.scheduler import DeferredScheduler
from sendapp.session import add_player
from sendapp.session_store import SessionStore
from sendapp.tags import normalize_tag
from sendapp.utils.logging_helpers import LoggerLike


SessionCallback = Callable[[Session], Awaitable[None]]


class PendingJoinBatch:
    """Candidates for one chat, in first-seen order, keyed by user."""

    def __init__(self, chat_id: ChatId, resolve_at: float) -> None:
        self.chat_id = chat_id
        self.resolve_at = resolve_at
        self._candidates: "OrderedDict[UserId, Player]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._candidates)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._candidates

    def upsert(self, candidate: Player) -> Optional[AckToken]:
        """Record ``candidate``; a repeat tap keeps its slot but takes the new token.

        Returns the token that was replaced, if any.
        """

        previous = self._candidates.get(candidate.user_id)
        # Assigning to an existing key keeps its original position.
        self._candidates[candidate.user_id] = candidate
        if previous is not None and previous.join_token != candidate.join_token:
            return previous.join_token
        return None

    def candidates(self) -> List[Player]:
        return list(self._candidates.values())


class JoinAggregator:
    def __init__(
        self,
        *,
        session_store: SessionStore,
        scheduler: DeferredScheduler,
        notifier: JoinNotifier,
        collection_window_seconds: float = 1.0,
        on_completed: Optional[SessionCallback] = None,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._store = session_store
        self._scheduler = scheduler
        self._notifier = notifier
        self._window = float(collection_window_seconds)
        self._on_completed = on_completed
        self._logger = logger or logging.getLogger(__name__)
        self._pending: Dict[ChatId, PendingJoinBatch] = {}

    def pending_batch(self, chat_id: ChatId) -> Optional[PendingJoinBatch]:
        return self._pending.get(chat_id)

    def submit_join(
        self,
        chat_id: ChatId,
        user_id: UserId,
        raw_display_name: Optional[str],
        ack_token: AckToken,
    ) -> JoinSubmission:
        """Record a join request without awaiting anything.

        Rejections are returned for the caller to acknowledge right away. A
        ``PROCESSING`` outcome means the token will be answered when the
        batch resolves.
        """

        tag = normalize_tag(raw_display_name)
        if tag is None:
            return self._reject(chat_id, user_id, JoinOutcomeKind.MISSING_TAG)

        session = self._store.active(chat_id)
        if session is None:
            return self._reject(chat_id, user_id, JoinOutcomeKind.NO_ACTIVE_GAME)
        if session.has_player(user_id):
            return self._reject(chat_id, user_id, JoinOutcomeKind.ALREADY_JOINED)

        batch = self._pending.get(chat_id)
        if batch is None:
            batch = PendingJoinBatch(
                chat_id, self._scheduler.clock.monotonic() + self._window
            )
            self._pending[chat_id] = batch
            self._scheduler.schedule(
                ("join_batch", chat_id),
                self._window,
                lambda: self._resolve_batch(chat_id, batch),
            )

        superseded = batch.upsert(Player(user_id=user_id, tag=tag, join_token=ack_token))
        return JoinSubmission(
            outcome=JoinOutcome(JoinOutcomeKind.PROCESSING),
            superseded_token=superseded,
        )

    def _reject(
        self, chat_id: ChatId, user_id: UserId, kind: JoinOutcomeKind
    ) -> JoinSubmission:
        JOIN_OUTCOMES_TOTAL.labels(kind.value).inc()
        self._logger.debug(
            "Join rejected",
            extra={
                "category": "join",
                "chat_id": chat_id,
                "user_id": user_id,
                "outcome": kind.value,
            },
        )
        return JoinSubmission(outcome=JoinOutcome(kind))

    @staticmethod
    def admit_batch(
        session: Session, candidates: List[Player]
    ) -> Tuple[Session, List[Tuple[Player, JoinOutcome]]]:
        """Admit ``candidates`` in order and decide what each one is told."""

        results: List[Tuple[Player, JoinOutcome]] = []
        overflow_rank = 0
        for candidate in candidates:
            overflow_rank += 1
            session, position = add_player(session, candidate)
            if position > 0:
                outcome = JoinOutcome(
                    JoinOutcomeKind.ADMITTED,
                    position=position,
                    capacity=session.capacity,
                )
            elif session.has_player(candidate.user_id):
                outcome = JoinOutcome(JoinOutcomeKind.ALREADY_JOINED)
            else:
                outcome = JoinOutcome(JoinOutcomeKind.OVERFLOW, position=overflow_rank)
            results.append((candidate, outcome))

        winner = session.winner
        if winner is not None:
            results = [
                (
                    candidate,
                    JoinOutcome(
                        JoinOutcomeKind.WON
                        if candidate.user_id == winner.user_id
                        else JoinOutcomeKind.LOST,
                        position=outcome.position,
                        capacity=outcome.capacity,
                    )
                    if outcome.kind is JoinOutcomeKind.ADMITTED
                    else outcome,
                )
                for candidate, outcome in results
            ]
        return session, results

    async def _resolve_batch(self, chat_id: ChatId, batch: PendingJoinBatch) -> None:
        if self._pending.get(chat_id) is batch:
            del self._pending[chat_id]
        candidates = batch.candidates()
        if not candidates:
            return
        JOIN_BATCH_SIZE.observe(len(candidates))

        session = self._store.active(chat_id)
        if session is None:
            await self._acknowledge_all(
                chat_id,
                [(c, JoinOutcome(JoinOutcomeKind.NO_ACTIVE_GAME)) for c in candidates],
            )
            return

        log = self._logger
        try:
            session, results = self.admit_batch(session, candidates)
            self._store.update(session)
        except Exception as exc:
            log.exception(
                "Join batch violated a session invariant; cancelling session",
                extra={
                    "category": "join",
                    "chat_id": chat_id,
                    "session_id": session.session_id,
                    "error_type": type(exc).__name__,
                },
            )
            cancelled = self._store.cancel(
                chat_id, InternalError(str(exc)), session_id=session.session_id
            )
            SESSIONS_TOTAL.labels("failed").inc()
            await self._acknowledge_all(
                chat_id,
                [(c, JoinOutcome(JoinOutcomeKind.FAILED)) for c in candidates],
            )
            if cancelled is not None:
                await self._guard(
                    "announce_cancelled",
                    chat_id,
                    self._notifier.announce_cancelled(cancelled),
                )
            return

        log.info(
            "Join batch resolved",
            extra={
                "category": "join",
                "chat_id": chat_id,
                "session_id": session.session_id,
                "batch_size": len(candidates),
                "players": len(session.players),
                "capacity": session.capacity,
                "outcome": "completed" if session.winner else "collecting",
            },
        )
        await self._acknowledge_all(chat_id, results)
        await self._publish(session)

    async def _publish(self, session: Session) -> None:
        if session.is_collecting:
            # The stored session may have moved on while acknowledgements ran.
            current = self._store.active(session.chat_id)
            if current is None or current.session_id != session.session_id:
                self._logger.debug(
                    "Skipping progress edit for a session that is no longer collecting",
                    extra={
                        "category": "join",
                        "chat_id": session.chat_id,
                        "session_id": session.session_id,
                    },
                )
                return
            message_id = await self._guard(
                "update_progress",
                current.chat_id,
                self._notifier.update_progress(current),
            )
            if message_id and message_id != current.display_message_id:
                self._store.set_display_message(
                    current.chat_id, current.session_id, message_id
                )
            return

        await self._guard(
            "announce_winner",
            session.chat_id,
            self._notifier.announce_winner(session),
        )
        if self._on_completed is not None:
            await self._guard(
                "on_completed", session.chat_id, self._on_completed(session)
            )

    async def _acknowledge_all(
        self, chat_id: ChatId, results: List[Tuple[Player, JoinOutcome]]
    ) -> None:
        for _, outcome in results:
            JOIN_OUTCOMES_TOTAL.labels(outcome.kind.value).inc()
        replies = await asyncio.gather(
            *(
                self._notifier.acknowledge(chat_id, candidate.join_token, outcome)
                for candidate, outcome in results
            ),
            return_exceptions=True,
        )
        for (candidate, _), reply in zip(results, replies):
            if isinstance(reply, Exception):
                self._logger.warning(
                    "Failed to acknowledge join",
                    extra={
                        "category": "join",
                        "chat_id": chat_id,
                        "user_id": candidate.user_id,
                        "error_type": type(reply).__name__,
                    },
                )

    async def _guard(self, operation: str, chat_id: ChatId, awaitable: Awaitable):
        """Await an outbound call; failures are logged and yield ``None``."""

        try:
            return await awaitable
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.error(
                "Outbound update failed",
                extra={
                    "category": "join",
                    "chat_id": chat_id,
                    "operation": operation,
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return None
