"""Outbound side effects of a session: acknowledgements and chat messages."""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Tuple

from telegram.constants import ParseMode

from sendapp import texts
from sendapp.amounts import TOKENS, TokenType, format_amount
from sendapp.entities import (
    AckToken,
    ChatId,
    JoinOutcome,
    JoinOutcomeKind,
    MessageId,
    Session,
)
from sendapp.links import build_basescan_link, build_payment_link
from sendapp.profiles import SendProfile, SendProfileClient
from sendapp.sendbotview import SendBotViewer, build_join_keyboard, build_url_keyboard
from sendapp.session import describe_cancel_reason, describe_session
from sendapp.utils.logging_helpers import LoggerLike


class JoinNotifier(Protocol):
    async def acknowledge(
        self, chat_id: ChatId, ack_token: AckToken, outcome: JoinOutcome
    ) -> None:
        ...

    async def update_progress(self, session: Session) -> Optional[MessageId]:
        ...

    async def announce_winner(self, session: Session) -> None:
        ...

    async def announce_cancelled(
        self, session: Session, actor_name: Optional[str] = None
    ) -> None:
        ...


def outcome_text(outcome: JoinOutcome) -> str:
    kind = outcome.kind
    if kind is JoinOutcomeKind.PROCESSING:
        return texts.PROCESSING
    if kind is JoinOutcomeKind.MISSING_TAG:
        return texts.MISSING_TAG
    if kind is JoinOutcomeKind.NO_ACTIVE_GAME:
        return texts.NO_ACTIVE_GAME
    if kind is JoinOutcomeKind.ALREADY_JOINED:
        return texts.ALREADY_JOINED
    if kind is JoinOutcomeKind.ADMITTED:
        return texts.admitted(outcome.position, outcome.capacity)
    if kind is JoinOutcomeKind.WON:
        return texts.won(outcome.position, outcome.capacity)
    if kind is JoinOutcomeKind.LOST:
        return texts.lost(outcome.position, outcome.capacity)
    if kind is JoinOutcomeKind.OVERFLOW:
        return texts.overflow(outcome.position)
    return texts.JOIN_FAILED


class GameNotifier:
    """Renders sessions into the chat through :class:`SendBotViewer`."""

    def __init__(
        self,
        view: SendBotViewer,
        *,
        profiles: Optional[SendProfileClient] = None,
        token: TokenType = TokenType.SEND,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._view = view
        self._profiles = profiles
        self._token = token
        self._logger = logger or logging.getLogger(__name__)

    async def acknowledge(
        self, chat_id: ChatId, ack_token: AckToken, outcome: JoinOutcome
    ) -> None:
        await self._view.answer_callback(ack_token, outcome_text(outcome))

    async def post_progress(self, session: Session) -> Optional[MessageId]:
        return await self._view.send_message(
            session.chat_id,
            describe_session(session, self._token),
            reply_markup=build_join_keyboard(),
        )

    async def update_progress(self, session: Session) -> Optional[MessageId]:
        return await self._view.edit_message_text(
            session.chat_id,
            session.display_message_id,
            describe_session(session, self._token),
            reply_markup=build_join_keyboard(),
        )

    async def announce_winner(self, session: Session) -> None:
        winner = session.winner
        if winner is None:
            raise ValueError(f"session {session.session_id} has no winner")

        decimals = TOKENS[self._token].decimals
        self._view.delete_message(session.chat_id, session.display_message_id)

        buttons: List[Tuple[str, str]] = [
            (
                texts.SEND_BUTTON,
                build_payment_link(winner.tag, session.stake_total, TOKENS[self._token]),
            )
        ]
        profile = await self._lookup_profile(winner.tag)
        if profile is not None and profile.address:
            buttons.append(
                (texts.BASESCAN_BUTTON, build_basescan_link(profile.address))
            )

        surge_amount = None
        if session.stake_surge > 0:
            surge_amount = format_amount(session.stake_surge, decimals)
        text = texts.winner_announcement(
            owner_id=session.owner.user_id,
            owner_name=session.owner.display_name,
            winner_id=winner.user_id,
            winner_tag=winner.tag,
            winning_position=session.winning_position,
            capacity=session.capacity,
            amount=format_amount(session.stake_total, decimals),
            surge_amount=surge_amount,
            token=self._token,
        )
        await self._view.send_message(
            session.chat_id,
            text,
            reply_markup=build_url_keyboard(buttons),
            parse_mode=ParseMode.MARKDOWN,
        )

    async def announce_cancelled(
        self, session: Session, actor_name: Optional[str] = None
    ) -> None:
        reason = getattr(session.state, "reason", None)
        if reason is None:
            return
        await self._view.edit_message_text(
            session.chat_id,
            session.display_message_id,
            describe_cancel_reason(reason, actor_name),
        )

    async def _lookup_profile(self, tag: str) -> Optional[SendProfile]:
        if self._profiles is None:
            return None
        result = await self._profiles.lookup(tag)
        if isinstance(result, SendProfile):
            return result
        if result is not None:
            self._logger.info(
                "Winner tag is not a registered sendtag",
                extra={"category": "profiles", "tag": tag},
            )
        return None
