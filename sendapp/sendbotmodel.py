#!/usr/bin/env python3

import logging
import random
from typing import Optional

from telegram import Update
from telegram.ext import ContextTypes

from sendapp import texts
from sendapp.admin_directory import AdminDirectory
from sendapp.amounts import TOKENS, TokenType, parse_amount, to_smallest_units
from sendapp.commands import parse_guess_args, parse_send_command
from sendapp.config import Config
from sendapp.cooldown import TagCooldownManager
from sendapp.entities import (
    AdminCancel,
    ChatId,
    Expired,
    InvalidCapacity,
    JoinOutcomeKind,
    OwnerCancel,
    Session,
    SessionAlreadyActive,
    SessionOwner,
)
from sendapp.join_aggregator import JoinAggregator
from sendapp.links import build_payment_link
from sendapp.metrics import SESSIONS_TOTAL
from sendapp.moderation import SpamModerator
from sendapp.notifier import GameNotifier, outcome_text
from sendapp.scheduler import DeferredScheduler
from sendapp.sendbotview import SendBotViewer, build_url_keyboard
from sendapp.session import create_session
from sendapp.session_store import SessionStore
from sendapp.surge import SurgeTracker
from sendapp.utils.logging_helpers import ContextLoggerAdapter, add_context


class SendBotModel:
    """Handlers behind the bot's commands and the /join button."""

    def __init__(
        self,
        *,
        view: SendBotViewer,
        cfg: Config,
        scheduler: DeferredScheduler,
        session_store: SessionStore,
        surge_tracker: SurgeTracker,
        join_aggregator: JoinAggregator,
        notifier: GameNotifier,
        admin_directory: AdminDirectory,
        cooldowns: TagCooldownManager,
        moderator: SpamModerator,
        rng: Optional[random.Random] = None,
        logger: Optional[ContextLoggerAdapter] = None,
    ) -> None:
        self._view = view
        self._cfg = cfg
        self._scheduler = scheduler
        self._sessions = session_store
        self._surge = surge_tracker
        self._aggregator = join_aggregator
        self._notifier = notifier
        self._admins = admin_directory
        self._cooldowns = cooldowns
        self._moderator = moderator
        self._rng = rng or random.SystemRandom()
        self._logger = add_context(logger or logging.getLogger(__name__))

        decimals = TOKENS[TokenType.SEND].decimals
        self._min_stake = to_smallest_units(cfg.MIN_GUESS_AMOUNT, decimals)

    async def help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        message = update.effective_message
        if chat is None or message is None:
            return
        await self._view.send_markdown(
            chat.id,
            texts.help_text(
                self._cfg.MIN_GUESS_AMOUNT,
                self._cfg.SURGE_INCREASE,
                self._cfg.SURGE_COOLDOWN_SECONDS,
            ),
        )

    async def send(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        message = update.effective_message
        user = update.effective_user
        if chat is None or message is None or user is None:
            return

        reply = message.reply_to_message
        replied_user = reply.from_user if reply is not None else None
        command = parse_send_command(
            message.text or "",
            reply_display_name=replied_user.full_name if replied_user else None,
            is_reply=reply is not None,
            is_reply_to_self=replied_user is not None and replied_user.id == user.id,
        )
        self._view.delete_message(chat.id, message.message_id, bot_owned=False)
        if command is None:
            return

        token = TOKENS[command.token]
        parsed = parse_amount(command.amount, token.decimals) if command.amount else None
        url = build_payment_link(
            command.recipient,
            parsed.smallest_units if parsed else None,
            token,
        )
        text = texts.send_card(
            sender_name=user.first_name,
            recipient=command.recipient,
            amount=parsed.display if parsed else None,
            token=command.token,
            note=command.note,
            reply_user_id=replied_user.id if replied_user else None,
        )
        await self._view.send_markdown(
            chat.id,
            text,
            reply_markup=build_url_keyboard([(texts.SEND_BUTTON, url)]),
            reply_to_message_id=reply.message_id if reply is not None else None,
        )

    async def guess(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        message = update.effective_message
        user = update.effective_user
        if chat is None or message is None or user is None:
            return
        if message.reply_to_message is not None:
            return

        chat_id = chat.id
        log = self._logger.bind(chat_id=chat_id, user_id=user.id, event_type="guess")

        self._surge.record_activity(chat_id)
        self._cooldowns.end(chat_id)

        existing = self._sessions.active(chat_id)
        if existing is not None:
            await self._repost_progress(existing)
            self._view.delete_message(chat_id, message.message_id, bot_owned=False)
            return

        request = parse_guess_args(
            context.args or [],
            min_amount=self._cfg.MIN_GUESS_AMOUNT,
            min_players=self._cfg.MIN_PLAYERS,
            max_players=self._cfg.MAX_PLAYERS,
        )
        capacity = request.capacity or self._rng.randint(
            self._cfg.MIN_PLAYERS, self._cfg.MAX_PLAYERS
        )
        # The prize is raised to the surge floor; the surge share of the
        # total is what create_session derives from the surge state.
        decimals = TOKENS[TokenType.SEND].decimals
        floor = self._surge.current_stake_floor(chat_id, self._min_stake)
        requested = 0
        if request.amount is not None:
            requested = to_smallest_units(request.amount, decimals)
        stake_total = max(requested, floor)
        stake_base = stake_total - (floor - self._min_stake)

        try:
            session = create_session(
                chat_id,
                SessionOwner(user_id=user.id, display_name=user.first_name),
                capacity,
                stake_base,
                self._surge.state(chat_id),
                now=self._scheduler.clock.monotonic(),
                cooldown_seconds=self._surge.cooldown_seconds,
                increase_per_step=self._surge.increase_per_step,
                rng=self._rng,
            )
            self._sessions.insert(session)
        except (InvalidCapacity, SessionAlreadyActive) as exc:
            log.warning(
                "Could not open a guess session",
                extra={"error_type": type(exc).__name__},
            )
            await self._view.send_message(chat_id, texts.START_FAILED)
            return

        SESSIONS_TOTAL.labels("started").inc()
        message_id = await self._notifier.post_progress(session)
        self._sessions.set_display_message(chat_id, session.session_id, message_id)
        self._scheduler.schedule(
            ("session_expiry", chat_id),
            self._cfg.SESSION_TTL_SECONDS,
            lambda: self._expire_session(chat_id, session.session_id),
        )
        self._view.delete_message(chat_id, message.message_id, bot_owned=False)
        log.info(
            "Guess session started",
            extra={
                "session_id": session.session_id,
                "capacity": capacity,
                "surge_multiplier": session.surge_multiplier,
            },
        )

    async def _repost_progress(self, session: Session) -> None:
        message_id = await self._notifier.post_progress(session)
        if message_id is None:
            return
        previous = session.display_message_id
        if self._sessions.set_display_message(
            session.chat_id, session.session_id, message_id
        ) is None:
            # The session finished while the message was being sent.
            self._view.delete_message(session.chat_id, message_id)
            return
        self._view.delete_message(session.chat_id, previous)

    async def join_game(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        chat = update.effective_chat
        user = update.effective_user
        if query is None or chat is None or user is None:
            return

        submission = self._aggregator.submit_join(
            chat.id, user.id, user.full_name, query.id
        )
        if submission.superseded_token:
            await self._view.answer_callback(submission.superseded_token, texts.PROCESSING)
        if submission.outcome.kind is not JoinOutcomeKind.PROCESSING:
            await self._view.answer_callback(query.id, outcome_text(submission.outcome))

    async def kill(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        message = update.effective_message
        user = update.effective_user
        if chat is None or message is None or user is None:
            return

        chat_id = chat.id
        self._view.delete_message(chat_id, message.message_id, bot_owned=False)
        session = self._sessions.active(chat_id)
        if session is None:
            return

        is_admin = await self._admins.is_admin(chat_id, user.id)
        is_owner = user.id == session.owner.user_id
        if not is_admin and not is_owner:
            return

        reason = AdminCancel(admin_id=user.id) if is_admin else OwnerCancel(user_id=user.id)
        cancelled = self._sessions.cancel(chat_id, reason, session_id=session.session_id)
        if cancelled is None:
            return
        SESSIONS_TOTAL.labels("killed").inc()
        await self._notifier.announce_cancelled(cancelled, actor_name=user.first_name)

    async def moderate(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        message = update.effective_message
        user = update.effective_user
        if chat is None or message is None or user is None or user.is_bot:
            return
        await self._moderator.inspect_message(
            chat.id, message.message_id, user.id, message.text
        )

    async def on_session_completed(self, session: Session) -> None:
        SESSIONS_TOTAL.labels("completed").inc()
        await self._cooldowns.start(session.chat_id)

    async def _expire_session(self, chat_id: ChatId, session_id: str) -> None:
        cancelled = self._sessions.cancel(chat_id, Expired(), session_id=session_id)
        if cancelled is None:
            return
        SESSIONS_TOTAL.labels("expired").inc()
        self._logger.info(
            "Guess session expired",
            extra={"chat_id": chat_id, "session_id": session_id, "event_type": "expiry"},
        )
        await self._notifier.announce_cancelled(cancelled)
