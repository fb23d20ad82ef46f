"""Pure state transitions for a /guess session.

Nothing here performs I/O. Every transition returns a new :class:`Session`
and leaves the input untouched, so the aggregator can compute a whole
batch before committing it to the store.
"""

from __future__ import annotations

import random
from dataclasses import replace
from typing import Optional, Tuple

from sendapp.amounts import TOKENS, TokenType, format_amount
from sendapp.entities import (
    AdminCancel,
    Amount,
    CancelReason,
    Cancelled,
    ChatId,
    Completed,
    Expired,
    InternalError,
    InvalidCapacity,
    OwnerCancel,
    Player,
    Session,
    SessionOwner,
    SurgeState,
)


_SYSTEM_RANDOM = random.SystemRandom()


def create_session(
    chat_id: ChatId,
    owner: SessionOwner,
    capacity: int,
    stake_base: Amount,
    surge: Optional[SurgeState] = None,
    *,
    now: float,
    cooldown_seconds: float,
    increase_per_step: Amount,
    rng: Optional[random.Random] = None,
) -> Session:
    """Open a session and draw its winning position in ``[1, capacity]``.

    The surge premium only applies while ``surge`` is still inside its
    cooldown window at ``now``.
    """

    if capacity < 1:
        raise InvalidCapacity(capacity)
    if stake_base < 0:
        raise ValueError(f"stake must not be negative, got {stake_base}")

    rng = rng or _SYSTEM_RANDOM
    winning_position = rng.randint(1, capacity)

    multiplier = 0
    if surge is not None and now - surge.last_activity_at < cooldown_seconds:
        multiplier = surge.multiplier

    return Session(
        chat_id=chat_id,
        owner=owner,
        capacity=capacity,
        stake_base=stake_base,
        stake_surge=multiplier * increase_per_step,
        surge_multiplier=multiplier,
        _winning_position=winning_position,
    )


def add_player(session: Session, player: Player) -> Tuple[Session, int]:
    """Append ``player`` and return ``(session, position)``.

    Position is 1-based; ``-1`` means nothing changed because the session is
    not collecting, is full, or already holds this user. Filling the last
    slot completes the session in the same step.
    """

    if not session.is_collecting:
        return session, -1
    if session.has_player(player.user_id):
        return session, -1
    if len(session.players) >= session.capacity:
        return session, -1

    players = session.players + (player,)
    position = len(players)
    if position < session.capacity:
        return replace(session, players=players), position

    index = session._winning_position - 1
    if not 0 <= index < len(players):
        raise AssertionError(
            f"winning position {session._winning_position} outside "
            f"1..{len(players)} for session {session.session_id}"
        )
    completed = Completed(
        winner=players[index],
        winning_position=session._winning_position,
    )
    return replace(session, players=players, state=completed), position


def cancel_session(session: Session, reason: CancelReason) -> Session:
    if not session.is_collecting:
        return session
    return replace(session, state=Cancelled(reason=reason))


def describe_cancel_reason(reason: CancelReason, actor_name: Optional[str] = None) -> str:
    if isinstance(reason, AdminCancel):
        return "🎲 Game killed by Admin"
    if isinstance(reason, OwnerCancel):
        return f"🎲 Game killed by {actor_name or 'owner'}"
    if isinstance(reason, Expired):
        return "⌛ Game expired"
    if isinstance(reason, InternalError):
        return "❌ Game cancelled after an error"
    raise TypeError(f"unknown cancel reason {reason!r}")


def describe_session(session: Session, token: TokenType = TokenType.SEND) -> str:
    """Render the session for the chat message and for logs."""

    decimals = TOKENS[token].decimals
    amount = format_amount(session.stake_total, decimals)

    if isinstance(session.state, Completed):
        return (
            f"🎉 Winner\n # {session.state.winning_position} out of {session.capacity}!\n\n"
            f"➡️ {session.owner.display_name} send {amount} {token.value} "
            f"to {session.state.winner.sendtag}"
        )
    if isinstance(session.state, Cancelled):
        return describe_cancel_reason(session.state.reason, session.owner.display_name)

    lines = [
        f"{session.owner.display_name} is sending {amount} {token.value}",
        f"{len(session.players)}/{session.capacity} players",
    ]
    if session.players:
        lines.append("")
        lines.append(", ".join(player.sendtag for player in session.players))
    if session.surge_multiplier > 0:
        if not session.players:
            lines.append("")
        lines.append(f"📈 Send Surge: {session.surge_multiplier}")
    return "\n".join(lines)
