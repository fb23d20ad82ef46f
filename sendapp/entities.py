#!/usr/bin/env python3

import enum
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union
from uuid import uuid4


ChatId = int
UserId = int
MessageId = int
AckToken = str
# Stakes are held in the token's smallest unit.
Amount = int


class SendBotError(Exception):
    """Base class for errors raised by the send bot domain."""


class InvalidCapacity(SendBotError, ValueError):
    def __init__(self, capacity: int):
        super().__init__(f"session capacity must be at least 1, got {capacity}")
        self.capacity = capacity


class SessionAlreadyActive(SendBotError):
    def __init__(self, chat_id: ChatId):
        super().__init__(f"chat {chat_id} already has a collecting session")
        self.chat_id = chat_id


@dataclass(frozen=True)
class SessionOwner:
    user_id: UserId
    display_name: str


@dataclass(frozen=True)
class Player:
    user_id: UserId
    tag: str
    join_token: AckToken

    @property
    def sendtag(self) -> str:
        return f"/{self.tag}"


@dataclass(frozen=True)
class OwnerCancel:
    user_id: UserId


@dataclass(frozen=True)
class AdminCancel:
    admin_id: UserId


@dataclass(frozen=True)
class Expired:
    pass


@dataclass(frozen=True)
class InternalError:
    message: str


CancelReason = Union[OwnerCancel, AdminCancel, Expired, InternalError]


@dataclass(frozen=True)
class Collecting:
    pass


@dataclass(frozen=True)
class Completed:
    winner: Player
    winning_position: int


@dataclass(frozen=True)
class Cancelled:
    reason: CancelReason


SessionState = Union[Collecting, Completed, Cancelled]

COLLECTING = Collecting()


@dataclass(frozen=True)
class SurgeState:
    multiplier: int = 0
    last_activity_at: float = 0.0


@dataclass(frozen=True)
class Session:
    """One /guess round in a chat.

    Instances are immutable; :mod:`sendapp.session` derives successors with
    :func:`dataclasses.replace`. The drawn winning position stays out of
    ``repr`` and is only exposed through :attr:`winning_position` once the
    session has completed.
    """

    chat_id: ChatId
    owner: SessionOwner
    capacity: int
    stake_base: Amount
    stake_surge: Amount = 0
    surge_multiplier: int = 0
    state: SessionState = COLLECTING
    players: Tuple[Player, ...] = ()
    display_message_id: Optional[MessageId] = None
    session_id: str = field(default_factory=lambda: uuid4().hex)
    _winning_position: int = field(default=0, repr=False, compare=False)

    @property
    def stake_total(self) -> Amount:
        return self.stake_base + self.stake_surge

    @property
    def is_collecting(self) -> bool:
        return isinstance(self.state, Collecting)

    @property
    def is_terminal(self) -> bool:
        return not self.is_collecting

    @property
    def open_slots(self) -> int:
        if not self.is_collecting:
            return 0
        return self.capacity - len(self.players)

    @property
    def winner(self) -> Optional[Player]:
        if isinstance(self.state, Completed):
            return self.state.winner
        return None

    @property
    def winning_position(self) -> Optional[int]:
        if isinstance(self.state, Completed):
            return self.state.winning_position
        return None

    def has_player(self, user_id: UserId) -> bool:
        return any(player.user_id == user_id for player in self.players)

    def position_of(self, user_id: UserId) -> Optional[int]:
        for index, player in enumerate(self.players, start=1):
            if player.user_id == user_id:
                return index
        return None


class JoinOutcomeKind(enum.Enum):
    PROCESSING = "processing"
    MISSING_TAG = "missing_tag"
    NO_ACTIVE_GAME = "no_active_game"
    ALREADY_JOINED = "already_joined"
    ADMITTED = "admitted"
    WON = "won"
    LOST = "lost"
    OVERFLOW = "overflow"
    FAILED = "failed"


@dataclass(frozen=True)
class JoinOutcome:
    """What a joiner is told.

    ``position`` is the seat for admitted players and the arrival rank for
    overflow.
    """

    kind: JoinOutcomeKind
    position: Optional[int] = None
    capacity: Optional[int] = None


@dataclass(frozen=True)
class JoinSubmission:
    outcome: JoinOutcome
    superseded_token: Optional[AckToken] = None
