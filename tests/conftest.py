"""Pytest configuration shared across the test suite."""

import random
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Tuple

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import pytest

from sendapp.entities import JoinOutcome, Player, Session, SessionOwner
from sendapp.scheduler import VirtualClock, VirtualScheduler
from sendapp.session import create_session
from sendapp.session_store import SessionStore


class FixedRandom(random.Random):
    """``randint`` returns queued values, then the upper bound."""

    def __init__(self, *values: int) -> None:
        super().__init__(0)
        self._values = list(values)

    def randint(self, a: int, b: int) -> int:
        if self._values:
            return self._values.pop(0)
        return b


class RecordingNotifier:
    def __init__(self) -> None:
        self.acks: List[Tuple[int, str, JoinOutcome]] = []
        self.progress: List[Session] = []
        self.winners: List[Session] = []
        self.cancelled: List[Tuple[Session, Optional[str]]] = []
        self.next_message_id: Optional[int] = None
        self.fail_progress = False
        self.fail_acks_for: set = set()

    async def acknowledge(self, chat_id, ack_token, outcome) -> None:
        if ack_token in self.fail_acks_for:
            raise RuntimeError("answer failed")
        self.acks.append((chat_id, ack_token, outcome))

    async def update_progress(self, session):
        if self.fail_progress:
            raise RuntimeError("edit failed")
        self.progress.append(session)
        if self.next_message_id is not None:
            return self.next_message_id
        return session.display_message_id

    async def announce_winner(self, session) -> None:
        self.winners.append(session)

    async def announce_cancelled(self, session, actor_name=None) -> None:
        self.cancelled.append((session, actor_name))

    def outcome_for(self, token: str) -> JoinOutcome:
        for _, ack_token, outcome in self.acks:
            if ack_token == token:
                return outcome
        raise AssertionError(f"token {token!r} was never acknowledged")


@pytest.fixture
def clock():
    return VirtualClock(start=1000.0)


@pytest.fixture
def scheduler(clock):
    return VirtualScheduler(clock)


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


def _make_session(
    chat_id: int = -100,
    capacity: int = 3,
    *,
    winning_position: int = 1,
    stake: int = 50,
    owner_id: int = 1,
    display_message_id: Optional[int] = 500,
) -> Session:
    session = create_session(
        chat_id,
        SessionOwner(user_id=owner_id, display_name="Owner"),
        capacity,
        stake,
        now=0.0,
        cooldown_seconds=60,
        increase_per_step=0,
        rng=FixedRandom(winning_position),
    )
    if display_message_id is None:
        return session
    return replace(session, display_message_id=display_message_id)


def _make_player(user_id: int, tag: Optional[str] = None, token: Optional[str] = None) -> Player:
    return Player(
        user_id=user_id,
        tag=tag or f"user{user_id}",
        join_token=token or f"q{user_id}",
    )


@pytest.fixture
def make_session():
    return _make_session


@pytest.fixture
def make_player():
    return _make_player


@pytest.fixture
def fixed_random():
    return FixedRandom


class RecordingView:
    """Stands in for ``SendBotViewer`` and records every call."""

    def __init__(self) -> None:
        self.sent: List[dict] = []
        self.edits: List[dict] = []
        self.deleted: List[Tuple[int, Optional[int], bool]] = []
        self.answers: List[Tuple[str, Optional[str]]] = []
        self._next_id = 1000

    async def send_message(self, chat_id, text, **kwargs):
        self._next_id += 1
        self.sent.append({"chat_id": chat_id, "text": text, "message_id": self._next_id, **kwargs})
        return self._next_id

    async def send_markdown(self, chat_id, text, **kwargs):
        return await self.send_message(chat_id, text, parse_mode="MarkdownV2", **kwargs)

    async def edit_message_text(self, chat_id, message_id, text, **kwargs):
        self.edits.append({"chat_id": chat_id, "message_id": message_id, "text": text, **kwargs})
        return message_id

    def delete_message(self, chat_id, message_id, *, bot_owned=True):
        self.deleted.append((chat_id, message_id, bot_owned))

    async def answer_callback(self, callback_query_id, text=None, *, show_alert=False):
        self.answers.append((callback_query_id, text))
        return True


class StaticAdmins:
    def __init__(self, admins=()) -> None:
        self.admins = set(admins)

    async def is_admin(self, chat_id, user_id) -> bool:
        return user_id in self.admins


@pytest.fixture
def view():
    return RecordingView()


@pytest.fixture
def admins():
    return StaticAdmins()
