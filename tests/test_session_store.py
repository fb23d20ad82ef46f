from dataclasses import replace

import pytest

from sendapp.entities import Expired, OwnerCancel, SessionAlreadyActive
from sendapp.session import add_player, cancel_session


def test_insert_rejects_second_collecting_session(store, make_session):
    store.insert(make_session())
    with pytest.raises(SessionAlreadyActive):
        store.insert(make_session())


def test_insert_rejects_terminal_session(store, make_session):
    session = cancel_session(make_session(), Expired())
    with pytest.raises(ValueError):
        store.insert(session)


def test_update_commits_successor(store, make_session, make_player):
    session = store.insert(make_session(capacity=3))
    successor, _ = add_player(session, make_player(1))
    assert store.update(successor) is True
    assert store.active(session.chat_id).players == successor.players


def test_update_drops_terminal_session(store, make_session, make_player):
    session = store.insert(make_session(capacity=1))
    completed, _ = add_player(session, make_player(1))
    assert store.update(completed) is True
    assert store.active(session.chat_id) is None
    assert session.chat_id not in store


def test_update_refuses_stale_session(store, make_session):
    first = store.insert(make_session())
    store.cancel(first.chat_id, Expired())
    second = store.insert(make_session())
    assert store.update(replace(first, display_message_id=1)) is False
    assert store.active(first.chat_id) is second


def test_set_display_message_checks_session_identity(store, make_session):
    session = store.insert(make_session(display_message_id=None))
    assert store.set_display_message(session.chat_id, "other", 10) is None
    updated = store.set_display_message(session.chat_id, session.session_id, 10)
    assert updated.display_message_id == 10
    assert store.active(session.chat_id).display_message_id == 10


def test_cancel_returns_cancelled_session(store, make_session):
    session = store.insert(make_session())
    assert store.cancel(session.chat_id, Expired(), session_id="other") is None
    cancelled = store.cancel(session.chat_id, OwnerCancel(user_id=1))
    assert cancelled.session_id == session.session_id
    assert cancelled.state.reason == OwnerCancel(user_id=1)
    assert store.cancel(session.chat_id, Expired()) is None
    assert len(store) == 0
