import asyncio
import logging
from dataclasses import replace

import pytest

from sendapp.entities import Expired, InternalError, JoinOutcome, JoinOutcomeKind
from sendapp.join_aggregator import JoinAggregator

CHAT = -100


@pytest.fixture
def completed():
    return []


@pytest.fixture
def aggregator(store, scheduler, notifier, completed):
    async def on_completed(session):
        completed.append(session)

    return JoinAggregator(
        session_store=store,
        scheduler=scheduler,
        notifier=notifier,
        collection_window_seconds=1.0,
        on_completed=on_completed,
    )


def _join(aggregator, user_id, token=None, name=None):
    return aggregator.submit_join(
        CHAT, user_id, name or f"User /user{user_id}", token or f"q{user_id}"
    )


@pytest.mark.asyncio
async def test_joins_in_one_window_resolve_together(
    aggregator, store, scheduler, notifier, make_session
):
    store.insert(make_session(CHAT, capacity=3, winning_position=2))

    first = _join(aggregator, 1)
    second = _join(aggregator, 2)
    assert first.outcome.kind is JoinOutcomeKind.PROCESSING
    assert second.outcome.kind is JoinOutcomeKind.PROCESSING
    assert notifier.acks == []
    assert scheduler.pending_count == 1
    assert len(aggregator.pending_batch(CHAT)) == 2

    await scheduler.advance(1.0)

    assert notifier.outcome_for("q1") == JoinOutcome(
        JoinOutcomeKind.ADMITTED, position=1, capacity=3
    )
    assert notifier.outcome_for("q2") == JoinOutcome(
        JoinOutcomeKind.ADMITTED, position=2, capacity=3
    )
    assert len(notifier.progress) == 1
    assert [p.tag for p in notifier.progress[0].players] == ["user1", "user2"]
    assert [p.user_id for p in store.active(CHAT).players] == [1, 2]
    assert aggregator.pending_batch(CHAT) is None


@pytest.mark.asyncio
async def test_filling_batch_completes_and_overflows(
    aggregator, store, scheduler, notifier, completed, make_session
):
    store.insert(make_session(CHAT, capacity=3, winning_position=2))
    for user_id in (1, 2, 3, 4):
        _join(aggregator, user_id)

    await scheduler.advance(1.0)

    assert notifier.outcome_for("q1").kind is JoinOutcomeKind.LOST
    assert notifier.outcome_for("q2") == JoinOutcome(
        JoinOutcomeKind.WON, position=2, capacity=3
    )
    assert notifier.outcome_for("q3").kind is JoinOutcomeKind.LOST
    assert notifier.outcome_for("q4") == JoinOutcome(
        JoinOutcomeKind.OVERFLOW, position=4
    )
    assert len(notifier.winners) == 1
    assert notifier.winners[0].winner.user_id == 2
    assert notifier.progress == []
    assert [s.session_id for s in completed] == [notifier.winners[0].session_id]
    assert store.active(CHAT) is None


@pytest.mark.asyncio
async def test_rejections_are_immediate(aggregator, store, scheduler, make_session):
    assert _join(aggregator, 1).outcome.kind is JoinOutcomeKind.NO_ACTIVE_GAME

    store.insert(make_session(CHAT, capacity=3))
    missing = _join(aggregator, 2, name="No Tag")
    assert missing.outcome.kind is JoinOutcomeKind.MISSING_TAG
    assert scheduler.pending_count == 0

    _join(aggregator, 3)
    await scheduler.advance(1.0)
    again = _join(aggregator, 3, token="q3b")
    assert again.outcome.kind is JoinOutcomeKind.ALREADY_JOINED


@pytest.mark.asyncio
async def test_repeat_tap_supersedes_earlier_token(
    aggregator, store, scheduler, notifier, make_session
):
    store.insert(make_session(CHAT, capacity=3))
    _join(aggregator, 1, token="first")
    _join(aggregator, 2)
    repeat = _join(aggregator, 1, token="second")
    assert repeat.superseded_token == "first"
    assert repeat.outcome.kind is JoinOutcomeKind.PROCESSING

    await scheduler.advance(1.0)

    tokens = [token for _, token, _ in notifier.acks]
    assert sorted(tokens) == ["q2", "second"]
    assert notifier.outcome_for("second").position == 1


@pytest.mark.asyncio
async def test_cancel_during_window_answers_no_active_game(
    aggregator, store, scheduler, notifier, make_session
):
    session = store.insert(make_session(CHAT, capacity=3))
    _join(aggregator, 1)
    _join(aggregator, 2)
    store.cancel(CHAT, InternalError("test"), session_id=session.session_id)

    await scheduler.advance(1.0)

    assert {outcome.kind for _, _, outcome in notifier.acks} == {
        JoinOutcomeKind.NO_ACTIVE_GAME
    }
    assert notifier.progress == []


@pytest.mark.asyncio
async def test_failed_progress_update_is_logged_not_raised(
    aggregator, store, scheduler, notifier, make_session, caplog
):
    store.insert(make_session(CHAT, capacity=3))
    notifier.fail_progress = True
    _join(aggregator, 1)

    with caplog.at_level(logging.ERROR):
        await scheduler.advance(1.0)

    assert notifier.outcome_for("q1").kind is JoinOutcomeKind.ADMITTED
    assert len(store.active(CHAT).players) == 1
    assert "Outbound update failed" in caplog.text


@pytest.mark.asyncio
async def test_replacement_progress_message_is_recorded(
    aggregator, store, scheduler, notifier, make_session
):
    store.insert(make_session(CHAT, capacity=3, display_message_id=500))
    notifier.next_message_id = 777
    _join(aggregator, 1)

    await scheduler.advance(1.0)

    assert store.active(CHAT).display_message_id == 777


@pytest.mark.asyncio
async def test_failed_acknowledgement_does_not_block_others(
    aggregator, store, scheduler, notifier, make_session
):
    store.insert(make_session(CHAT, capacity=3))
    notifier.fail_acks_for = {"q1"}
    _join(aggregator, 1)
    _join(aggregator, 2)

    await scheduler.advance(1.0)

    assert notifier.outcome_for("q2").position == 2
    assert len(notifier.progress) == 1


@pytest.mark.asyncio
async def test_invariant_failure_cancels_session(
    aggregator, store, scheduler, notifier, make_session
):
    broken = replace(make_session(CHAT, capacity=1), _winning_position=5)
    store.insert(broken)
    _join(aggregator, 1)

    await scheduler.advance(1.0)

    assert notifier.outcome_for("q1").kind is JoinOutcomeKind.FAILED
    assert store.active(CHAT) is None
    assert len(notifier.cancelled) == 1
    cancelled, _ = notifier.cancelled[0]
    assert isinstance(cancelled.state.reason, InternalError)


@pytest.mark.asyncio
async def test_later_taps_open_a_new_window(
    aggregator, store, scheduler, notifier, make_session
):
    store.insert(make_session(CHAT, capacity=5))
    _join(aggregator, 1)
    await scheduler.advance(1.0)
    _join(aggregator, 2)
    assert scheduler.pending_count == 1

    await scheduler.advance(1.0)

    assert notifier.outcome_for("q2").position == 2
    assert len(notifier.progress) == 2


def _hold_acknowledgement(notifier, token):
    """Make ``notifier`` block on ``token`` until the returned gate is set."""

    entered = asyncio.Event()
    gate = asyncio.Event()
    acknowledge = notifier.acknowledge

    async def held(chat_id, ack_token, outcome):
        if ack_token == token:
            entered.set()
            await gate.wait()
        await acknowledge(chat_id, ack_token, outcome)

    notifier.acknowledge = held
    return entered, gate


@pytest.mark.asyncio
async def test_slow_batch_does_not_republish_completed_session(
    aggregator, store, scheduler, notifier, completed, make_session
):
    store.insert(make_session(CHAT, capacity=3, winning_position=2))
    entered, gate = _hold_acknowledgement(notifier, "q1")

    _join(aggregator, 1)
    first = asyncio.create_task(scheduler.advance(1.0))
    await entered.wait()

    _join(aggregator, 2)
    _join(aggregator, 3)
    await scheduler.advance(1.0)
    assert len(notifier.winners) == 1
    assert store.active(CHAT) is None

    gate.set()
    await first

    assert notifier.outcome_for("q1") == JoinOutcome(
        JoinOutcomeKind.ADMITTED, position=1, capacity=3
    )
    assert notifier.progress == []
    assert len(completed) == 1


@pytest.mark.asyncio
async def test_slow_batch_does_not_overwrite_expired_session(
    aggregator, store, scheduler, notifier, make_session
):
    session = store.insert(make_session(CHAT, capacity=3))
    entered, gate = _hold_acknowledgement(notifier, "q1")

    _join(aggregator, 1)
    first = asyncio.create_task(scheduler.advance(1.0))
    await entered.wait()

    store.cancel(CHAT, Expired(), session_id=session.session_id)
    gate.set()
    await first

    assert notifier.progress == []


@pytest.mark.asyncio
async def test_slow_batch_renders_latest_player_list(
    aggregator, store, scheduler, notifier, make_session
):
    store.insert(make_session(CHAT, capacity=4))
    entered, gate = _hold_acknowledgement(notifier, "q1")

    _join(aggregator, 1)
    first = asyncio.create_task(scheduler.advance(1.0))
    await entered.wait()

    _join(aggregator, 2)
    await scheduler.advance(1.0)
    gate.set()
    await first

    assert [len(published.players) for published in notifier.progress] == [2, 2]
    assert [p.user_id for p in store.active(CHAT).players] == [1, 2]


def test_admit_batch_marks_duplicates_inside_batch(make_session, make_player):
    session = make_session(capacity=3)
    session, results = JoinAggregator.admit_batch(
        session, [make_player(1), make_player(1, token="dup")]
    )
    assert [outcome.kind for _, outcome in results] == [
        JoinOutcomeKind.ADMITTED,
        JoinOutcomeKind.ALREADY_JOINED,
    ]
    assert len(session.players) == 1
