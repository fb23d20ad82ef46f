import pytest

from sendapp.entities import (
    AdminCancel,
    Cancelled,
    Completed,
    Expired,
    InternalError,
    InvalidCapacity,
    OwnerCancel,
    SessionOwner,
    SurgeState,
)
from sendapp.session import (
    add_player,
    cancel_session,
    create_session,
    describe_cancel_reason,
    describe_session,
)

UNIT = 10 ** 18


def _create(capacity=3, stake=50 * UNIT, surge=None, now=100.0, rng=None):
    return create_session(
        -1,
        SessionOwner(user_id=7, display_name="Vic"),
        capacity,
        stake,
        surge,
        now=now,
        cooldown_seconds=60,
        increase_per_step=50 * UNIT,
        rng=rng,
    )


def test_create_rejects_invalid_capacity():
    with pytest.raises(InvalidCapacity) as excinfo:
        _create(capacity=0)
    assert excinfo.value.capacity == 0


def test_create_rejects_negative_stake():
    with pytest.raises(ValueError):
        _create(stake=-1)


def test_winning_position_is_drawn_in_range():
    for _ in range(50):
        session = _create(capacity=5)
        assert 1 <= session._winning_position <= 5


def test_winning_position_is_hidden_until_completed(fixed_random):
    session = _create(capacity=2, rng=fixed_random(2))
    assert session.winning_position is None
    assert session.winner is None
    assert "winning_position" not in repr(session)


def test_surge_applies_inside_window():
    session = _create(surge=SurgeState(multiplier=2, last_activity_at=90.0))
    assert session.surge_multiplier == 2
    assert session.stake_surge == 100 * UNIT
    assert session.stake_total == 150 * UNIT


def test_surge_ignored_after_window():
    session = _create(surge=SurgeState(multiplier=2, last_activity_at=40.0))
    assert session.surge_multiplier == 0
    assert session.stake_total == 50 * UNIT


def test_add_player_assigns_positions_and_completes(fixed_random, make_player):
    session = _create(capacity=3, rng=fixed_random(2))

    session, first = add_player(session, make_player(1))
    session, second = add_player(session, make_player(2))
    assert (first, second) == (1, 2)
    assert session.is_collecting
    assert session.open_slots == 1

    session, third = add_player(session, make_player(3))
    assert third == 3
    assert isinstance(session.state, Completed)
    assert session.winner.user_id == 2
    assert session.winning_position == 2
    assert session.open_slots == 0


@pytest.mark.parametrize("winning_position", [1, 2, 3, 4])
def test_winner_is_player_at_winning_position(fixed_random, make_player, winning_position):
    session = _create(capacity=4, rng=fixed_random(winning_position))
    for user_id in (11, 12, 13, 14):
        session, _ = add_player(session, make_player(user_id))

    assert session.winner == session.players[winning_position - 1]
    assert session.winner.user_id == 10 + winning_position
    assert session.state.winning_position == winning_position


def test_add_player_rejects_duplicates(make_player):
    session = _create(capacity=3)
    session, _ = add_player(session, make_player(1))
    same, position = add_player(session, make_player(1, token="other"))
    assert position == -1
    assert same is session
    assert len(session.players) == 1


def test_add_player_to_terminal_session_is_noop(fixed_random, make_player):
    session = _create(capacity=1, rng=fixed_random(1))
    session, _ = add_player(session, make_player(1))
    assert session.is_terminal
    unchanged, position = add_player(session, make_player(2))
    assert position == -1
    assert unchanged is session


def test_single_slot_session_completes_with_first_player(make_player):
    session = _create(capacity=1)
    session, position = add_player(session, make_player(9))
    assert position == 1
    assert session.winner.user_id == 9


def test_cancel_only_affects_collecting_sessions(fixed_random, make_player):
    session = _create(capacity=1, rng=fixed_random(1))
    cancelled = cancel_session(session, Expired())
    assert isinstance(cancelled.state, Cancelled)
    assert cancel_session(cancelled, OwnerCancel(user_id=7)) is cancelled

    completed, _ = add_player(session, make_player(1))
    assert cancel_session(completed, Expired()) is completed


def test_describe_cancel_reasons():
    assert describe_cancel_reason(AdminCancel(admin_id=3)) == "🎲 Game killed by Admin"
    assert describe_cancel_reason(OwnerCancel(user_id=7), "Vic") == "🎲 Game killed by Vic"
    assert describe_cancel_reason(Expired()) == "⌛ Game expired"
    assert describe_cancel_reason(InternalError("boom")).startswith("❌")


def test_describe_collecting_session(make_player):
    session = _create(capacity=3)
    assert describe_session(session) == "Vic is sending 50 SEND\n0/3 players"

    session, _ = add_player(session, make_player(1, tag="alice"))
    session, _ = add_player(session, make_player(2, tag="bob"))
    assert describe_session(session) == (
        "Vic is sending 50 SEND\n2/3 players\n\n/alice, /bob"
    )


def test_describe_collecting_session_with_surge(make_player):
    session = _create(surge=SurgeState(multiplier=1, last_activity_at=99.0))
    assert describe_session(session) == (
        "Vic is sending 100 SEND\n0/3 players\n\n📈 Send Surge: 1"
    )
    session, _ = add_player(session, make_player(1, tag="alice"))
    assert describe_session(session) == (
        "Vic is sending 100 SEND\n1/3 players\n\n/alice\n📈 Send Surge: 1"
    )


def test_describe_completed_session(fixed_random, make_player):
    session = _create(capacity=1, rng=fixed_random(1))
    session, _ = add_player(session, make_player(1, tag="alice"))
    assert describe_session(session) == (
        "🎉 Winner\n # 1 out of 1!\n\n➡️ Vic send 50 SEND to /alice"
    )
