import asyncio
import logging

import pytest
from telegram.error import BadRequest, Forbidden, NetworkError, RetryAfter, TimedOut

from sendapp.retry import (
    RetryDecision,
    TelegramRetryManager,
    classify_telegram_error,
)


@pytest.fixture
def sleep_calls(monkeypatch):
    calls = []

    async def fake_sleep(duration):
        calls.append(duration)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return calls


@pytest.fixture
def manager():
    return TelegramRetryManager(
        max_retries=2,
        base_delay=1.0,
        max_delay=3.0,
        multiplier=2.0,
        jitter=0.0,
        logger=logging.getLogger("retry.test"),
    )


class _Flaky:
    def __init__(self, *effects):
        self.effects = list(effects)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        effect = self.effects.pop(0)
        if isinstance(effect, Exception):
            raise effect
        return effect


@pytest.mark.parametrize(
    "error, decision",
    [
        (BadRequest("Message is not modified: specified new message content"), RetryDecision.IGNORE),
        (BadRequest("Message to delete not found"), RetryDecision.IGNORE),
        (BadRequest("Message to edit not found"), RetryDecision.FATAL),
        (BadRequest("Chat not found"), RetryDecision.FATAL),
        (Forbidden("bot was kicked"), RetryDecision.FATAL),
        (TimedOut(), RetryDecision.RETRY),
        (NetworkError("connection reset"), RetryDecision.RETRY),
        (ValueError("boom"), RetryDecision.FATAL),
    ],
)
def test_classification(error, decision):
    assert classify_telegram_error(error).decision is decision


def test_rate_limit_carries_retry_after():
    classification = classify_telegram_error(RetryAfter(5))
    assert classification.decision is RetryDecision.RATE_LIMITED
    assert classification.retry_after == 5.0


def test_backoff_grows_and_caps(manager):
    assert [manager.backoff_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]


def test_backoff_jitter_stays_within_cap():
    manager = TelegramRetryManager(base_delay=1.0, max_delay=2.0, jitter=0.5)
    for attempt in range(1, 5):
        assert 0 < manager.backoff_delay(attempt) <= 2.0


@pytest.mark.asyncio
async def test_transient_errors_are_retried(manager, sleep_calls):
    func = _Flaky(TimedOut(), NetworkError("reset"), "ok")
    assert await manager.call("send_message", func) == "ok"
    assert func.calls == 3
    assert sleep_calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_rate_limit_waits_requested_interval(manager, sleep_calls):
    func = _Flaky(RetryAfter(7), "ok")
    assert await manager.call("edit_message_text", func) == "ok"
    assert sleep_calls == [7.0]


@pytest.mark.asyncio
async def test_exhausted_retries_reraise(manager, sleep_calls, caplog):
    func = _Flaky(TimedOut(), TimedOut(), TimedOut())
    with caplog.at_level(logging.ERROR, logger="retry.test"):
        with pytest.raises(TimedOut):
            await manager.call("send_message", func)
    assert func.calls == 3
    assert len(sleep_calls) == 2
    assert "failed after 3 attempts" in caplog.text


@pytest.mark.asyncio
async def test_fatal_errors_are_not_retried(manager, sleep_calls):
    func = _Flaky(Forbidden("blocked"), "unreachable")
    with pytest.raises(Forbidden):
        await manager.call("send_message", func)
    assert func.calls == 1
    assert sleep_calls == []


@pytest.mark.asyncio
async def test_ignorable_errors_return_none(manager, sleep_calls):
    func = _Flaky(BadRequest("Message is not modified"))
    assert await manager.call("edit_message_text", func) is None
    assert sleep_calls == []


@pytest.mark.asyncio
async def test_decorator_wraps_call(manager, sleep_calls):
    attempts = []

    @manager.retry_telegram_call("answer_callback_query")
    async def answer(text):
        attempts.append(text)
        if len(attempts) == 1:
            raise TimedOut()
        return text.upper()

    assert await answer("hi") == "HI"
    assert attempts == ["hi", "hi"]
