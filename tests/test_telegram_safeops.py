import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from telegram.error import BadRequest, Forbidden

from sendapp.retry import TelegramRetryManager
from sendapp.utils.telegram_safeops import TelegramSafeOps


@pytest.fixture
def logger():
    logging.basicConfig(level=logging.DEBUG)
    return logging.getLogger("telegram_safeops.test")


@pytest.fixture
def bot():
    bot = AsyncMock()
    bot.send_message.return_value = SimpleNamespace(message_id=11)
    bot.edit_message_text.return_value = SimpleNamespace(message_id=10)
    return bot


@pytest.fixture
def safe_ops(bot, logger):
    return TelegramSafeOps(
        bot,
        retry_manager=TelegramRetryManager(max_retries=0, logger=logger),
        logger=logger,
    )


def test_dependencies_are_required(logger):
    with pytest.raises(ValueError):
        TelegramSafeOps(None, retry_manager=TelegramRetryManager(), logger=logger)


@pytest.mark.asyncio
async def test_send_message_returns_id(safe_ops, bot):
    assert await safe_ops.send_message(-1, "hello", reply_to_message_id=3) == 11
    kwargs = bot.send_message.await_args.kwargs
    assert kwargs["chat_id"] == -1
    assert kwargs["reply_parameters"].message_id == 3
    assert kwargs["link_preview_options"].is_disabled is True


@pytest.mark.asyncio
async def test_send_message_failure_returns_none(safe_ops, bot):
    bot.send_message.side_effect = Forbidden("bot was blocked")
    assert await safe_ops.send_message(-1, "hello") is None


@pytest.mark.asyncio
async def test_edit_skips_identical_text(safe_ops, bot):
    assert await safe_ops.edit_message_text(-1, 10, "text") == 10
    assert await safe_ops.edit_message_text(-1, 10, "text") == 10
    assert bot.edit_message_text.await_count == 1


@pytest.mark.asyncio
async def test_edit_not_modified_counts_as_success(safe_ops, bot):
    bot.edit_message_text.side_effect = BadRequest("Message is not modified")
    assert await safe_ops.edit_message_text(-1, 10, "text") == 10
    bot.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_edit_failure_sends_replacement(safe_ops, bot):
    bot.edit_message_text.side_effect = BadRequest("Message to edit not found")
    assert await safe_ops.edit_message_text(-1, 10, "text") == 11
    bot.send_message.assert_awaited_once()
    bot.delete_message.assert_awaited_once_with(chat_id=-1, message_id=10)


@pytest.mark.asyncio
async def test_edit_without_message_id_sends(safe_ops, bot):
    assert await safe_ops.edit_message_text(-1, None, "text") == 11
    bot.edit_message_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_delete_missing_message_is_success(safe_ops, bot):
    bot.delete_message.side_effect = BadRequest("Message to delete not found")
    assert await safe_ops.delete_message(-1, 10) is True


@pytest.mark.asyncio
async def test_delete_messages_failure_returns_false(safe_ops, bot):
    bot.delete_messages.side_effect = Forbidden("not enough rights")
    assert await safe_ops.delete_messages(-1, [1, 2]) is False
    assert await safe_ops.delete_messages(-1, []) is True


@pytest.mark.asyncio
async def test_expired_callback_query_returns_false(safe_ops, bot):
    bot.answer_callback_query.side_effect = BadRequest("Query is too old")
    assert await safe_ops.answer_callback_query("q1", "hi") is False


@pytest.mark.asyncio
async def test_chat_administrator_ids(safe_ops, bot):
    bot.get_chat_administrators.return_value = [
        SimpleNamespace(user=SimpleNamespace(id=1)),
        SimpleNamespace(user=SimpleNamespace(id=2)),
    ]
    assert await safe_ops.get_chat_administrators(-1) == [1, 2]
