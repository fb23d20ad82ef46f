from unittest.mock import MagicMock

import pytest

from sendapp.bootstrap import ApplicationServices, build_services
from sendapp.config import Config
from sendapp.scheduler import AsyncioScheduler
from sendapp.utils.telegram_safeops import TelegramSafeOps


@pytest.fixture
def cfg(monkeypatch):
    for name in (
        "SENDBOT_METRICS_PORT",
        "SENDBOT_SEND_API_URL",
        "SENDBOT_SEND_API_KEY",
        "SENDBOT_TELEGRAM_MAX_RETRIES",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SENDBOT_TELEGRAM_MAX_RETRIES", "5")
    return Config()


def test_build_services_wires_in_memory_infrastructure(cfg):
    services = build_services(cfg)

    assert isinstance(services, ApplicationServices)
    assert isinstance(services.scheduler, AsyncioScheduler)
    assert services.surge_tracker.increase_per_step == 50 * 10 ** 18
    assert services.surge_tracker.cooldown_seconds == 60
    assert services.retry_manager.max_retries == 5
    assert not services.profile_client.enabled
    assert len(services.session_store) == 0


def test_safeops_factory_binds_retry_manager(cfg):
    services = build_services(cfg)
    safe_ops = services.telegram_safeops_factory(bot=MagicMock())

    assert isinstance(safe_ops, TelegramSafeOps)
    assert safe_ops._retry is services.retry_manager


def test_logger_carries_standard_context_keys(cfg):
    services = build_services(cfg)
    for key in ("session_id", "chat_id", "user_id", "event_type"):
        assert key in services.logger.extra
