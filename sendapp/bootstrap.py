"""Application composition root for the send bot."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Callable

from sendapp.amounts import TOKENS, TokenType, to_smallest_units
from sendapp.config import Config
from sendapp.logging_config import setup_logging
from sendapp.metrics import start_metrics_server
from sendapp.profiles import SendProfileClient
from sendapp.retry import TelegramRetryManager
from sendapp.scheduler import AsyncioScheduler, DeferredScheduler
from sendapp.session_store import SessionStore
from sendapp.surge import SurgeTracker
from sendapp.utils.logging_helpers import ContextLoggerAdapter, enforce_context
from sendapp.utils.telegram_safeops import TelegramSafeOps


@dataclass(frozen=True)
class ApplicationServices:
    """Dependencies that outlive a single PTB ``Application`` instance."""

    logger: ContextLoggerAdapter
    scheduler: DeferredScheduler
    session_store: SessionStore
    surge_tracker: SurgeTracker
    retry_manager: TelegramRetryManager
    profile_client: SendProfileClient
    telegram_safeops_factory: Callable[..., TelegramSafeOps]


def _make_service_logger(
    parent_logger: ContextLoggerAdapter, child_name: str, category: str
) -> ContextLoggerAdapter:
    """Return a child logger carrying ``category`` in its context."""

    return enforce_context(parent_logger.getChild(child_name), {"category": category})


def build_services(cfg: Config) -> ApplicationServices:
    """Initialise logging and the in-memory game infrastructure."""

    setup_logging(logging.INFO, debug_mode=cfg.DEBUG)
    logger = enforce_context(logging.getLogger("sendbot"))

    if cfg.METRICS_PORT:
        start_metrics_server(cfg.METRICS_PORT)

    scheduler = AsyncioScheduler(
        logger=_make_service_logger(logger, "scheduler", "scheduler"),
    )
    session_store = SessionStore(
        logger=_make_service_logger(logger, "sessions", "session"),
    )
    send_decimals = TOKENS[TokenType.SEND].decimals
    surge_tracker = SurgeTracker(
        session_store=session_store,
        clock=scheduler.clock,
        cooldown_seconds=cfg.SURGE_COOLDOWN_SECONDS,
        increase_per_step=to_smallest_units(cfg.SURGE_INCREASE, send_decimals),
        logger=_make_service_logger(logger, "surge", "surge"),
    )
    retry_manager = TelegramRetryManager(
        max_retries=cfg.TELEGRAM_MAX_RETRIES,
        base_delay=cfg.TELEGRAM_RETRY_BASE_DELAY,
        max_delay=cfg.TELEGRAM_RETRY_MAX_DELAY,
        multiplier=cfg.TELEGRAM_RETRY_MULTIPLIER,
        jitter=cfg.TELEGRAM_RETRY_JITTER,
        logger=_make_service_logger(logger, "telegram_retry", "telegram"),
    )
    profile_client = SendProfileClient(
        api_url=cfg.SEND_API_URL,
        api_key=cfg.SEND_API_KEY,
        api_version=cfg.SEND_API_VERSION,
        logger=_make_service_logger(logger, "profiles", "profiles"),
    )
    if not profile_client.enabled:
        logger.info(
            "Send profile lookup disabled; winner messages will omit the Basescan link",
            extra={"category": "startup", "stage": "services"},
        )

    telegram_safeops_factory = partial(
        TelegramSafeOps,
        retry_manager=retry_manager,
        logger=_make_service_logger(logger, "telegram_safeops", "telegram"),
    )

    return ApplicationServices(
        logger=logger,
        scheduler=scheduler,
        session_store=session_store,
        surge_tracker=surge_tracker,
        retry_manager=retry_manager,
        profile_client=profile_client,
        telegram_safeops_factory=telegram_safeops_factory,
    )
