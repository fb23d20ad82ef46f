#!/usr/bin/env python3

import logging
import sys
from typing import Iterable, Mapping, Sequence

from dotenv import load_dotenv

from sendapp.bootstrap import build_services
from sendapp.config import Config
from sendapp.sendbot import SendBot


def _startup_log_extra(
    *,
    logger,
    stage: str,
    env_config_missing: Sequence[str] | Iterable[str] | None = None,
    additional: Mapping[str, object] | None = None,
) -> dict:
    """Return a structured ``extra`` payload for startup logs."""

    missing = list(env_config_missing or [])
    extra = {
        "category": "startup",
        "stage": stage,
        "chat_id": None,
        "env_config_missing": missing,
    }

    if logger.isEnabledFor(logging.DEBUG):
        extra.update({"debug_mode": True, "debug_missing_count": len(missing)})

    if additional:
        extra.update(dict(additional))

    return extra


def main() -> None:
    load_dotenv()
    cfg: Config = Config()
    services = build_services(cfg)
    logger = services.logger.getChild(__name__)

    logger.info(
        "Set SENDBOT_ALLOW_POLLING_FALLBACK=1 to enable development polling when webhook settings are unavailable.",
        extra=_startup_log_extra(logger=logger, stage="validation"),
    )

    if cfg.TOKEN == "":
        logger.error(
            "Environment variable SENDBOT_TOKEN is not set. "
            "Add it to your .env file or container environment.",
            extra=_startup_log_extra(
                logger=logger,
                stage="validation",
                env_config_missing=["MissingToken"],
                additional={"error_type": "MissingToken"},
            ),
        )
        sys.exit(1)

    webhook_missing_settings = []

    if not cfg.WEBHOOK_PATH:
        webhook_missing_settings.append(
            (
                "MissingWebhookPath",
                "Webhook path is not configured. Set SENDBOT_WEBHOOK_PATH in your "
                ".env file or container environment.",
            )
        )

    if not cfg.WEBHOOK_PUBLIC_URL:
        webhook_missing_settings.append(
            (
                "MissingWebhookPublicUrl",
                "Webhook public URL is not configured. Set SENDBOT_WEBHOOK_DOMAIN "
                "together with SENDBOT_WEBHOOK_PATH, or provide SENDBOT_WEBHOOK_PUBLIC_URL.",
            )
        )

    if not cfg.WEBHOOK_SECRET:
        webhook_missing_settings.append(
            (
                "MissingWebhookSecret",
                "Webhook secret token is not configured. Set SENDBOT_WEBHOOK_SECRET in your "
                ".env file or container environment.",
            )
        )

    use_polling = False
    if webhook_missing_settings:
        missing_env_keys = [error_type for error_type, _ in webhook_missing_settings]
        log_missing = logger.warning if cfg.ALLOW_POLLING_FALLBACK else logger.error
        for error_type, message in webhook_missing_settings:
            log_missing(
                message,
                extra=_startup_log_extra(
                    logger=logger,
                    stage="validation",
                    env_config_missing=missing_env_keys,
                    additional={"error_type": error_type},
                ),
            )
        if not cfg.ALLOW_POLLING_FALLBACK:
            sys.exit(1)
        logger.info(
            "Webhook configuration missing; falling back to long polling as requested by SENDBOT_ALLOW_POLLING_FALLBACK.",
            extra=_startup_log_extra(
                logger=logger,
                stage="fallback",
                env_config_missing=missing_env_keys,
                additional={"debug_mode": cfg.DEBUG},
            ),
        )
        use_polling = True

    bot = SendBot(
        token=cfg.TOKEN,
        cfg=cfg,
        logger=services.logger.getChild("bot"),
        services=services,
    )
    if use_polling:
        bot.run_polling()
    else:
        bot.run()


if __name__ == "__main__":
    main()
