"""Prometheus metric definitions and the metrics HTTP endpoint."""

from __future__ import annotations

import logging
from typing import Optional

from prometheus_client import Counter, Histogram, start_http_server


logger = logging.getLogger(__name__)

SESSIONS_TOTAL = Counter(
    "sendbot_sessions_total",
    "Guess sessions by lifecycle event",
    labelnames=["outcome"],
)

JOIN_OUTCOMES_TOTAL = Counter(
    "sendbot_join_outcomes_total",
    "Join acknowledgements by outcome",
    labelnames=["outcome"],
)

TELEGRAM_RETRIES_TOTAL = Counter(
    "sendbot_telegram_retries_total",
    "Retried or abandoned Telegram calls",
    labelnames=["operation", "decision"],
)

JOIN_BATCH_SIZE = Histogram(
    "sendbot_batch_size",
    "Number of distinct joiners resolved per collection window",
    buckets=[1, 2, 3, 5, 8, 13, 20, 50],
)

MESSAGES_MODERATED_TOTAL = Counter(
    "sendbot_messages_moderated_total",
    "Chat messages deleted by the sendtag spam filter",
    labelnames=["reason"],
)

_metrics_server_started = False


def start_metrics_server(port: int, host: Optional[str] = None) -> bool:
    """Expose the default registry over HTTP; returns ``False`` on bind errors."""

    global _metrics_server_started

    if _metrics_server_started:
        logger.warning("Metrics server already started")
        return True

    listen_host = "" if host is None else host
    try:
        start_http_server(port, addr=listen_host)
    except OSError as exc:
        logger.error(
            "Failed to start metrics server",
            extra={
                "category": "metrics",
                "metrics_port": port,
                "error_type": type(exc).__name__,
            },
        )
        return False
    _metrics_server_started = True
    logger.info(
        "Prometheus metrics server started",
        extra={"metrics_host": listen_host or "0.0.0.0", "metrics_port": port},
    )
    return True
