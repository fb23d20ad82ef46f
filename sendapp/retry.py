"""
Retry manager for outbound Telegram calls.

Each failure is classified into a :class:`RetryDecision`. Rate limits wait
for the interval Telegram asks for, transient network errors back off
exponentially with jitter, and permanent errors surface immediately.
"""

from __future__ import annotations

import asyncio
import enum
import datetime as dt
import logging
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from telegram.error import BadRequest, Forbidden, NetworkError, RetryAfter, TimedOut

from sendapp.metrics import TELEGRAM_RETRIES_TOTAL
from sendapp.utils.logging_helpers import LoggerLike

T = TypeVar("T")


class RetryDecision(enum.Enum):
    RETRY = "retry"
    RATE_LIMITED = "rate_limited"
    FATAL = "fatal"
    IGNORE = "ignore"


@dataclass(frozen=True)
class Classification:
    decision: RetryDecision
    retry_after: Optional[float] = None


Classifier = Callable[[BaseException], Classification]

# Telegram reports these when the target is already in the desired state.
_IGNORED_BAD_REQUESTS = (
    "message is not modified",
    "message to delete not found",
    "message can't be deleted",
)


def _retry_after_seconds(error: RetryAfter) -> float:
    value = getattr(error, "retry_after", 0)
    if isinstance(value, dt.timedelta):
        return value.total_seconds()
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def classify_telegram_error(error: BaseException) -> Classification:
    if isinstance(error, RetryAfter):
        return Classification(RetryDecision.RATE_LIMITED, _retry_after_seconds(error))
    # BadRequest subclasses NetworkError, so it must be checked first.
    if isinstance(error, BadRequest):
        message = str(getattr(error, "message", error)).lower()
        if any(marker in message for marker in _IGNORED_BAD_REQUESTS):
            return Classification(RetryDecision.IGNORE)
        return Classification(RetryDecision.FATAL)
    if isinstance(error, Forbidden):
        return Classification(RetryDecision.FATAL)
    if isinstance(error, (TimedOut, NetworkError)):
        return Classification(RetryDecision.RETRY)
    return Classification(RetryDecision.FATAL)


class TelegramRetryManager:
    """Run coroutine factories under a classified retry policy."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
        jitter: float = 0.1,
        *,
        classifier: Classifier = classify_telegram_error,
        rng: Optional[random.Random] = None,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self.max_retries = max(0, int(max_retries))
        self.base_delay = max(float(base_delay), 0.0)
        self.max_delay = max(float(max_delay), self.base_delay)
        self.multiplier = max(float(multiplier), 1.0)
        self.jitter = max(float(jitter), 0.0)
        self.classifier = classifier
        self._rng = rng or random.Random()
        self.logger = logger or logging.getLogger(__name__)

    def backoff_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += self._rng.uniform(0, self.jitter * delay)
        return min(delay, self.max_delay)

    async def call(
        self,
        operation: str,
        func: Callable[[], Awaitable[T]],
        *,
        log_extra: Optional[Mapping[str, Any]] = None,
    ) -> Optional[T]:
        """Await ``func()`` until it succeeds or retrying stops making sense.

        Returns ``None`` when the failure was classified as ignorable and
        re-raises the last error otherwise.
        """

        max_attempts = self.max_retries + 1
        for attempt in range(1, max_attempts + 1):
            try:
                result = await func()
            except asyncio.CancelledError:
                raise
            except Exception as error:
                classification = self.classifier(error)
                decision = classification.decision
                extra = self._build_extra(operation, attempt, error, log_extra)

                if decision is RetryDecision.IGNORE:
                    self.logger.debug(
                        "Telegram %s had nothing to do", operation, extra=extra
                    )
                    return None
                if decision is RetryDecision.FATAL:
                    TELEGRAM_RETRIES_TOTAL.labels(operation, decision.value).inc()
                    raise
                if attempt >= max_attempts:
                    self._log_final_failure(operation, error, attempt, extra)
                    TELEGRAM_RETRIES_TOTAL.labels(operation, "exhausted").inc()
                    raise

                if (
                    decision is RetryDecision.RATE_LIMITED
                    and classification.retry_after is not None
                ):
                    delay = classification.retry_after
                    extra["retry_after"] = delay
                else:
                    delay = self.backoff_delay(attempt)
                extra["delay"] = delay
                self.logger.warning(
                    "Telegram %s failed, retrying in %.2fs",
                    operation,
                    delay,
                    extra=extra,
                )
                TELEGRAM_RETRIES_TOTAL.labels(operation, decision.value).inc()
                await asyncio.sleep(delay)
                continue

            if attempt > 1:
                self.logger.info(
                    "Telegram %s succeeded after retry",
                    operation,
                    extra={"operation": operation, "attempt": attempt},
                )
            return result
        return None

    def retry_telegram_call(
        self, operation_name: str
    ) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[Optional[T]]]]:
        """Decorator form of :meth:`call`."""

        def decorator(
            func: Callable[..., Awaitable[T]]
        ) -> Callable[..., Awaitable[Optional[T]]]:
            @wraps(func)
            async def wrapper(*args: Any, **kwargs: Any) -> Optional[T]:
                return await self.call(operation_name, lambda: func(*args, **kwargs))

            return wrapper

        return decorator

    @staticmethod
    def _build_extra(
        operation: str,
        attempt: int,
        error: BaseException,
        log_extra: Optional[Mapping[str, Any]],
    ) -> dict:
        extra = dict(log_extra or {})
        extra.update(
            {
                "category": "telegram",
                "operation": operation,
                "attempt": attempt,
                "error_type": type(error).__name__,
            }
        )
        return extra

    def _log_final_failure(
        self,
        operation: str,
        error: BaseException,
        attempts: int,
        extra: Mapping[str, Any],
    ) -> None:
        payload = dict(extra)
        payload["total_attempts"] = attempts
        payload["error_message"] = str(error)
        self.logger.error(
            "Telegram %s failed after %d attempts",
            operation,
            attempts,
            extra=payload,
        )
