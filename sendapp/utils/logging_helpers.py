"""Helpers for structured logging across the send bot."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, MutableMapping, Tuple, Union


LoggerLike = Union[logging.Logger, logging.LoggerAdapter]

#: Every adapter carries these keys so that log consumers can rely on a
#: consistent schema, even when an operation has no value for some of them.
REQUIRED_LOG_KEYS: Tuple[str, ...] = (
    "session_id",
    "chat_id",
    "user_id",
    "event_type",
)

DEFAULT_LOG_CONTEXT: Dict[str, Any] = {key: None for key in REQUIRED_LOG_KEYS}


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that keeps structured context values attached."""

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        super().__init__(logger, dict(extra or {}))

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        extra = dict(self.extra)
        provided = kwargs.get("extra")
        if provided:
            extra.update(provided)
        kwargs["extra"] = extra
        return msg, kwargs

    def getChild(self, suffix: str) -> "ContextLoggerAdapter":  # noqa: N802 - mirror logging API
        child = self.logger.getChild(suffix)
        return ContextLoggerAdapter(child, dict(self.extra))

    def bind(self, **kwargs: Any) -> "ContextLoggerAdapter":
        return add_context(self, **kwargs)


def _unwrap_logger(logger: LoggerLike) -> tuple[logging.Logger, Mapping[str, Any]]:
    if isinstance(logger, logging.LoggerAdapter):
        return logger.logger, dict(getattr(logger, "extra", {}) or {})
    return logger, {}


def add_context(logger: LoggerLike, **kwargs: Any) -> ContextLoggerAdapter:
    """Return a :class:`ContextLoggerAdapter` with ``kwargs`` merged in."""

    base_logger, base_extra = _unwrap_logger(logger)
    merged: Dict[str, Any] = {**DEFAULT_LOG_CONTEXT, **base_extra}
    merged.update(kwargs)
    return ContextLoggerAdapter(base_logger, merged)


def enforce_context(
    logger: LoggerLike, default_ctx: Mapping[str, Any] | None = None
) -> ContextLoggerAdapter:
    """Wrap ``logger`` so :data:`REQUIRED_LOG_KEYS` are always present.

    Used while wiring services in :mod:`sendapp.bootstrap`, where each
    collaborator receives its own child logger.
    """

    base_logger, base_extra = _unwrap_logger(logger)
    enforced: Dict[str, Any] = {**DEFAULT_LOG_CONTEXT, **base_extra}
    if default_ctx:
        enforced.update(default_ctx)
    return ContextLoggerAdapter(base_logger, enforced)
