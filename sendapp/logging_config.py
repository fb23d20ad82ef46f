import datetime as dt
import json
import logging
from typing import Any, Dict


class ContextJsonFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    #: Attributes defined by :class:`logging.LogRecord` that are not
    #: application extras.
    _STANDARD_ATTRS = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
        "stacklevel",
    }

    #: Keys lifted to the top level of the payload when present.
    _COMMON_KEYS = (
        "chat_id",
        "user_id",
        "message_id",
        "session_id",
        "event_type",
        "operation",
        "attempt",
        "retry_after",
        "delay",
        "error_type",
        "category",
        "stage",
        "outcome",
    )

    def _coerce_value(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, (str, int, float, bool)):
            return value
        if hasattr(value, "value") and isinstance(getattr(value, "value"), (str, int, float)):
            return getattr(value, "value")
        if isinstance(value, dict):
            return {str(k): self._coerce_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple, set, frozenset)):
            return [self._coerce_value(item) for item in value]
        return repr(value)

    def format(self, record: logging.LogRecord) -> str:
        log_record: Dict[str, Any] = {
            "timestamp": dt.datetime.fromtimestamp(
                record.created, tz=dt.timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in self._COMMON_KEYS:
            if key in record.__dict__:
                log_record[key] = self._coerce_value(record.__dict__[key])

        extra_payload: Dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in log_record or key in self._STANDARD_ATTRS:
                continue
            extra_payload[key] = self._coerce_value(value)
        if extra_payload:
            log_record["extra"] = extra_payload

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record, ensure_ascii=False)


def setup_logging(level: int = logging.INFO, debug_mode: bool = False) -> None:
    """Install the JSON formatter on the root logger."""

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(ContextJsonFormatter())
        root_logger.addHandler(handler)

    root_logger.setLevel(logging.DEBUG if debug_mode else level)

    # httpx logs every Bot API request URL, which contains the token.
    logging.getLogger("httpx").setLevel(logging.WARNING)
