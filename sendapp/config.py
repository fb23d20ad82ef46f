import logging
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import yaml


logger = logging.getLogger(__name__)


_BASE_DIR = Path(__file__).resolve().parent.parent
_DEFAULT_CONFIG_DIR = _BASE_DIR / "config"
_DEFAULT_GAME_CONSTANTS_PATH = _DEFAULT_CONFIG_DIR / "game_constants.yaml"

_DEFAULT_GAME_CONSTANTS_DATA: Dict[str, Any] = {
    "guess": {
        "min_guess_amount": 50,
        "min_players": 3,
        "max_players": 20,
        "collection_window_seconds": 1.0,
        "session_ttl_seconds": 600,
        "surge": {
            "cooldown_seconds": 60,
            "increase": 50,
        },
        "tag_cooldown": {
            "duration_seconds": 30,
            "refresh_interval_seconds": 1.0,
        },
    },
    "tags": {
        "max_length": 20,
    },
    "tokens": {
        "SEND": {
            "address": "0xEab49138BA2Ea6dd776220fE26b7b8E446638956",
            "decimals": 18,
        },
        "USDC": {
            "address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
            "decimals": 6,
        },
        "ETH": {
            "address": "eth",
            "decimals": 18,
        },
    },
    "links": {
        "send_url": "https://send.app/send",
        "confirm_url": "https://send.app/send/confirm",
        "basescan_token_url": "https://basescan.org/token",
    },
    "admins": {
        "cache_ttl_seconds": 3600,
        "cache_maxsize": 1024,
    },
    "deletion": {
        "batch_size": 10,
        "batch_delay_seconds": 0.1,
    },
    "system": {
        "default_webhook_listen": "127.0.0.1",
        "default_webhook_port": 3000,
        "default_webhook_path": "/telegram/webhook-sendbot",
    },
}


def _resolve_config_path(candidate: Optional[str], default: Path) -> Path:
    if not candidate:
        return default
    path = Path(candidate)
    if not path.is_absolute():
        path = _BASE_DIR / path
    return path


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if (
            isinstance(value, dict)
            and isinstance(base.get(key), dict)
        ):
            base[key] = _deep_merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


class GameConstants:
    def __init__(
        self,
        path: Optional[str] = None,
        *,
        defaults: Optional[Dict[str, Any]] = None,
    ) -> None:
        resolved_path = _resolve_config_path(
            path or os.getenv("SENDBOT_GAME_CONSTANTS_FILE"),
            _DEFAULT_GAME_CONSTANTS_PATH,
        )
        self._path: Path = resolved_path
        self._defaults: Dict[str, Any] = deepcopy(defaults or _DEFAULT_GAME_CONSTANTS_DATA)
        self._data: Dict[str, Any] = {}
        self.reload()

    @property
    def path(self) -> Path:
        return self._path

    def reload(self) -> None:
        raw_data: Dict[str, Any] = {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle) or {}
                if not isinstance(loaded, dict):
                    logger.warning(
                        "Game constants file did not contain a mapping; using defaults.",
                        extra={
                            "category": "config",
                            "config_path": str(self._path),
                            "stage": "game_constants_load",
                            "error_type": "InvalidMapping",
                        },
                    )
                else:
                    raw_data = loaded
        except FileNotFoundError:
            logger.warning(
                "Game constants file not found; using default values.",
                extra={
                    "category": "config",
                    "config_path": str(self._path),
                    "stage": "game_constants_load",
                    "error_type": "FileNotFoundError",
                },
            )
        except yaml.YAMLError as exc:
            logger.warning(
                "Failed to parse game constants file; using defaults.",
                extra={
                    "category": "config",
                    "config_path": str(self._path),
                    "stage": "game_constants_load",
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )

        merged = deepcopy(self._defaults)
        if raw_data:
            merged = _deep_merge(merged, raw_data)
        self._data = merged

    def get(self, key: str, default: Any = None) -> Any:
        value = self._data.get(key, default)
        return deepcopy(value)

    def section(self, key: str) -> Dict[str, Any]:
        section = self._data.get(key, {})
        if isinstance(section, dict):
            return deepcopy(section)
        return {}

    @property
    def guess(self) -> Dict[str, Any]:
        return self.section("guess")

    @property
    def tags(self) -> Dict[str, Any]:
        return self.section("tags")

    @property
    def tokens(self) -> Dict[str, Any]:
        return self.section("tokens")

    @property
    def links(self) -> Dict[str, Any]:
        return self.section("links")

    @property
    def admins(self) -> Dict[str, Any]:
        return self.section("admins")

    @property
    def deletion(self) -> Dict[str, Any]:
        return self.section("deletion")

    @property
    def system(self) -> Dict[str, Any]:
        return self.section("system")


GAME_CONSTANTS = GameConstants()

_SYSTEM_CONSTANTS = GAME_CONSTANTS.system

DEFAULT_WEBHOOK_LISTEN = _SYSTEM_CONSTANTS["default_webhook_listen"]
DEFAULT_WEBHOOK_PORT = _SYSTEM_CONSTANTS["default_webhook_port"]
DEFAULT_WEBHOOK_PATH = _SYSTEM_CONSTANTS["default_webhook_path"]


def get_game_constants() -> GameConstants:
    return GAME_CONSTANTS


class Config:
    def __init__(self, constants: Optional[GameConstants] = None):
        self.constants: GameConstants = constants or GAME_CONSTANTS
        guess = self.constants.guess
        surge = guess.get("surge", {})
        tag_cooldown = guess.get("tag_cooldown", {})
        admins = self.constants.admins

        self.TOKEN: str = os.getenv(
            "SENDBOT_TOKEN",
            default="",
        )
        self.DEBUG: bool = bool(
            os.getenv("SENDBOT_DEBUG", default="0") == "1"
        )
        allow_polling_raw = os.getenv("SENDBOT_ALLOW_POLLING_FALLBACK")
        self.ALLOW_POLLING_FALLBACK: bool = (
            allow_polling_raw is not None
            and allow_polling_raw.strip().lower() in {"1", "true", "yes", "on"}
        )

        self.MIN_GUESS_AMOUNT: int = int(guess.get("min_guess_amount", 50))
        self.MIN_PLAYERS: int = max(int(guess.get("min_players", 3)), 1)
        self.MAX_PLAYERS: int = max(int(guess.get("max_players", 20)), self.MIN_PLAYERS)
        self.COLLECTION_WINDOW_SECONDS: float = float(
            guess.get("collection_window_seconds", 1.0)
        )
        self.SESSION_TTL_SECONDS: float = float(guess.get("session_ttl_seconds", 600))
        self.SURGE_COOLDOWN_SECONDS: float = float(surge.get("cooldown_seconds", 60))
        self.SURGE_INCREASE: int = int(surge.get("increase", 50))
        self.TAG_COOLDOWN_SECONDS: float = float(
            tag_cooldown.get("duration_seconds", 30)
        )
        self.TAG_COOLDOWN_REFRESH_SECONDS: float = float(
            tag_cooldown.get("refresh_interval_seconds", 1.0)
        )
        self.TAG_MAX_LENGTH: int = int(self.constants.tags.get("max_length", 20))
        self.ADMIN_CACHE_TTL_SECONDS: float = float(
            admins.get("cache_ttl_seconds", 3600)
        )
        self.ADMIN_CACHE_MAXSIZE: int = int(admins.get("cache_maxsize", 1024))

        self.WEBHOOK_LISTEN: str = (
            os.getenv("SENDBOT_WEBHOOK_LISTEN", DEFAULT_WEBHOOK_LISTEN).strip()
            or DEFAULT_WEBHOOK_LISTEN
        )
        self.WEBHOOK_PORT: int = self._parse_int_env(
            os.getenv("SENDBOT_WEBHOOK_PORT"),
            default=DEFAULT_WEBHOOK_PORT,
            env_var="SENDBOT_WEBHOOK_PORT",
        )
        webhook_path_env = os.getenv("SENDBOT_WEBHOOK_PATH")
        raw_webhook_path = (
            webhook_path_env.strip()
            if webhook_path_env is not None
            else DEFAULT_WEBHOOK_PATH
        )
        self.WEBHOOK_PATH: str = self._normalize_webhook_path(raw_webhook_path)
        raw_webhook_domain = os.getenv("SENDBOT_WEBHOOK_DOMAIN", "")
        self.WEBHOOK_DOMAIN: str = self._normalize_webhook_domain(raw_webhook_domain)
        explicit_public_url = os.getenv(
            "SENDBOT_WEBHOOK_PUBLIC_URL",
            default="",
        )
        self.WEBHOOK_PUBLIC_URL: str = self._build_public_url(
            explicit_public_url=explicit_public_url,
        )
        self.WEBHOOK_SECRET: str = os.getenv(
            "SENDBOT_WEBHOOK_SECRET",
            default="",
        )
        allowed_updates_raw, _allowed_updates_source = self._get_first_nonempty_env(
            "SENDBOT_WEBHOOK_ALLOWED_UPDATES",
            "SENDBOT_ALLOWED_UPDATES",
        )
        self.ALLOWED_UPDATES: Optional[List[str]] = self._parse_allowed_updates(
            allowed_updates_raw
        )
        self.MAX_CONNECTIONS: Optional[int] = self._parse_positive_int(
            os.getenv("SENDBOT_WEBHOOK_MAX_CONNECTIONS"),
            env_var="SENDBOT_WEBHOOK_MAX_CONNECTIONS",
        )

        parsed_telegram_max_retries = self._parse_positive_int(
            os.getenv("SENDBOT_TELEGRAM_MAX_RETRIES"),
            env_var="SENDBOT_TELEGRAM_MAX_RETRIES",
        )
        self.TELEGRAM_MAX_RETRIES: int = (
            parsed_telegram_max_retries if parsed_telegram_max_retries is not None else 3
        )
        parsed_base_delay = self._parse_positive_float(
            os.getenv("SENDBOT_TELEGRAM_RETRY_BASE_DELAY"),
            env_var="SENDBOT_TELEGRAM_RETRY_BASE_DELAY",
        )
        self.TELEGRAM_RETRY_BASE_DELAY: float = (
            parsed_base_delay if parsed_base_delay is not None else 1.0
        )
        parsed_max_delay = self._parse_positive_float(
            os.getenv("SENDBOT_TELEGRAM_RETRY_MAX_DELAY"),
            env_var="SENDBOT_TELEGRAM_RETRY_MAX_DELAY",
        )
        self.TELEGRAM_RETRY_MAX_DELAY: float = (
            parsed_max_delay if parsed_max_delay is not None else 30.0
        )
        parsed_multiplier = self._parse_positive_float(
            os.getenv("SENDBOT_TELEGRAM_RETRY_MULTIPLIER"),
            env_var="SENDBOT_TELEGRAM_RETRY_MULTIPLIER",
        )
        self.TELEGRAM_RETRY_MULTIPLIER: float = (
            parsed_multiplier if parsed_multiplier is not None else 2.0
        )
        parsed_jitter = self._parse_positive_float(
            os.getenv("SENDBOT_TELEGRAM_RETRY_JITTER"),
            env_var="SENDBOT_TELEGRAM_RETRY_JITTER",
        )
        self.TELEGRAM_RETRY_JITTER: float = (
            parsed_jitter if parsed_jitter is not None else 0.1
        )

        self.SEND_API_URL: str = os.getenv("SENDBOT_SEND_API_URL", "").strip().rstrip("/")
        self.SEND_API_KEY: str = os.getenv("SENDBOT_SEND_API_KEY", "").strip()
        self.SEND_API_VERSION: str = (
            os.getenv("SENDBOT_SEND_API_VERSION", "v1").strip() or "v1"
        )
        self.METRICS_PORT: Optional[int] = self._parse_positive_int(
            os.getenv("SENDBOT_METRICS_PORT"),
            env_var="SENDBOT_METRICS_PORT",
        )

    @staticmethod
    def _normalize_webhook_path(path: str) -> str:
        normalized_path = path.strip()
        if not normalized_path:
            return ""
        if not normalized_path.startswith("/"):
            normalized_path = f"/{normalized_path}"
        return normalized_path

    @staticmethod
    def _normalize_webhook_domain(domain: str) -> str:
        normalized_domain = domain.strip()
        if not normalized_domain:
            return ""
        if not normalized_domain.startswith(("http://", "https://")):
            logger.debug(
                "SENDBOT_WEBHOOK_DOMAIN missing scheme; defaulting to https://%s",
                normalized_domain,
            )
            normalized_domain = f"https://{normalized_domain}"
        return normalized_domain.rstrip("/")

    def _build_public_url(self, explicit_public_url: str) -> str:
        explicit_public_url = explicit_public_url.strip()
        if explicit_public_url:
            return explicit_public_url

        if self.WEBHOOK_DOMAIN and self.WEBHOOK_PATH:
            return urljoin(
                f"{self.WEBHOOK_DOMAIN.rstrip('/')}/",
                self.WEBHOOK_PATH.lstrip("/"),
            )

        return ""

    @staticmethod
    def _get_first_nonempty_env(*keys: str) -> Tuple[Optional[str], Optional[str]]:
        for key in keys:
            value = os.getenv(key)
            if value is None:
                continue
            stripped = value.strip()
            if stripped:
                return stripped, key
        return None, None

    @staticmethod
    def _parse_allowed_updates(raw_value: Optional[str]) -> Optional[List[str]]:
        if not raw_value:
            return None
        updates = [
            update.strip()
            for update in raw_value.split(",")
            if update.strip()
        ]
        return updates or None

    @staticmethod
    def _parse_positive_int(
        raw_value: Optional[str], *, env_var: str
    ) -> Optional[int]:
        if not raw_value:
            return None
        try:
            value = int(raw_value)
        except ValueError:
            logger.warning(
                "Invalid integer value '%s' for %s; ignoring it.",
                raw_value,
                env_var,
            )
            return None
        if value <= 0:
            logger.warning(
                "%s must be greater than zero; ignoring %s.",
                env_var,
                raw_value,
            )
            return None
        return value

    @staticmethod
    def _parse_int_env(
        raw_value: Optional[str], *, default: int, env_var: str
    ) -> int:
        if raw_value is None:
            return default
        raw_value = raw_value.strip()
        if not raw_value:
            return default
        try:
            return int(raw_value)
        except ValueError:
            logger.warning(
                "Invalid integer value '%s' for %s; falling back to default %s.",
                raw_value,
                env_var,
                default,
            )
            return default

    @staticmethod
    def _parse_positive_float(
        raw_value: Optional[str], *, env_var: str
    ) -> Optional[float]:
        if not raw_value:
            return None
        try:
            value = float(raw_value)
        except ValueError:
            logger.warning(
                "Invalid float value '%s' for %s; ignoring it.",
                raw_value,
                env_var,
            )
            return None
        if value <= 0:
            logger.warning(
                "%s must be greater than zero; ignoring %s.",
                env_var,
                raw_value,
            )
            return None
        return value
