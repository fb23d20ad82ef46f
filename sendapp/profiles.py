"""Client for the send.app profile lookup endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from aiohttp import ClientError, ClientSession, ClientTimeout

from sendapp.utils.logging_helpers import LoggerLike


_INVALID_TAG_CODE = "P0001"


@dataclass(frozen=True)
class SendProfile:
    tag: str
    name: Optional[str] = None
    address: Optional[str] = None
    chain_id: Optional[int] = None
    sendid: Optional[int] = None
    all_tags: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class InvalidTag:
    tag: str


ProfileLookup = Union[SendProfile, InvalidTag, None]


class SendProfileClient:
    """Resolve sendtags to profiles.

    :meth:`lookup` returns a :class:`SendProfile`, :class:`InvalidTag` when
    the API says the tag does not exist, or ``None`` when the lookup is
    disabled or failed.
    """

    def __init__(
        self,
        *,
        api_url: str,
        api_key: str,
        api_version: str = "v1",
        timeout: float = 10.0,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._api_version = api_version
        self._timeout = ClientTimeout(total=timeout)
        self._session: Optional[ClientSession] = None
        self._logger = logger or logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        return bool(self._api_url and self._api_key)

    @property
    def lookup_url(self) -> str:
        return f"{self._api_url}/rest/{self._api_version}/rpc/profile_lookup"

    def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=self._timeout)
        return self._session

    async def lookup(self, tag: str) -> ProfileLookup:
        if not self.enabled:
            return None
        payload = {"lookup_type": "tag", "identifier": tag}
        headers = {"apikey": self._api_key, "Content-Type": "application/json"}
        try:
            async with self._get_session().post(
                self.lookup_url, json=payload, headers=headers
            ) as response:
                body = await response.json(content_type=None)
        except (ClientError, TimeoutError, ValueError) as exc:
            self._logger.warning(
                "Profile lookup failed",
                extra={
                    "category": "profiles",
                    "tag": tag,
                    "error_type": type(exc).__name__,
                },
            )
            return None
        return self._parse(tag, body)

    def _parse(self, tag: str, body: Any) -> ProfileLookup:
        if isinstance(body, dict) and "code" in body:
            if body.get("code") == _INVALID_TAG_CODE:
                return InvalidTag(tag)
            self._logger.warning(
                "Profile lookup returned an error",
                extra={
                    "category": "profiles",
                    "tag": tag,
                    "error_type": str(body.get("code")),
                },
            )
            return None
        record: Optional[Dict[str, Any]] = None
        if isinstance(body, list) and body and isinstance(body[0], dict):
            record = body[0]
        elif isinstance(body, dict):
            record = body
        if not record:
            return InvalidTag(tag)
        return SendProfile(
            tag=tag,
            name=record.get("name"),
            address=record.get("address"),
            chain_id=record.get("chain_id"),
            sendid=record.get("sendid"),
            all_tags=tuple(record.get("all_tags") or ()),
        )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
