"""Sendtag extraction from Telegram display names and chat messages."""

from __future__ import annotations

import re
from typing import List, Optional

from sendapp.config import get_game_constants


TAG_MAX_LENGTH = int(get_game_constants().tags.get("max_length", 20))

_TAG_MARKER = "/"
_INVALID_TAG_CHARS = re.compile(r"[^A-Za-z0-9_]")
_TAG_IN_TEXT = re.compile(r"/[A-Za-z0-9_]+")
_URL_IN_TEXT = re.compile(r"(?:https?://|www\.)\S+", re.IGNORECASE)


def normalize_tag(raw: Optional[str], *, max_length: int = TAG_MAX_LENGTH) -> Optional[str]:
    """Return the sendtag embedded in ``raw`` or ``None``.

    ``"Alice /alice_01 🔥"`` yields ``"alice_01"``. The text between the first
    ``/`` and the next one is kept, minus anything outside ``[A-Za-z0-9_]``,
    then truncated to ``max_length``.
    """

    if not raw:
        return None
    parts = raw.split(_TAG_MARKER)
    if len(parts) < 2:
        return None
    cleaned = _INVALID_TAG_CHARS.sub("", parts[1])[:max_length].strip()
    return cleaned or None


def find_tags(text: Optional[str]) -> List[str]:
    """Return every ``/tag`` mention in ``text`` ignoring URL paths."""

    if not text:
        return []
    without_urls = _URL_IN_TEXT.sub(" ", text)
    return _TAG_IN_TEXT.findall(without_urls)
