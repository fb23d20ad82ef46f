"""Argument parsing for /send and /guess."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from sendapp.amounts import TokenType, parse_token
from sendapp.tags import normalize_tag


_SENDTAG = re.compile(r"/([A-Za-z0-9_]+)")
_AMOUNT = re.compile(r"(\d[\d,]*(?:\.\d+)?)")
_TOKEN = re.compile(r"\b(SEND|USDC|ETH)(?:\s+|$)", re.IGNORECASE)
_COMMAND_PREFIX = re.compile(r"^/\w+(?:@\w+)?")


@dataclass(frozen=True)
class SendCommand:
    recipient: str
    amount: Optional[str] = None
    token: TokenType = TokenType.SEND
    note: Optional[str] = None


@dataclass(frozen=True)
class GuessRequest:
    capacity: Optional[int] = None
    amount: Optional[int] = None


def split_note(text: str) -> Tuple[str, Optional[str]]:
    """Split ``text`` at the first newline or ``>`` into command and note."""

    positions = [index for index in (text.find("\n"), text.find(">")) if index != -1]
    if not positions:
        return text, None
    split_at = min(positions)
    note = text[split_at + 1:].strip()
    return text[:split_at], note or None


def parse_send_command(
    text: str,
    *,
    reply_display_name: Optional[str] = None,
    is_reply: bool = False,
    is_reply_to_self: bool = False,
) -> Optional[SendCommand]:
    """Parse ``/send /tag 30 SEND > note``.

    As a reply, the recipient comes from the replied-to user's name and the
    tag argument may be omitted. Returns ``None`` when no recipient can be
    determined or the reply targets the sender.
    """

    if is_reply_to_self:
        return None
    command, note = split_note(text or "")
    content = _COMMAND_PREFIX.sub("", command.strip(), count=1).strip()

    if is_reply:
        recipient = normalize_tag(reply_display_name)
        search_area = content
    else:
        match = _SENDTAG.search(content)
        recipient = match.group(1) if match else None
        search_area = content[match.end():] if match else ""
    if not recipient:
        return None

    amount = None
    amount_match = _AMOUNT.search(search_area)
    if amount_match:
        amount = amount_match.group(1).replace(",", "")

    token = TokenType.SEND
    token_match = _TOKEN.search(search_area)
    if token_match:
        token = parse_token(token_match.group(1)) or TokenType.SEND

    return SendCommand(recipient=recipient, amount=amount, token=token, note=note)


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(value.replace(",", ""))
    except ValueError:
        return None


def parse_guess_args(
    args: Sequence[str],
    *,
    min_amount: int,
    min_players: int,
    max_players: int,
) -> GuessRequest:
    """Interpret ``/guess [players] [amount]``.

    A first number of at least ``min_amount`` is the prize. A smaller one up
    to ``max_players`` is the player count, raised to ``min_players``, and
    may be followed by the prize. Anything else is ignored.
    """

    if not args:
        return GuessRequest()
    first = _parse_int(args[0])
    if first is None:
        return GuessRequest()
    if first >= min_amount:
        return GuessRequest(amount=first)
    if first > max_players:
        return GuessRequest()

    capacity = max(first, min_players)
    amount = None
    if len(args) > 1:
        second = _parse_int(args[1])
        if second is not None and second >= min_amount:
            amount = second
    return GuessRequest(capacity=capacity, amount=amount)
