"""Token metadata and conversions between display amounts and smallest units."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Mapping, Optional

from sendapp.config import get_game_constants


class TokenType(str, enum.Enum):
    SEND = "SEND"
    USDC = "USDC"
    ETH = "ETH"


@dataclass(frozen=True)
class TokenConfig:
    symbol: str
    address: str
    decimals: int


@dataclass(frozen=True)
class ParsedAmount:
    smallest_units: int
    display: str


_AMOUNT_PATTERN = re.compile(r"^\d[\d,]*(?:\.\d+)?$")


def load_token_configs(raw: Optional[Mapping[str, Mapping]] = None) -> Dict[TokenType, TokenConfig]:
    source = raw if raw is not None else get_game_constants().tokens
    configs: Dict[TokenType, TokenConfig] = {}
    for token in TokenType:
        entry = source.get(token.value) or {}
        configs[token] = TokenConfig(
            symbol=token.value,
            address=str(entry.get("address", "")),
            decimals=int(entry.get("decimals", 18)),
        )
    return configs


TOKENS: Dict[TokenType, TokenConfig] = load_token_configs()


def parse_token(text: Optional[str]) -> Optional[TokenType]:
    if not text:
        return None
    try:
        return TokenType(text.strip().upper())
    except ValueError:
        return None


def to_smallest_units(amount: int, decimals: int) -> int:
    return int(amount) * 10 ** decimals


def parse_amount(text: Optional[str], decimals: int) -> Optional[ParsedAmount]:
    """Parse a human amount such as ``"1,250.5"``.

    Returns ``None`` for anything that is not a positive number representable
    in ``decimals`` fractional digits.
    """

    if not text:
        return None
    cleaned = text.strip()
    if not _AMOUNT_PATTERN.match(cleaned):
        return None
    try:
        value = Decimal(cleaned.replace(",", ""))
    except InvalidOperation:
        return None
    if value <= 0:
        return None
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        return None
    units = int(scaled)
    return ParsedAmount(smallest_units=units, display=format_amount(units, decimals))


def format_amount(smallest_units: int, decimals: int) -> str:
    value = Decimal(smallest_units).scaleb(-decimals).normalize()
    return f"{value:,f}"
