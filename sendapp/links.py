"""Payment and explorer links for send.app."""

from __future__ import annotations

from typing import Dict, Optional
from urllib.parse import urlencode

from sendapp.amounts import TOKENS, TokenConfig, TokenType
from sendapp.config import get_game_constants


_LINKS = get_game_constants().links

SEND_URL = _LINKS.get("send_url", "https://send.app/send")
CONFIRM_URL = _LINKS.get("confirm_url", "https://send.app/send/confirm")
BASESCAN_TOKEN_URL = _LINKS.get("basescan_token_url", "https://basescan.org/token")


def build_payment_link(
    recipient: str,
    smallest_units: Optional[int] = None,
    token: Optional[TokenConfig] = None,
) -> str:
    """Return a send.app link paying ``recipient`` by sendtag.

    With a positive amount the link points at the confirmation page.
    """

    token = token or TOKENS[TokenType.SEND]
    params: Dict[str, str] = {
        "idType": "tag",
        "recipient": recipient.lstrip("/"),
    }
    if token.address:
        params["sendToken"] = token.address
    if smallest_units is not None and smallest_units > 0:
        params["amount"] = str(smallest_units)
        base_url = CONFIRM_URL
    else:
        base_url = SEND_URL
    return f"{base_url}?{urlencode(params)}"


def build_basescan_link(holder_address: str, token: Optional[TokenConfig] = None) -> str:
    token = token or TOKENS[TokenType.SEND]
    query = urlencode({"a": holder_address})
    return f"{BASESCAN_TOKEN_URL}/{token.address}?{query}"
