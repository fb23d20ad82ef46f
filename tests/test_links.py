from urllib.parse import parse_qs, urlsplit

from sendapp.amounts import TOKENS, TokenType
from sendapp.links import build_basescan_link, build_payment_link


def _split(url):
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}", parse_qs(parts.query)


def test_payment_link_without_amount_opens_send_page():
    base, query = _split(build_payment_link("/alice"))
    assert base == "https://send.app/send"
    assert query["idType"] == ["tag"]
    assert query["recipient"] == ["alice"]
    assert query["sendToken"] == [TOKENS[TokenType.SEND].address]
    assert "amount" not in query


def test_payment_link_with_amount_opens_confirmation():
    base, query = _split(
        build_payment_link("bob", 2_500_000, TOKENS[TokenType.USDC])
    )
    assert base == "https://send.app/send/confirm"
    assert query["amount"] == ["2500000"]
    assert query["sendToken"] == [TOKENS[TokenType.USDC].address]


def test_zero_amount_is_treated_as_missing():
    base, query = _split(build_payment_link("bob", 0))
    assert base == "https://send.app/send"
    assert "amount" not in query


def test_basescan_link_points_at_token_holder():
    url = build_basescan_link("0x1234")
    assert url == (
        f"https://basescan.org/token/{TOKENS[TokenType.SEND].address}?a=0x1234"
    )
