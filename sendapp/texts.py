"""Chat texts rendered by the bot."""

from __future__ import annotations

from typing import Optional

from sendapp.amounts import TokenType
from sendapp.entities import UserId
from sendapp.utils.markdown import escape_markdown_v1, escape_markdown_v2

# Zero-width link text; Telegram notifies the mentioned user without
# showing the mention.
_HIDDEN_MENTION = "[‎](tg://user?id={user_id})"

PROCESSING = "Processing...  🎲"
MISSING_TAG = "Add sendtag to your name!"
NO_ACTIVE_GAME = "No active game!"
ALREADY_JOINED = "Already joined!"
JOIN_FAILED = "Something went wrong, try again!"
START_FAILED = "❌ Error starting game: Something went wrong."

JOIN_BUTTON = "/join"
SEND_BUTTON = "/send"
BASESCAN_BUTTON = "Basescan 🔗"

NOTE_WIDTH = 28


def hidden_mention(user_id: UserId) -> str:
    return _HIDDEN_MENTION.format(user_id=user_id)


def admitted(position: int, capacity: int) -> str:
    return f"You're #{position} of {capacity} 🎲"


def won(position: int, capacity: int) -> str:
    return f"You're #{position} of {capacity} 🎉 You won!"


def lost(position: int, capacity: int) -> str:
    return f"You're #{position} of {capacity}. Not this time 😢"


def overflow(rank: int) -> str:
    return f"Game filled up! You were #{rank} 😢"


def cooldown_notice(seconds_left: int) -> str:
    return f"⏳ Sendtag Cooldown: {max(seconds_left, 0)} sec"


def winner_announcement(
    *,
    owner_id: UserId,
    owner_name: str,
    winner_id: UserId,
    winner_tag: str,
    winning_position: int,
    capacity: int,
    amount: str,
    surge_amount: Optional[str] = None,
    token: TokenType = TokenType.SEND,
) -> str:
    """Markdown v1 winner message with hidden mentions of owner and winner."""

    text = (
        f"🎉 Winner\n # {winning_position} out of {capacity}!\n\n"
        f"➡️ {hidden_mention(owner_id)} {escape_markdown_v1(owner_name)} "
        f"send {amount} {token.value} to {escape_markdown_v1('/' + winner_tag)} "
        f"{hidden_mention(winner_id)}"
    )
    if surge_amount:
        text += f"\n\n+ {surge_amount} {token.value} during Send Surge"
    return text


def help_text(min_amount: int, surge_increase: int, surge_cooldown_seconds: float) -> str:
    """MarkdownV2 help text listing commands and the surge ladder."""

    minutes = max(int(surge_cooldown_seconds // 60), 1)
    cooldown = "1 minute" if minutes == 1 else f"{minutes} minutes"
    ladder = "\n".join(
        f"/guess \\- {min_amount + surge_increase * step:,} SEND minimum"
        for step in range(3)
    )
    return (
        "*SendBot* only works if your sendtag is in your name\n\n"
        "*/send*\nSend SEND tokens\n`/send /vic 30 SEND`\n\n"
        "*Send with note*\n`/send /vic 30 > Hello!`\n\n"
        "*Send as reply*\n`/send 30 > Hello!`\n\n"
        "*Games*\n"
        f"• /guess \\- Random slots, {min_amount} SEND minimum\n"
        "• /guess 50 \\- Random slots, 50 SEND prize\n"
        "• /guess 10 50 \\- 10 slots, 50 SEND prize\n"
        "• /kill \\- End your game\n\n"
        f"*Send Surge* {cooldown} cooldown\n"
        f"`{ladder}`"
    )


def wrap_text(text: str, max_width: int = NOTE_WIDTH) -> str:
    """Greedy word wrap that keeps explicit line breaks."""

    wrapped = []
    for paragraph in text.split("\n"):
        words = paragraph.split(" ")
        line = words[0]
        for word in words[1:]:
            if len(line) + 1 + len(word) <= max_width:
                line = f"{line} {word}"
            else:
                wrapped.append(line)
                line = word
        wrapped.append(line)
    return "\n".join(wrapped)


def send_card(
    *,
    sender_name: str,
    recipient: str,
    amount: Optional[str] = None,
    token: TokenType = TokenType.SEND,
    note: Optional[str] = None,
    reply_user_id: Optional[UserId] = None,
) -> str:
    """MarkdownV2 card shown for a /send request."""

    sender = escape_markdown_v2(sender_name)
    target = escape_markdown_v2(f"/{recipient}")
    if amount:
        header = f"`\n┃ `*{escape_markdown_v2(amount)} {token.value} to {target}*"
    else:
        header = f"`\n┃ `*{sender} sending to {target}*"

    text = header
    if note:
        body = wrap_text(escape_markdown_v2(note)).replace("\n", "\n┃ ")
        text += f"`\n┃` `━━━━━━━━━━\n┃` {body}`\n┃`"
    if amount:
        padding = " " * max(NOTE_WIDTH - len(sender) - len("sent by "), 0)
        text += f"`\n┃` {padding}`sent by {sender}`"
    if reply_user_id:
        text += hidden_mention(reply_user_id)
    return text
