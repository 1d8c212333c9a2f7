"""
Platform reply payloads for Slack and Discord.
"""
import re
from typing import Any, Dict

from shared.constants import IntentAction
from shared.schemas import ActionResult

DISCORD_MAX_CONTENT = 2000
DISCORD_EPHEMERAL_FLAG = 64

# Discord interaction types
DISCORD_PING = 1
DISCORD_APPLICATION_COMMAND = 2
DISCORD_PONG = 1
DISCORD_CHANNEL_MESSAGE = 4

# Successful mutations are shared with the whole channel
PUBLIC_ACTIONS = {
    IntentAction.CREATE_FEEDBACK,
    IntentAction.VOTE_ON_POST,
    IntentAction.UPDATE_STATUS,
}


def slack_reply(text: str, action: IntentAction, result: ActionResult) -> Dict[str, Any]:
    response_type = "in_channel" if result.success and action in PUBLIC_ACTIONS else "ephemeral"
    return {
        "response_type": response_type,
        "text": text,
        "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": text}}],
    }


def slack_message(text: str) -> Dict[str, Any]:
    """Plain ephemeral message (errors, unlinked workspaces)."""
    return {"response_type": "ephemeral", "text": text}


def slack_to_discord_markdown(text: str) -> str:
    """Slack *bold* becomes Discord **bold**; existing **bold** is left alone."""
    return re.sub(r"(?<!\*)\*(?!\s)([^*\n]+?)(?<!\s)\*(?!\*)", r"**\1**", text)


def discord_reply(text: str, success: bool = True) -> Dict[str, Any]:
    content = slack_to_discord_markdown(text)
    if len(content) > DISCORD_MAX_CONTENT:
        content = content[:DISCORD_MAX_CONTENT - 3] + "..."
    data: Dict[str, Any] = {"content": content}
    if not success:
        data["flags"] = DISCORD_EPHEMERAL_FLAG
    return {"type": DISCORD_CHANNEL_MESSAGE, "data": data}


def discord_pong() -> Dict[str, Any]:
    return {"type": DISCORD_PONG}
