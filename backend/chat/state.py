"""
State carried through the chat command graph.
"""
from typing import TypedDict, Optional, Dict, Any


class ChatCommandState(TypedDict):
    """
    One slash command, from raw text to reply.

    intent and result hold plain dicts (ParsedIntent / ActionResult dumps)
    so the state stays serializable.
    """
    # Request
    message: str
    project_id: str
    platform: str  # slack or discord
    user: Optional[str]

    # Parsing
    intent: Optional[Dict[str, Any]]

    # Execution
    result: Optional[Dict[str, Any]]

    # Output
    reply: str


def initial_state(message: str, project_id: str, platform: str = "slack", user: Optional[str] = None) -> ChatCommandState:
    return ChatCommandState(
        message=message or "",
        project_id=project_id,
        platform=platform,
        user=user,
        intent=None,
        result=None,
        reply="",
    )
