"""
Intent parsing for Slack / Discord commands.

Tool calling through the LLM when configured; a deterministic pattern
parser otherwise (and whenever the LLM call fails).
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

from langchain_core.messages import SystemMessage, HumanMessage

from backend import config
from backend.services.llm_client import get_llm_client
from shared.constants import IntentAction, PostCategory, PostStatus, VotePriority, CHAT_HELP_TEXT
from shared.schemas import ParsedIntent

logger = logging.getLogger(__name__)

NOT_SURE_TEXT = (
    "I'm not sure what you want to do. Try asking me to create feedback, "
    "vote on posts, or get your briefing."
)

INTENT_SYSTEM_PROMPT = """You are an AI assistant for SignalsLoop, a product feedback management tool.
Your job is to understand what the user wants to do and call the appropriate function.

- Users can create feedback, vote on posts, change statuses, get briefings, search, etc.
- Infer the most likely intent from casual language
- If the message is just a greeting or unclear, reply with a short message explaining what you can do

Examples:
- "add feedback about slow loading" -> create_feedback with title "Slow loading"
- "vote for the mobile app bug as must have" -> vote_on_post
- "what's happening today?" -> get_briefing
- "how healthy is our product?" -> get_health_score
- "find feedback about payments" -> search_feedback"""


def _tool(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {"type": "object", "properties": properties, "required": required},
        },
    }


INTENT_TOOLS = [
    _tool("create_feedback", "Create a new feedback post in SignalsLoop", {
        "title": {"type": "string", "description": "Title of the feedback (brief summary)"},
        "description": {"type": "string", "description": "Detailed description of the feedback"},
        "category": {
            "type": "string",
            "enum": [c.value for c in PostCategory],
            "description": "Category of the feedback",
        },
    }, ["title"]),
    _tool("vote_on_post", "Vote on an existing feedback post", {
        "search_query": {"type": "string", "description": "Search query to find the post to vote on"},
        "priority": {
            "type": "string",
            "enum": [p.value for p in VotePriority],
            "description": "Priority level of the vote",
        },
    }, ["search_query", "priority"]),
    _tool("update_status", "Change the status of a feedback post", {
        "search_query": {"type": "string", "description": "Search query to find the post to update"},
        "new_status": {
            "type": "string",
            "enum": [s.value for s in PostStatus],
            "description": "New status to set",
        },
    }, ["search_query", "new_status"]),
    _tool("get_briefing", "Get today's Mission Control briefing with critical items and health overview", {}, []),
    _tool("get_health_score", "Get the current product health score with top issues", {}, []),
    _tool("search_feedback", "Search for feedback matching a query", {
        "query": {"type": "string", "description": "Search query to find feedback"},
        "limit": {"type": "number", "description": "Maximum number of results (default 5)"},
    }, ["query"]),
    _tool("generate_spec", "Generate a product spec from feedback", {
        "search_query": {"type": "string", "description": "Search query to find the feedback to generate spec from"},
    }, ["search_query"]),
    _tool("get_insights", "Get current insights and emerging themes from feedback", {}, []),
]


def clean_message(message: str) -> str:
    """Drop Slack user mentions (<@U123>) and @name mentions."""
    cleaned = re.sub(r"<@[A-Z0-9]+>", "", message or "")
    cleaned = re.sub(r"@\w+", "", cleaned)
    return cleaned.strip()


def _clean_query(text: str) -> str:
    text = text.strip().strip("\"'“”").rstrip(".!?").strip()
    text = re.sub(r"^(the|a|an)\s+", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\s+(post|feedback|request|item)$", "", text, flags=re.IGNORECASE)
    return text.strip().strip("\"'“”")


def _normalize_status(text: str) -> str:
    text = text.lower().strip().replace("-", " ")
    if text in ("done", "complete", "completed", "shipped"):
        return PostStatus.COMPLETED.value
    if text in ("in progress", "in_progress", "started", "wip"):
        return PostStatus.IN_PROGRESS.value
    return PostStatus(text.replace(" ", "_")).value


def _normalize_priority(text: Optional[str]) -> str:
    if not text:
        return VotePriority.IMPORTANT.value
    key = re.sub(r"[\s\-]+", "_", text.lower().strip())
    return VotePriority(key).value


def _guess_category(text: str, hint: Optional[str] = None) -> str:
    lower = f"{hint or ''} {text}".lower()
    if re.search(r"\b(bug|broken|crash\w*|error|fails?|not working)\b", lower):
        return PostCategory.BUG.value
    if re.search(r"\b(question|how do i|how can i)\b", lower) or text.strip().endswith("?"):
        return PostCategory.QUESTION.value
    if re.search(r"\b(improve|improvement|better|faster|easier)\b", lower):
        return PostCategory.IMPROVEMENT.value
    return PostCategory.FEATURE_REQUEST.value


class RuleBasedIntentParser:
    """
    Pattern matching over the cleaned message.

    Order matters: spec and status updates are checked before generic
    create/search phrasing so "create a spec for X" is not read as feedback.
    """

    GREETING_PATTERNS = [
        r"^hi\b", r"^hello\b", r"^hey\b", r"^help\b", r"^good (morning|afternoon|evening)",
        r"^thanks\b", r"^thank you", r"^what can you do",
    ]

    SPEC_PATTERN = re.compile(
        r"\b(?:generate|write|create|draft)\s+(?:a\s+|an\s+)?(?:spec|prd)\b(?:\s+(?:for|about|on))?\s*(?P<query>.*)$",
        re.IGNORECASE,
    )

    STATUS_PATTERN = re.compile(
        r"\b(?:mark|move|set|change|update)\s+(?P<query>.+?)\s+(?:as|to)\s+"
        r"(?P<status>open|planned|in[ _-]progress|completed?|done|closed|shipped)\b",
        re.IGNORECASE,
    )

    VOTE_PATTERN = re.compile(
        r"(?:\bupvote|\bvote|\+1)\s+(?:for\s+|on\s+)?(?P<query>.+?)"
        r"(?:\s+as\s+(?:a\s+)?(?P<priority>must[ _-]?have|important|nice[ _-]to[ _-]have))?\s*$",
        re.IGNORECASE,
    )

    BRIEFING_PATTERNS = [
        r"\bbriefing\b", r"\bbrief me\b", r"what'?s happening", r"\bdaily (summary|update|digest)\b",
        r"\bcatch me up\b", r"\bmission control\b",
    ]

    HEALTH_PATTERNS = [
        r"\bhealth\b", r"\bhealthy\b", r"how are we doing", r"\bproduct score\b",
    ]

    INSIGHTS_PATTERNS = [
        r"\binsights?\b", r"\bthemes?\b", r"\btrends?\b", r"\btrending\b",
        r"what are (users|customers|people) (saying|asking|requesting)",
    ]

    SEARCH_PATTERN = re.compile(
        r"\b(?:search|find|look\s+up|lookup|show\s+me|any)\s+(?:for\s+)?(?:(?:feedback|posts?|requests?)\s+)?"
        r"(?:about\s+|on\s+|for\s+|matching\s+|with\s+)?(?P<query>.+)$",
        re.IGNORECASE,
    )

    CREATE_PATTERN = re.compile(
        r"\b(?:add|create|submit|log|file|report|new)\s+(?:a\s+|an\s+|some\s+)?"
        r"(?P<kind>feedback|bug(?:\s+report)?|feature(?:\s+request)?|request|idea|issue|suggestion)"
        r"(?:\s*:\s*|\s+(?:about|for|that|on|saying)\s+|\s+)(?P<title>.+)$",
        re.IGNORECASE,
    )

    @classmethod
    def _matches(cls, patterns: List[str], text: str) -> bool:
        return any(re.search(p, text) for p in patterns)

    @classmethod
    def parse(cls, message: str) -> ParsedIntent:
        text = message.strip()
        lower = text.lower()

        if cls._matches(cls.GREETING_PATTERNS, lower) and len(lower.split()) <= 5:
            return ParsedIntent(action=IntentAction.UNKNOWN, confidence=0.6, response=CHAT_HELP_TEXT)

        match = cls.SPEC_PATTERN.search(text)
        if match and _clean_query(match.group("query")):
            return ParsedIntent(
                action=IntentAction.GENERATE_SPEC,
                parameters={"search_query": _clean_query(match.group("query"))},
                confidence=0.75,
            )

        match = cls.STATUS_PATTERN.search(text)
        if match:
            return ParsedIntent(
                action=IntentAction.UPDATE_STATUS,
                parameters={
                    "search_query": _clean_query(match.group("query")),
                    "new_status": _normalize_status(match.group("status")),
                },
                confidence=0.8,
            )

        match = cls.VOTE_PATTERN.search(text)
        if match and _clean_query(match.group("query")):
            return ParsedIntent(
                action=IntentAction.VOTE_ON_POST,
                parameters={
                    "search_query": _clean_query(match.group("query")),
                    "priority": _normalize_priority(match.group("priority")),
                },
                confidence=0.75,
            )

        if cls._matches(cls.BRIEFING_PATTERNS, lower):
            return ParsedIntent(action=IntentAction.GET_BRIEFING, confidence=0.8)

        if cls._matches(cls.HEALTH_PATTERNS, lower):
            return ParsedIntent(action=IntentAction.GET_HEALTH_SCORE, confidence=0.8)

        match = cls.CREATE_PATTERN.search(text)
        if match and _clean_query(match.group("title")):
            title = _clean_query(match.group("title"))
            return ParsedIntent(
                action=IntentAction.CREATE_FEEDBACK,
                parameters={
                    "title": title[:1].upper() + title[1:],
                    "category": _guess_category(title, match.group("kind")),
                },
                confidence=0.7,
            )

        match = cls.SEARCH_PATTERN.search(text)
        if match and _clean_query(match.group("query")):
            return ParsedIntent(
                action=IntentAction.SEARCH_FEEDBACK,
                parameters={"query": _clean_query(match.group("query")), "limit": 5},
                confidence=0.75,
            )

        if cls._matches(cls.INSIGHTS_PATTERNS, lower):
            return ParsedIntent(action=IntentAction.GET_INSIGHTS, confidence=0.7)

        return ParsedIntent(action=IntentAction.UNKNOWN, confidence=0.3, response=CHAT_HELP_TEXT)


class IntentParser:
    """LLM tool-calling parser with the rule-based parser as fallback."""

    def __init__(self):
        self.llm = get_llm_client()

    @property
    def use_llm(self) -> bool:
        return self.llm.enabled and config.ENABLE_CHAT_LLM_INTENTS

    def _parse_with_llm(self, message: str) -> ParsedIntent:
        model = self.llm.chat_model(temperature=0.0).bind_tools(INTENT_TOOLS, tool_choice="auto")
        response = model.invoke([SystemMessage(content=INTENT_SYSTEM_PROMPT), HumanMessage(content=message)])

        tool_calls = getattr(response, "tool_calls", None) or []
        if tool_calls:
            call = tool_calls[0]
            args = call.get("args") or {}
            if isinstance(args, str):
                args = json.loads(args)
            return ParsedIntent(action=IntentAction(call["name"]), parameters=args, confidence=0.9)

        return ParsedIntent(
            action=IntentAction.UNKNOWN,
            confidence=0.5,
            response=str(response.content or "") or NOT_SURE_TEXT,
        )

    def parse(self, message: str) -> ParsedIntent:
        cleaned = clean_message(message)
        if not cleaned:
            return ParsedIntent(action=IntentAction.UNKNOWN, confidence=1.0, response=CHAT_HELP_TEXT)

        if self.use_llm:
            try:
                return self._parse_with_llm(cleaned)
            except Exception as e:
                logger.warning(f"[IntentParser] LLM parsing failed, using rules: {e}")

        intent = RuleBasedIntentParser.parse(cleaned)
        logger.info(f"[IntentParser] '{cleaned[:60]}' -> {intent.action.value} ({intent.confidence})")
        return intent


def describe_action(intent: ParsedIntent) -> str:
    """Short human-readable description of what is about to happen."""
    params = intent.parameters
    if intent.action == IntentAction.CREATE_FEEDBACK:
        return f'Creating feedback: "{params.get("title", "")}"'
    if intent.action == IntentAction.VOTE_ON_POST:
        return f'Voting on post matching "{params.get("search_query", "")}" as {params.get("priority", "")}'
    if intent.action == IntentAction.UPDATE_STATUS:
        return f'Updating status to {params.get("new_status", "")} for "{params.get("search_query", "")}"'
    if intent.action == IntentAction.GET_BRIEFING:
        return "Getting today's briefing..."
    if intent.action == IntentAction.GET_HEALTH_SCORE:
        return "Getting product health score..."
    if intent.action == IntentAction.SEARCH_FEEDBACK:
        return f'Searching for "{params.get("query", "")}"...'
    if intent.action == IntentAction.GENERATE_SPEC:
        return f'Generating spec for "{params.get("search_query", "")}"...'
    if intent.action == IntentAction.GET_INSIGHTS:
        return "Getting current insights..."
    return intent.response or NOT_SURE_TEXT


# Singleton
_intent_parser = None


def get_intent_parser() -> IntentParser:
    """Get or create intent parser singleton."""
    global _intent_parser
    if _intent_parser is None:
        _intent_parser = IntentParser()
    return _intent_parser


def parse_intent(message: str) -> ParsedIntent:
    return get_intent_parser().parse(message)
