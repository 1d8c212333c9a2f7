"""Chat package - Slack / Discord command handling."""
from backend.chat.state import ChatCommandState
from backend.chat.intent_parser import IntentParser, RuleBasedIntentParser
from backend.chat.graph import ChatCommandGraph
