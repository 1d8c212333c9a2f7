"""
Chat command LangGraph workflow: parse the intent, run it, format the reply.
"""
import logging
from typing import Literal, Optional, Dict

from langgraph.graph import StateGraph, END

from backend.chat.actions import get_action_executor
from backend.chat.intent_parser import get_intent_parser
from backend.chat.state import ChatCommandState, initial_state
from shared.constants import IntentAction, CHAT_HELP_TEXT
from shared.schemas import ParsedIntent, ActionResult, ChatCommandResponse

logger = logging.getLogger(__name__)


class ChatCommandGraph:
    """
    Orchestrates one Slack / Discord command.

    Unknown intents skip execution: the parser's own response (or the help
    text) becomes the reply.
    """

    def __init__(self):
        self.graph = self._build_graph()

    def _build_graph(self):
        """Build the LangGraph workflow."""
        workflow = StateGraph(ChatCommandState)

        workflow.add_node("parse_intent", self._parse_intent_node)
        workflow.add_node("execute_action", self._execute_action_node)
        workflow.add_node("format_reply", self._format_reply_node)

        workflow.set_entry_point("parse_intent")

        workflow.add_conditional_edges(
            "parse_intent",
            self._route_after_parse,
            {
                "execute": "execute_action",
                "reply": "format_reply"
            }
        )

        workflow.add_edge("execute_action", "format_reply")
        workflow.add_edge("format_reply", END)

        return workflow.compile()

    def _parse_intent_node(self, state: ChatCommandState) -> ChatCommandState:
        intent = get_intent_parser().parse(state["message"])
        new_state = dict(state)
        new_state["intent"] = intent.model_dump(mode="json")
        return ChatCommandState(**new_state)

    def _execute_action_node(self, state: ChatCommandState) -> ChatCommandState:
        intent = ParsedIntent(**state["intent"])
        result = get_action_executor().execute_action(
            intent, state["project_id"], state["platform"], state.get("user")
        )
        new_state = dict(state)
        new_state["result"] = result.model_dump(mode="json")
        return ChatCommandState(**new_state)

    def _format_reply_node(self, state: ChatCommandState) -> ChatCommandState:
        new_state = dict(state)
        if state.get("result") is None:
            intent = ParsedIntent(**state["intent"])
            new_state["result"] = ActionResult(
                success=True, message=intent.response or CHAT_HELP_TEXT
            ).model_dump(mode="json")
        new_state["reply"] = new_state["result"]["message"]
        return ChatCommandState(**new_state)

    def _route_after_parse(self, state: ChatCommandState) -> Literal["execute", "reply"]:
        if state["intent"]["action"] == IntentAction.UNKNOWN.value:
            return "reply"
        return "execute"

    def invoke(self, state: ChatCommandState, config: Optional[Dict] = None) -> ChatCommandState:
        """Invoke the workflow."""
        config = config or {"recursion_limit": 10}
        return self.graph.invoke(state, config)

    def run(
        self,
        message: str,
        project_id: str,
        platform: str = "slack",
        user: Optional[str] = None
    ) -> ChatCommandResponse:
        final = self.invoke(initial_state(message, project_id, platform, user))
        intent = ParsedIntent(**final["intent"])
        logger.info(
            f"[ChatCommandGraph] {platform} command -> {intent.action.value} "
            f"(success={final['result']['success']})"
        )
        return ChatCommandResponse(
            intent=intent,
            result=ActionResult(**final["result"]),
            reply=final["reply"],
        )


# Singleton instance
_chat_graph = None


def get_chat_graph() -> ChatCommandGraph:
    """Get or create chat command graph singleton."""
    global _chat_graph
    if _chat_graph is None:
        _chat_graph = ChatCommandGraph()
    return _chat_graph
