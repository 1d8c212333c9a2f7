"""
Execute parsed chat intents against the board and the AI services.

Every handler returns an ActionResult; none of them raise. Messages use
Slack-style mrkdwn (*bold*); the Discord formatter converts it.
"""
import logging
from typing import Optional
from uuid import uuid4

from backend import config
from backend.services.board_service import get_board_service
from backend.services.briefing_service import get_briefing_service
from backend.services.health_score import get_health_score_service
from backend.services.spec_service import get_spec_service
from backend.services.theme_service import get_theme_service
from shared.constants import IntentAction, PostCategory, PostStatus, VotePriority
from shared.schemas import ParsedIntent, ActionResult

logger = logging.getLogger(__name__)

UNKNOWN_TEXT = (
    "I'm not sure what you want to do. Try asking me to create feedback, "
    "vote on posts, or get your briefing."
)

PRIORITY_EMOJI = {
    VotePriority.MUST_HAVE.value: "🔴",
    VotePriority.IMPORTANT.value: "🟡",
}

STATUS_EMOJI = {
    PostStatus.COMPLETED.value: "✅",
    PostStatus.IN_PROGRESS.value: "🔄",
    PostStatus.PLANNED.value: "📅",
}

TREND_EMOJI = {"up": "📈", "down": "📉"}


def _failure(what: str, error: Exception) -> ActionResult:
    logger.error(f"[ActionExecutor] Failed to {what}: {error}", exc_info=True)
    return ActionResult(success=False, message=f"❌ Failed to {what}", error=str(error))


def _not_found(query: str) -> ActionResult:
    return ActionResult(success=False, message=f'❌ No feedback found matching "{query}"')


def _sentiment_emoji(value: float) -> str:
    if value > 0.3:
        return "😊"
    if value < -0.3:
        return "😞"
    return "😐"


class ActionExecutor:
    """Dispatch a ParsedIntent to its handler."""

    def __init__(self):
        self.board = get_board_service()

    def execute_action(
        self,
        intent: ParsedIntent,
        project_id: str,
        platform: str = "slack",
        user: Optional[str] = None
    ) -> ActionResult:
        params = intent.parameters or {}
        action = intent.action

        if action == IntentAction.CREATE_FEEDBACK:
            return self.create_feedback(project_id, params, platform, user)
        if action == IntentAction.VOTE_ON_POST:
            return self.vote_on_post(project_id, params, platform, user)
        if action == IntentAction.UPDATE_STATUS:
            return self.update_status(project_id, params)
        if action == IntentAction.GET_BRIEFING:
            return self.get_briefing(project_id)
        if action == IntentAction.GET_HEALTH_SCORE:
            return self.get_health_score(project_id)
        if action == IntentAction.SEARCH_FEEDBACK:
            return self.search_feedback(project_id, params)
        if action == IntentAction.GENERATE_SPEC:
            return self.generate_spec(project_id, params)
        if action == IntentAction.GET_INSIGHTS:
            return self.get_insights(project_id)

        return ActionResult(success=True, message=intent.response or UNKNOWN_TEXT)

    # ------------------------------------------------------------------
    # Board mutations
    # ------------------------------------------------------------------

    def create_feedback(self, project_id: str, params: dict, platform: str, user: Optional[str]) -> ActionResult:
        try:
            category = params.get("category") or PostCategory.FEATURE_REQUEST.value
            post = self.board.create_post(
                project_id=project_id,
                title=params.get("title", ""),
                description=params.get("description"),
                category=category,
                author_name=user,
                source=platform,
            )
            return ActionResult(
                success=True,
                message=f'✅ Created feedback: "{post.title}"\nCategory: {category}',
                data=post.model_dump(),
            )
        except Exception as e:
            return _failure("create feedback", e)

    def vote_on_post(self, project_id: str, params: dict, platform: str, user: Optional[str]) -> ActionResult:
        query = (params.get("search_query") or "").strip()
        if not query:
            return _not_found(query)
        try:
            post = self.board.find_post(project_id, query)
            if not post:
                return _not_found(query)

            priority = params.get("priority") or VotePriority.IMPORTANT.value
            # unknown chat users each count as a separate voter
            voter_id = user or f"{platform}:anonymous:{uuid4().hex}"
            vote = self.board.vote(post.id, voter_id, priority)
            if vote is None:
                return _not_found(query)

            emoji = PRIORITY_EMOJI.get(vote.priority, "🟢")
            return ActionResult(
                success=True,
                message=(
                    f'✅ Voted on "{post.title}"\n'
                    f"{emoji} Priority: {vote.priority.replace('_', ' ')}\n"
                    f"📊 Total votes: {vote.total_votes}"
                ),
                data=vote.model_dump(),
            )
        except Exception as e:
            return _failure("vote on post", e)

    def update_status(self, project_id: str, params: dict) -> ActionResult:
        query = (params.get("search_query") or "").strip()
        if not query:
            return _not_found(query)
        try:
            post = self.board.find_post(project_id, query)
            if not post:
                return _not_found(query)

            result = self.board.update_post_status(post.id, params.get("new_status", ""))
            if result is None:
                return _not_found(query)

            return ActionResult(
                success=True,
                message=(
                    f'✅ Updated "{post.title}"\n'
                    f"📋 Status: {result['old_status']} → {result['new_status']}"
                ),
                data={"post_id": post.id, "old_status": result["old_status"], "new_status": result["new_status"]},
            )
        except Exception as e:
            return _failure("update status", e)

    # ------------------------------------------------------------------
    # Read-only reports
    # ------------------------------------------------------------------

    def get_briefing(self, project_id: str) -> ActionResult:
        try:
            briefing = get_briefing_service().get_today_briefing(project_id)
        except Exception as e:
            logger.error(f"[ActionExecutor] Briefing failed: {e}", exc_info=True)
            return ActionResult(
                success=False,
                message="❌ Failed to get briefing. Make sure Mission Control is set up.",
                error=str(e),
            )

        content = briefing.content
        message = "📋 *Today's Briefing*\n\n"
        message += f"{TREND_EMOJI.get(content.sentiment_trend, '➡️')} Sentiment: {content.sentiment_score * 100:.0f}%\n"

        if content.critical_items:
            message += f"\n🚨 *Critical Items ({len(content.critical_items)}):*\n"
            for item in content.critical_items[:3]:
                message += f"• {item.title}\n"

        if content.warning_items:
            message += f"\n⚠️ *Warnings ({len(content.warning_items)}):*\n"
            for item in content.warning_items[:3]:
                message += f"• {item.title}\n"

        if content.recommended_actions:
            message += "\n💡 *Recommended Actions:*\n"
            for item in content.recommended_actions[:3]:
                message += f"• {item.title}\n"

        return ActionResult(success=True, message=message, data=content.model_dump())

    def get_health_score(self, project_id: str) -> ActionResult:
        try:
            health = get_health_score_service().calculate_for_project(project_id)
        except Exception as e:
            return _failure("get health score", e)

        if health is None:
            return ActionResult(
                success=True,
                message="📊 Health score not available. You may need to analyze more feedback first.",
            )

        emoji = "🟢" if health.score >= 80 else "🟡" if health.score >= 60 else "🔴"
        message = f"{emoji} *Product Health: {health.score}/100 ({health.grade.label})*\n\n"
        message += "📊 *Components:*\n"
        for component in health.components.values():
            message += f"• {component.name}: {component.score}%\n"

        if health.top_actions:
            message += "\n💡 *Top Actions:*\n"
            for action in health.top_actions[:3]:
                message += f"• {action.action}\n"

        return ActionResult(success=True, message=message, data=health.model_dump())

    def search_feedback(self, project_id: str, params: dict) -> ActionResult:
        query = params.get("query", "")
        try:
            limit = int(params.get("limit") or 5)
            results = self.board.search_posts(project_id, query, limit=limit)
        except Exception as e:
            return _failure("search feedback", e)

        if not results:
            return ActionResult(success=True, message=f'🔍 No feedback found matching "{query}"', data=[])

        message = f"🔍 *Found {len(results)} result(s):*\n\n"
        for i, post in enumerate(results, 1):
            emoji = STATUS_EMOJI.get(post.status, "📝")
            message += f"{i}. {emoji} *{post.title}*\n"
            message += f"   {post.category or 'Uncategorized'} • {post.status}\n"

        return ActionResult(success=True, message=message, data=[p.model_dump() for p in results])

    def generate_spec(self, project_id: str, params: dict) -> ActionResult:
        query = params.get("search_query", "")
        try:
            post = self.board.find_post(project_id, query) if query else None
            if post is None:
                return ActionResult(
                    success=True,
                    message=(
                        f'📝 To generate a spec for "{query}", please visit:\n'
                        f"{config.SITE_URL}/specs/new\n\n"
                        'Search for the feedback and click "Generate Spec".'
                    ),
                )

            spec = get_spec_service().generate_spec(project_id, post_ids=[post.id])
            return ActionResult(
                success=True,
                message=f'📝 Drafted a spec from "{post.title}":\n{spec.url}',
                data={"spec_id": spec.id, "url": spec.url},
            )
        except Exception as e:
            return _failure("generate spec", e)

    def get_insights(self, project_id: str) -> ActionResult:
        try:
            themes = get_theme_service().get_top_themes(project_id, limit=5)
        except Exception as e:
            return _failure("get insights", e)

        if not themes:
            return ActionResult(success=True, message="📊 No themes detected yet. Keep collecting feedback!")

        message = "📊 *Top Themes:*\n\n"
        for i, theme in enumerate(themes, 1):
            message += f"{i}. {_sentiment_emoji(theme.avg_sentiment)} *{theme.theme_name}*\n"
            message += f"   {theme.frequency} mentions\n"

        return ActionResult(success=True, message=message, data=[t.model_dump() for t in themes])


# Singleton
_action_executor = None


def get_action_executor() -> ActionExecutor:
    """Get or create action executor singleton."""
    global _action_executor
    if _action_executor is None:
        _action_executor = ActionExecutor()
    return _action_executor


def execute_action(
    intent: ParsedIntent,
    project_id: str,
    platform: str = "slack",
    user: Optional[str] = None
) -> ActionResult:
    return get_action_executor().execute_action(intent, project_id, platform, user)
