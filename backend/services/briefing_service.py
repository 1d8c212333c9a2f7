"""
Mission control daily briefing.

One briefing per project per day, cached in daily_briefings. Items are
derived from stored posts, sentiment and themes; the summary paragraph is
written by the LLM when one is configured.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlmodel import select, col

from backend.persistence.database import get_db_session
from backend.persistence.models import Project, Post, SentimentAnalysis, Theme, Spec, DailyBriefing
from backend.services.health_score import sentiment_trend
from backend.services.llm_client import get_llm_client
from shared.constants import PostStatus
from shared.schemas import BriefingItem, DailyBriefingContent, DailyBriefingResponse

logger = logging.getLogger(__name__)

URGENT_SENTIMENT = -0.5
URGENT_MIN_VOTES = 5
HIGH_VOLUME_FREQUENCY = 15
NEGATIVE_THEME_SENTIMENT = -0.3

TREND_WORDS = {"up": "improving", "down": "declining", "stable": "steady"}

BRIEFING_SYSTEM_PROMPT = """You are a Product Intelligence Agent writing a daily briefing for a product leader.
Given a JSON summary of the last 7 days of feedback, write a 2-3 sentence executive summary.
Mention the most important risk and the most promising opportunity. Be concise and concrete.
Respond with plain text only."""


class BriefingService:
    """Build and cache daily briefings."""

    def __init__(self):
        self.llm = get_llm_client()

    def _load(self, project_id: str) -> Dict[str, Any]:
        session = get_db_session()
        try:
            project = session.get(Project, project_id)
            if project is None:
                raise LookupError(f"Project {project_id} not found")

            two_weeks_ago = (datetime.utcnow() - timedelta(days=14)).isoformat()
            week_ago = (datetime.utcnow() - timedelta(days=7)).isoformat()

            posts = list(session.exec(select(Post).where(Post.project_id == project_id)).all())
            window = [p for p in posts if p.created_at >= two_weeks_ago]
            sentiments = {}
            if window:
                sentiments = {
                    r.post_id: r.sentiment_score
                    for r in session.exec(
                        select(SentimentAnalysis).where(col(SentimentAnalysis.post_id).in_([p.id for p in window]))
                    ).all()
                }
            themes = list(session.exec(
                select(Theme).where(Theme.project_id == project_id).order_by(col(Theme.frequency).desc())
            ).all())
            draft_specs = list(session.exec(
                select(Spec)
                .where(Spec.project_id == project_id)
                .where(Spec.status == "draft")
                .where(Spec.created_at >= week_ago)
                .order_by(col(Spec.created_at).desc())
                .limit(5)
            ).all())
            return {
                "project": project,
                "posts": posts,
                "sentiments": sentiments,
                "themes": themes,
                "draft_specs": draft_specs,
                "week_ago": week_ago,
            }
        finally:
            session.close()

    def build_content(self, project_id: str) -> DailyBriefingContent:
        data = self._load(project_id)
        project = data["project"]
        week_ago = data["week_ago"]
        sentiments = data["sentiments"]
        themes = data["themes"]

        recent = [p for p in data["posts"] if p.created_at >= week_ago]
        recent_scores = [sentiments[p.id] for p in recent if p.id in sentiments]
        previous_scores = [
            sentiments[p.id] for p in data["posts"]
            if p.id in sentiments and p.created_at < week_ago
        ]

        content = DailyBriefingContent()
        if recent_scores:
            content.sentiment_score = round((sum(recent_scores) / len(recent_scores) + 1) / 2, 2)
        content.sentiment_trend = {"improving": "up", "declining": "down"}.get(
            sentiment_trend(recent_scores, previous_scores), "stable"
        )

        urgent = sorted(
            [
                p for p in recent
                if sentiments.get(p.id, 0) < URGENT_SENTIMENT and p.vote_count >= URGENT_MIN_VOTES
            ],
            key=lambda p: p.vote_count, reverse=True
        )[:3]
        high_volume = [t for t in themes if t.frequency >= HIGH_VOLUME_FREQUENCY][:5]

        # Critical
        if urgent:
            content.critical_items.append(BriefingItem(
                title=f"{len(urgent)} urgent feedback items with negative sentiment",
                description=f"Customer frustration detected in {len(urgent)} high-voted items",
            ))
            content.threats.extend(f"Negative feedback: {p.title}" for p in urgent)
        for theme in themes:
            if theme.is_emerging and theme.avg_sentiment < NEGATIVE_THEME_SENTIMENT:
                content.threats.append(f"Emerging negative theme: {theme.theme_name}")

        # Recommended actions
        for spec in data["draft_specs"]:
            content.recommended_actions.append(BriefingItem(
                title=f'Review drafted spec: "{spec.title}"',
                description="Draft spec waiting for review",
            ))
        for theme in high_volume[:2]:
            content.recommended_actions.append(BriefingItem(
                title=f'Draft spec for "{theme.theme_name}" ({theme.frequency} requests)',
                description=f"High-volume theme with {theme.frequency} user requests",
                theme_id=theme.id,
            ))
        for post in urgent:
            content.recommended_actions.append(BriefingItem(
                title=f'Address urgent negative feedback: "{post.title[:50]}"',
                description=f"{post.vote_count} votes, negative sentiment",
                post_id=post.id,
            ))

        # Warnings
        for theme in high_volume:
            content.warning_items.append(BriefingItem(
                title=f'High demand for "{theme.theme_name}"',
                description=f"{theme.frequency} user requests - consider prioritizing",
                theme_id=theme.id,
            ))

        # Info
        open_posts = sorted(
            [p for p in data["posts"] if p.status in (PostStatus.OPEN.value, PostStatus.PLANNED.value)],
            key=lambda p: p.vote_count, reverse=True
        )
        for post in open_posts[:3]:
            if post.vote_count <= 0:
                continue
            content.opportunities.append(f"{post.title} ({post.vote_count} votes)")
            content.info_items.append(BriefingItem(
                title=post.title,
                description=f"{post.vote_count} votes • open opportunity",
                post_id=post.id,
            ))
        if themes:
            content.info_items.append(BriefingItem(
                title=f"{len(themes)} active themes identified",
                description="Top: " + ", ".join(t.theme_name for t in themes[:3]),
            ))

        # Success
        if content.sentiment_trend == "up":
            content.success_items.append(BriefingItem(
                title="Sentiment trending up",
                description=f"Overall customer satisfaction is improving ({round(content.sentiment_score * 100)}/100)",
            ))
        shipped = [
            p for p in data["posts"]
            if p.status == PostStatus.COMPLETED.value and p.updated_at >= week_ago
        ]
        if shipped:
            content.success_items.append(BriefingItem(
                title=f"{len(shipped)} feature{'s' if len(shipped) != 1 else ''} shipped this week",
                description="Great execution velocity",
            ))

        content.briefing_text = self._briefing_text(project.name, content, len(recent))
        return content

    def _briefing_text(self, project_name: str, content: DailyBriefingContent, new_count: int) -> str:
        template = (
            f"{project_name} received {new_count} new feedback item{'s' if new_count != 1 else ''} this week. "
            f"Sentiment is {TREND_WORDS[content.sentiment_trend]} at {round(content.sentiment_score * 100)}%"
        )
        if content.critical_items:
            template += f" with {len(content.critical_items)} critical item(s) needing attention."
        else:
            template += " and nothing critical needs attention."

        if not self.llm.enabled:
            return template

        summary = {
            "project": project_name,
            "new_feedback": new_count,
            "sentiment_score": content.sentiment_score,
            "sentiment_trend": content.sentiment_trend,
            "critical": [i.title for i in content.critical_items],
            "warnings": [i.title for i in content.warning_items],
            "opportunities": content.opportunities,
            "threats": content.threats,
        }
        try:
            text = self.llm.invoke_text(BRIEFING_SYSTEM_PROMPT, json.dumps(summary, indent=2), temperature=0.7)
            return text.strip() or template
        except Exception as e:
            logger.error(f"[BriefingService] Briefing text generation failed: {e}")
            return template

    def get_today_briefing(self, project_id: str, refresh: bool = False) -> DailyBriefingResponse:
        """Today's cached briefing, generated on first request of the day."""
        today = datetime.utcnow().date().isoformat()

        session = get_db_session()
        try:
            existing: Optional[DailyBriefing] = session.exec(
                select(DailyBriefing)
                .where(DailyBriefing.project_id == project_id)
                .where(DailyBriefing.briefing_date == today)
            ).first()
            if existing and not refresh:
                return DailyBriefingResponse(
                    id=existing.id,
                    project_id=project_id,
                    briefing_date=today,
                    content=DailyBriefingContent(**json.loads(existing.content)),
                    created_at=existing.created_at,
                )
        finally:
            session.close()

        content = self.build_content(project_id)

        session = get_db_session()
        try:
            row = session.exec(
                select(DailyBriefing)
                .where(DailyBriefing.project_id == project_id)
                .where(DailyBriefing.briefing_date == today)
            ).first()
            if row is None:
                row = DailyBriefing(project_id=project_id, briefing_date=today, content="{}")
            row.content = content.model_dump_json()
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.info(f"[BriefingService] Stored briefing {today} for project {project_id}")
            return DailyBriefingResponse(
                id=row.id,
                project_id=project_id,
                briefing_date=today,
                content=content,
                created_at=row.created_at,
            )
        finally:
            session.close()


# Singleton
_briefing_service = None


def get_briefing_service() -> BriefingService:
    """Get or create briefing service singleton."""
    global _briefing_service
    if _briefing_service is None:
        _briefing_service = BriefingService()
    return _briefing_service
