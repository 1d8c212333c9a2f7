"""
Roadmap suggestions: score every stored theme and keep one suggestion per theme.
"""
import json
import logging
import re
from typing import Any, Dict, List

from sqlmodel import select, col

from backend.analysis.roadmap_priority import (
    HIGH_VALUE_KEYWORDS, calculate_priority_score, assign_priority_level,
    engagement_urgency, estimate_effort, count_competitor_mentions, explain_score
)
from backend.persistence.database import get_db_session
from backend.persistence.models import Project, Post, Theme, FeedbackTheme, RoadmapSuggestion, utc_now
from shared.schemas import RoadmapSuggestionResponse

logger = logging.getLogger(__name__)


def _impact_keywords(texts: List[str]) -> List[str]:
    found = set()
    for text in texts:
        words = set(re.findall(r"[a-z]+", (text or "").lower()))
        found.update(words & HIGH_VALUE_KEYWORDS)
    return sorted(found)


class RoadmapService:
    """Turn detected themes into prioritized roadmap suggestions."""

    def build_theme_input(self, theme: Theme, posts: List[Post]) -> Dict[str, Any]:
        texts = [f"{p.title} {p.description or ''}" for p in posts]
        return {
            "mention_count": theme.frequency,
            "avg_sentiment": theme.avg_sentiment,
            "first_detected_at": theme.first_seen,
            "business_impact_keywords": _impact_keywords(texts),
            "urgency_scores": [engagement_urgency(p.vote_count, p.comment_count) for p in posts],
            "competitor_count": count_competitor_mentions(texts),
            "estimated_effort": estimate_effort(theme.theme_name, theme.description),
        }

    def generate_suggestions(self, project_id: str) -> List[RoadmapSuggestionResponse]:
        """Score all themes of a project, upsert suggestions, highest score first."""
        session = get_db_session()
        try:
            if session.get(Project, project_id) is None:
                raise LookupError(f"Project {project_id} not found")

            themes = list(session.exec(select(Theme).where(Theme.project_id == project_id)).all())
            if not themes:
                logger.info(f"[RoadmapService] No themes for project {project_id}")
                return []

            max_mentions = max(t.frequency for t in themes)
            responses = []
            for theme in themes:
                posts = list(session.exec(
                    select(Post)
                    .join(FeedbackTheme, FeedbackTheme.post_id == Post.id)
                    .where(FeedbackTheme.theme_id == theme.id)
                ).all())
                scored = calculate_priority_score(self.build_theme_input(theme, posts), max_mentions)
                level = assign_priority_level(scored["total_score"])
                reasoning = explain_score(theme.theme_name, scored["breakdown"])

                row = session.exec(
                    select(RoadmapSuggestion).where(RoadmapSuggestion.theme_id == theme.id)
                ).first()
                if row is None:
                    row = RoadmapSuggestion(project_id=project_id, theme_id=theme.id)
                row.priority_score = scored["total_score"]
                row.priority_level = level
                row.breakdown = json.dumps(scored["breakdown"])
                row.reasoning = reasoning
                row.created_at = utc_now()
                session.add(row)
                session.flush()

                responses.append(RoadmapSuggestionResponse(
                    id=row.id,
                    theme_id=theme.id,
                    theme_name=theme.theme_name,
                    priority_score=row.priority_score,
                    priority_level=level,
                    breakdown=scored["breakdown"],
                    reasoning=reasoning,
                ))
            session.commit()
        finally:
            session.close()

        responses.sort(key=lambda r: r.priority_score, reverse=True)
        logger.info(f"[RoadmapService] Generated {len(responses)} suggestions for {project_id}")
        return responses

    def list_suggestions(self, project_id: str) -> List[RoadmapSuggestionResponse]:
        session = get_db_session()
        try:
            rows = session.exec(
                select(RoadmapSuggestion, Theme)
                .join(Theme, Theme.id == RoadmapSuggestion.theme_id)
                .where(RoadmapSuggestion.project_id == project_id)
                .order_by(col(RoadmapSuggestion.priority_score).desc())
            ).all()
            return [
                RoadmapSuggestionResponse(
                    id=s.id,
                    theme_id=t.id,
                    theme_name=t.theme_name,
                    priority_score=s.priority_score,
                    priority_level=s.priority_level,
                    breakdown=json.loads(s.breakdown or "{}"),
                    reasoning=s.reasoning,
                )
                for s, t in rows
            ]
        finally:
            session.close()


# Singleton
_roadmap_service = None


def get_roadmap_service() -> RoadmapService:
    """Get or create roadmap service singleton."""
    global _roadmap_service
    if _roadmap_service is None:
        _roadmap_service = RoadmapService()
    return _roadmap_service
