"""
Product health score (0-100).

Five weighted components:
- Overall Sentiment (30%): average sentiment mapped from [-1, 1] to [0, 100]
- Sentiment Trend (20%): improving 100, stable 60, declining 20
- Issue Resolution (20%): 100 - critical_ratio * 500
- Feature Clarity (15%): share of theme mentions held by the top 3 themes
- User Love (15%): share of positive feedback
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlmodel import select, col

from backend.persistence.database import get_db_session
from backend.persistence.models import Project, Post, SentimentAnalysis, Theme
from shared.schemas import (
    HealthScoreComponent, HealthScoreGrade, HealthScoreAction, HealthScoreResult
)

logger = logging.getLogger(__name__)

TREND_SCORES = {"improving": 100, "stable": 60, "declining": 20}
TREND_THRESHOLD = 0.1
CRITICAL_SENTIMENT = -0.5
CRITICAL_CATEGORY = "Critical Bug"

TREND_DESCRIPTIONS = {
    "improving": "Sentiment is trending upward - great momentum!",
    "stable": "Sentiment has been consistent over time",
    "declining": "Sentiment is trending downward - needs attention",
}


def component_status(score: float) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "warning"
    return "critical"


def _describe(score: float, texts: List[str]) -> str:
    """Pick one of four descriptions by the 80/60/40 bands."""
    if score >= 80:
        return texts[0]
    if score >= 60:
        return texts[1]
    if score >= 40:
        return texts[2]
    return texts[3]


def _component(name: str, score: float, weight: int, description: str) -> HealthScoreComponent:
    return HealthScoreComponent(
        name=name,
        score=round(score),
        weight=weight,
        weighted_score=score * weight / 100,
        status=component_status(score),
        description=description,
    )


def sentiment_component(overall_sentiment: float) -> HealthScoreComponent:
    score = (overall_sentiment + 1) / 2 * 100
    return _component("Overall Sentiment", score, 30, _describe(score, [
        "Users are expressing overwhelmingly positive sentiment",
        "Sentiment is generally positive with some concerns",
        "Mixed feelings - balance of positive and negative feedback",
        "Predominantly negative sentiment detected in feedback",
    ]))


def trend_component(trend: str) -> HealthScoreComponent:
    score = TREND_SCORES.get(trend, TREND_SCORES["declining"])
    return _component("Sentiment Trend", score, 20, TREND_DESCRIPTIONS.get(trend, TREND_DESCRIPTIONS["declining"]))


def issues_component(critical_issue_count: int, total_feedback_count: int) -> HealthScoreComponent:
    ratio = critical_issue_count / total_feedback_count if total_feedback_count > 0 else 0
    score = max(0.0, 100 - ratio * 500)
    if critical_issue_count == 0:
        description = "No critical issues detected"
    elif score >= 80:
        description = "Few critical issues relative to total feedback"
    elif score >= 60:
        description = f"{critical_issue_count} critical issues - being addressed"
    else:
        description = f"{critical_issue_count} critical issues requiring immediate attention"
    return _component("Issue Resolution", score, 20, description)


def clarity_component(top_theme_concentration: float) -> HealthScoreComponent:
    score = min(100.0, max(0.0, top_theme_concentration))
    return _component("Feature Clarity", score, 15, _describe(score, [
        "Clear user needs - top themes are well-defined",
        "Reasonably clear signal on user priorities",
        "Feedback is somewhat scattered across themes",
        "Low clarity - feedback spread thin across many themes",
    ]))


def love_component(praise_percentage: float) -> HealthScoreComponent:
    score = min(100.0, max(0.0, praise_percentage))
    return _component("User Love", score, 15, _describe(score, [
        "Users frequently express love for your product!",
        "Good amount of praise in user feedback",
        "Some praise, but room to delight users more",
        "Low praise ratio - focus on user delight",
    ]))


def get_grade(score: int) -> HealthScoreGrade:
    if score >= 80:
        return HealthScoreGrade(
            label="Excellent", color="green", emoji="🟢",
            description="Your product is thriving! Users love it and feedback is predominantly positive.",
        )
    if score >= 60:
        return HealthScoreGrade(
            label="Good", color="blue", emoji="🔵",
            description="Your product is performing well with room for improvement in key areas.",
        )
    if score >= 40:
        return HealthScoreGrade(
            label="Needs Attention", color="yellow", emoji="🟡",
            description="There are significant opportunities to improve user satisfaction.",
        )
    return HealthScoreGrade(
        label="Critical", color="red", emoji="🔴",
        description="Urgent attention needed. Critical issues are impacting user experience.",
    )


def get_interpretation(score: int, grade: HealthScoreGrade) -> str:
    prefix = f"Your product health score of {score} is {grade.label}"
    if score >= 80:
        return (
            f"{prefix}! {grade.emoji} Your users are highly satisfied and the feedback trends are positive. "
            "Keep up the excellent work and continue listening to your users."
        )
    if score >= 60:
        return (
            f"{prefix}. {grade.emoji} You're doing well overall, but there are opportunities to improve. "
            "Focus on the recommended actions below to boost your score."
        )
    if score >= 40:
        return (
            f"{prefix}. {grade.emoji} There are several areas requiring attention. "
            "Prioritize addressing critical issues and improving user sentiment to get back on track."
        )
    return (
        f"{prefix}. {grade.emoji} This requires immediate attention. "
        "Focus on resolving critical issues first, then work on improving overall sentiment."
    )


def generate_actions(inputs: Dict[str, Any], components: Dict[str, HealthScoreComponent]) -> List[HealthScoreAction]:
    """Improvement actions for weak components, most urgent first, at most five."""
    actions: List[HealthScoreAction] = []

    sentiment = components["sentiment"].score
    if sentiment < 60:
        actions.append(HealthScoreAction(
            priority=1 if sentiment < 40 else 2,
            component="Overall Sentiment",
            action="Address negative feedback themes to improve overall sentiment",
            impact=f"Could improve score by ~{round((60 - sentiment) * 0.3)} points",
            urgency="critical" if sentiment < 40 else "high",
        ))

    trend = components["trend"].score
    if trend < 60:
        actions.append(HealthScoreAction(
            priority=1 if trend < 40 else 3,
            component="Sentiment Trend",
            action="Investigate what's causing sentiment decline and address root causes",
            impact="Could improve score by ~4-8 points",
            urgency="critical" if trend < 40 else "medium",
        ))

    issues = components["issues"].score
    if issues < 60:
        actions.append(HealthScoreAction(
            priority=1,
            component="Issue Resolution",
            action=f"Prioritize fixing {inputs['critical_issue_count']} critical issues reported by users",
            impact=f"Could improve score by ~{round((60 - issues) * 0.2)} points",
            urgency="critical",
        ))

    if components["clarity"].score < 60:
        actions.append(HealthScoreAction(
            priority=4,
            component="Feature Clarity",
            action="Feedback is scattered across many themes. Focus on top 3 user needs.",
            impact="Could improve score by ~3-5 points",
            urgency="medium",
        ))

    if components["love"].score < 40:
        actions.append(HealthScoreAction(
            priority=3,
            component="User Love",
            action="Identify what delights users and double down on those features",
            impact="Could improve score by ~3-6 points",
            urgency="medium",
        ))

    actions.sort(key=lambda a: a.priority)
    return actions[:5]


def calculate_health_score(inputs: Dict[str, Any]) -> HealthScoreResult:
    """
    inputs: overall_sentiment (-1..1), sentiment_trend (improving|stable|declining),
    critical_issue_count, total_feedback_count, top_theme_concentration (0..100),
    praise_percentage (0..100), product_name (optional).
    """
    components = {
        "sentiment": sentiment_component(inputs["overall_sentiment"]),
        "trend": trend_component(inputs["sentiment_trend"]),
        "issues": issues_component(inputs["critical_issue_count"], inputs["total_feedback_count"]),
        "clarity": clarity_component(inputs["top_theme_concentration"]),
        "love": love_component(inputs["praise_percentage"]),
    }
    total = round(sum(c.weighted_score for c in components.values()))
    score = min(100, max(0, total))
    grade = get_grade(score)

    return HealthScoreResult(
        score=score,
        grade=grade,
        components=components,
        interpretation=get_interpretation(score, grade),
        top_actions=generate_actions(inputs, components),
        product_name=inputs.get("product_name"),
        calculated_at=datetime.utcnow().isoformat(),
    )


def sentiment_trend(recent: List[float], previous: List[float]) -> str:
    """Compare mean sentiment of two windows; stable when either is empty."""
    if not recent or not previous:
        return "stable"
    delta = sum(recent) / len(recent) - sum(previous) / len(previous)
    if delta > TREND_THRESHOLD:
        return "improving"
    if delta < -TREND_THRESHOLD:
        return "declining"
    return "stable"


def theme_concentration(frequencies: List[int]) -> float:
    total = sum(frequencies)
    if total <= 0:
        return 50.0
    top3 = sum(sorted(frequencies, reverse=True)[:3])
    return min(100.0, top3 / total * 100)


class HealthScoreService:
    """Build health score inputs from stored posts, sentiment and themes."""

    def build_inputs(self, project_id: str) -> Optional[Dict[str, Any]]:
        """None when no post has been sentiment-analyzed yet."""
        session = get_db_session()
        try:
            project = session.get(Project, project_id)
            if project is None:
                raise LookupError(f"Project {project_id} not found")

            posts = list(session.exec(select(Post).where(Post.project_id == project_id)).all())
            if not posts:
                return None
            rows = session.exec(
                select(SentimentAnalysis).where(col(SentimentAnalysis.post_id).in_([p.id for p in posts]))
            ).all()
            sentiments = {r.post_id: r for r in rows}
            if not sentiments:
                return None

            frequencies = [
                t.frequency for t in session.exec(select(Theme).where(Theme.project_id == project_id)).all()
            ]
        finally:
            session.close()

        now = datetime.utcnow()
        week_ago = (now - timedelta(days=7)).isoformat()
        two_weeks_ago = (now - timedelta(days=14)).isoformat()
        recent = [sentiments[p.id].sentiment_score for p in posts if p.id in sentiments and p.created_at >= week_ago]
        previous = [
            sentiments[p.id].sentiment_score for p in posts
            if p.id in sentiments and two_weeks_ago <= p.created_at < week_ago
        ]

        analyzed = list(sentiments.values())
        critical = sum(
            1 for p in posts
            if p.category == CRITICAL_CATEGORY
            or (p.id in sentiments and sentiments[p.id].sentiment_score < CRITICAL_SENTIMENT)
        )
        positive = sum(1 for r in analyzed if r.sentiment_category == "positive")

        return {
            "overall_sentiment": sum(r.sentiment_score for r in analyzed) / len(analyzed),
            "sentiment_trend": sentiment_trend(recent, previous),
            "critical_issue_count": critical,
            "total_feedback_count": len(posts),
            "top_theme_concentration": theme_concentration(frequencies),
            "praise_percentage": positive / len(analyzed) * 100,
            "product_name": project.name,
        }

    def calculate_for_project(self, project_id: str) -> Optional[HealthScoreResult]:
        inputs = self.build_inputs(project_id)
        if inputs is None:
            logger.info(f"[HealthScore] Not enough data for project {project_id}")
            return None
        result = calculate_health_score(inputs)
        logger.info(f"[HealthScore] Project {project_id}: {result.score} ({result.grade.label})")
        return result


# Singleton
_health_score_service = None


def get_health_score_service() -> HealthScoreService:
    """Get or create health score service singleton."""
    global _health_score_service
    if _health_score_service is None:
        _health_score_service = HealthScoreService()
    return _health_score_service
