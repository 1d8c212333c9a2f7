"""
Theme-level roadmap prioritization.

Each theme gets a 0-100 score from five normalized factors:
frequency (30%), sentiment (25%), business impact (25%),
effort (10%) and competitive pressure (10%).
"""
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from shared.constants import PriorityLevel

WEIGHTS = {
    "frequency": 0.30,
    "sentiment": 0.25,
    "business_impact": 0.25,
    "effort": 0.10,
    "competitive": 0.10,
}

HIGH_VALUE_KEYWORDS = {
    "churn", "cancel", "leave", "quit", "unsubscribe",
    "enterprise", "deal", "contract", "revenue", "money",
    "competitor", "switch", "alternative", "blocker", "urgent",
}

EFFORT_SCORES = {
    "low": 0.9,        # < 1 week
    "medium": 0.5,     # 1-3 weeks
    "high": 0.3,       # 3-6 weeks
    "very_high": 0.1,  # 6+ weeks
}

DEFAULT_TOTAL_COMPETITORS = 5

EFFORT_HINTS = [
    ("very_high", ["rewrite", "rebuild", "architecture", "migration", "offline mode", "self-hosted"]),
    ("high", ["integration", "api", "mobile", "sso", "security", "permissions", "sync"]),
    ("low", ["typo", "label", "color", "colour", "copy", "tooltip", "docs", "documentation", "shortcut"]),
]

COMPETITOR_PATTERN = re.compile(r"\b(competitor|alternative|switch(ed|ing)? to|other tools?)\b", re.IGNORECASE)


def normalize_frequency(mention_count: int, max_mentions: int) -> float:
    """log10(mentions + 1) / log10(max + 1), so the biggest themes do not dominate."""
    if max_mentions <= 0:
        return 0.0
    return math.log10(mention_count + 1) / math.log10(max_mentions + 1)


def normalize_sentiment(avg_sentiment: float) -> float:
    """-1 maps to 1.0 (pain point), 0 to 0.5, +1 to 0.0 (wishlist)."""
    if avg_sentiment < 0:
        return 0.5 + abs(avg_sentiment) * 0.5
    return max(0.0, 0.5 - avg_sentiment * 0.5)


def calculate_business_impact(
    keywords: List[str],
    urgency_scores: List[float],
    mention_count: int,
    first_detected_at: Optional[str],
    now: Optional[datetime] = None
) -> float:
    score = 0.0

    if any(k.lower() in HIGH_VALUE_KEYWORDS for k in keywords):
        score += 0.4

    if urgency_scores:
        score += (sum(urgency_scores) / len(urgency_scores) / 5) * 0.3

    if first_detected_at:
        now = now or datetime.utcnow()
        days_old = (now - datetime.fromisoformat(first_detected_at)).total_seconds() / 86400
        if days_old < 7 and mention_count > 20:
            score += 0.3
        elif days_old < 30 and mention_count > 10:
            score += 0.15

    return min(1.0, score)


def calculate_effort_score(estimated_effort: str) -> float:
    return EFFORT_SCORES.get(estimated_effort, 0.5)


def calculate_competitive_score(competitor_count: int, total_competitors: int = DEFAULT_TOTAL_COMPETITORS) -> float:
    if total_competitors == 0:
        return 0.5
    return min(1.0, competitor_count / total_competitors)


def engagement_urgency(vote_count: int, comment_count: int) -> int:
    """1-5 urgency proxy; comments count double."""
    engagement = (vote_count or 0) + (comment_count or 0) * 2
    if engagement >= 50:
        return 5
    if engagement >= 20:
        return 4
    if engagement >= 10:
        return 3
    if engagement >= 5:
        return 2
    return 1


def estimate_effort(theme_name: str, description: Optional[str] = None) -> str:
    """Rough effort bucket from wording; medium when nothing stands out."""
    text = f"{theme_name} {description or ''}".lower()
    for bucket, hints in EFFORT_HINTS:
        if any(h in text for h in hints):
            return bucket
    return "medium"


def count_competitor_mentions(texts: List[str]) -> int:
    return sum(1 for t in texts if COMPETITOR_PATTERN.search(t or ""))


def calculate_priority_score(theme: Dict[str, Any], max_mentions: int, total_competitors: int = DEFAULT_TOTAL_COMPETITORS) -> Dict[str, Any]:
    """
    theme keys: mention_count, avg_sentiment, first_detected_at,
    business_impact_keywords, urgency_scores, competitor_count, estimated_effort.

    Returns {"total_score": float, "breakdown": {...}}.
    """
    breakdown = {
        "frequency": normalize_frequency(theme.get("mention_count", 0), max_mentions),
        "sentiment": normalize_sentiment(theme.get("avg_sentiment", 0.0)),
        "business_impact": calculate_business_impact(
            theme.get("business_impact_keywords", []),
            theme.get("urgency_scores", []),
            theme.get("mention_count", 0),
            theme.get("first_detected_at"),
        ),
        "effort": calculate_effort_score(theme.get("estimated_effort", "medium")),
        "competitive": calculate_competitive_score(theme.get("competitor_count", 0), total_competitors),
    }
    total = sum(breakdown[k] * WEIGHTS[k] for k in WEIGHTS) * 100
    return {
        "total_score": round(total, 2),
        "breakdown": {k: round(v, 4) for k, v in breakdown.items()},
    }


def assign_priority_level(score: float) -> str:
    if score >= 75:
        return PriorityLevel.CRITICAL.value
    if score >= 60:
        return PriorityLevel.HIGH.value
    if score >= 40:
        return PriorityLevel.MEDIUM.value
    return PriorityLevel.LOW.value


def explain_score(theme_name: str, breakdown: Dict[str, float]) -> str:
    """One-line reasoning naming the strongest factors."""
    labels = {
        "frequency": "high mention volume",
        "sentiment": "negative user sentiment",
        "business_impact": "business impact signals",
        "effort": "low implementation effort",
        "competitive": "competitive pressure",
    }
    top = sorted(breakdown.items(), key=lambda kv: kv[1] * WEIGHTS[kv[0]], reverse=True)[:2]
    drivers = " and ".join(labels[k] for k, _ in top)
    return f"'{theme_name}' is driven by {drivers}."
