"""
Theme-level roadmap scoring.
"""
from datetime import datetime, timedelta

import pytest

from backend.analysis.roadmap_priority import (
    normalize_frequency, normalize_sentiment, calculate_business_impact,
    calculate_competitive_score, calculate_effort_score, calculate_priority_score,
    assign_priority_level, engagement_urgency, estimate_effort, count_competitor_mentions,
    explain_score,
)


class TestFactors:

    def test_frequency_is_log_scaled(self):
        assert normalize_frequency(0, 10) == 0.0
        assert normalize_frequency(10, 10) == pytest.approx(1.0)
        assert normalize_frequency(5, 0) == 0.0
        # half the mentions scores well above half
        assert normalize_frequency(5, 10) > 0.7

    @pytest.mark.parametrize("sentiment,expected", [(-1.0, 1.0), (0.0, 0.5), (1.0, 0.0), (-0.5, 0.75)])
    def test_sentiment_pain_points_score_higher(self, sentiment, expected):
        assert normalize_sentiment(sentiment) == pytest.approx(expected)

    def test_business_impact(self):
        now = datetime(2025, 6, 10)
        fresh = (now - timedelta(days=3)).isoformat()
        month = (now - timedelta(days=20)).isoformat()

        assert calculate_business_impact([], [], 0, None) == 0.0
        assert calculate_business_impact(["Churn"], [], 0, None) == pytest.approx(0.4)
        assert calculate_business_impact([], [5, 5], 0, None) == pytest.approx(0.3)
        assert calculate_business_impact([], [], 25, fresh, now=now) == pytest.approx(0.3)
        assert calculate_business_impact([], [], 15, month, now=now) == pytest.approx(0.15)
        assert calculate_business_impact(["enterprise"], [5], 25, fresh, now=now) == pytest.approx(1.0)

    def test_competitive_score(self):
        assert calculate_competitive_score(0) == 0.0
        assert calculate_competitive_score(2) == pytest.approx(0.4)
        assert calculate_competitive_score(9) == 1.0
        assert calculate_competitive_score(3, total_competitors=0) == 0.5

    def test_effort(self):
        assert calculate_effort_score("low") == 0.9
        assert calculate_effort_score("unknown") == 0.5
        assert estimate_effort("Offline mode") == "very_high"
        assert estimate_effort("Slack integration") == "high"
        assert estimate_effort("Tooltip wording") == "low"
        assert estimate_effort("Dark theme") == "medium"

    @pytest.mark.parametrize("votes,comments,expected", [(0, 0, 1), (5, 0, 2), (4, 3, 3), (20, 0, 4), (30, 10, 5)])
    def test_engagement_urgency(self, votes, comments, expected):
        assert engagement_urgency(votes, comments) == expected

    def test_competitor_mentions(self):
        texts = ["We might switch to Canny", "Love it", "Is there an alternative export?", None]
        assert count_competitor_mentions(texts) == 2


class TestPriorityScore:

    def test_total_and_level(self):
        theme = {
            "mention_count": 10,
            "avg_sentiment": -1.0,
            "business_impact_keywords": ["churn"],
            "urgency_scores": [5],
            "first_detected_at": None,
            "competitor_count": 5,
            "estimated_effort": "low",
        }
        result = calculate_priority_score(theme, max_mentions=10)

        # 0.3*1 + 0.25*1 + 0.25*0.7 + 0.1*0.9 + 0.1*1 = 0.915
        assert result["total_score"] == pytest.approx(91.5)
        assert result["breakdown"]["business_impact"] == pytest.approx(0.7)
        assert assign_priority_level(result["total_score"]) == "critical"

    def test_quiet_wishlist_theme_is_low(self):
        theme = {"mention_count": 1, "avg_sentiment": 0.8, "estimated_effort": "very_high"}
        result = calculate_priority_score(theme, max_mentions=100)
        assert assign_priority_level(result["total_score"]) == "low"

    @pytest.mark.parametrize("score,level", [(75, "critical"), (74.99, "high"), (60, "high"), (40, "medium"), (39.9, "low")])
    def test_level_thresholds(self, score, level):
        assert assign_priority_level(score) == level

    def test_explanation_names_top_two_factors(self):
        breakdown = {"frequency": 1.0, "sentiment": 0.9, "business_impact": 0.0, "effort": 0.5, "competitive": 0.0}
        assert explain_score("Dark mode", breakdown) == (
            "'Dark mode' is driven by high mention volume and negative user sentiment."
        )


class TestThemeInput:

    def test_keywords_survive_punctuation(self):
        from backend.persistence.models import Post, Theme
        from backend.services.roadmap_service import get_roadmap_service

        theme = Theme(project_id="p1", theme_name="Renewals", description="Contract renewals", frequency=2)
        posts = [
            Post(project_id="p1", title="We will churn, honestly", description="Blocker for our (enterprise) rollout."),
            Post(project_id="p1", title="Urgent!", description="Deal-breaker: no SSO"),
        ]

        data = get_roadmap_service().build_theme_input(theme, posts)

        assert data["business_impact_keywords"] == ["blocker", "churn", "deal", "enterprise", "urgent"]
        assert data["mention_count"] == 2
