"""
Product health score calculation.
"""
import pytest

from backend.services.health_score import (
    calculate_health_score, get_grade, sentiment_trend, theme_concentration,
    get_health_score_service,
)
from backend.services.sentiment_service import get_sentiment_service


def inputs(**overrides):
    base = {
        "overall_sentiment": 0.0,
        "sentiment_trend": "stable",
        "critical_issue_count": 1,
        "total_feedback_count": 100,
        "top_theme_concentration": 50,
        "praise_percentage": 30,
        "product_name": "Acme",
    }
    base.update(overrides)
    return base


class TestCalculation:

    def test_perfect_product(self):
        result = calculate_health_score(inputs(
            overall_sentiment=1.0, sentiment_trend="improving", critical_issue_count=0,
            top_theme_concentration=100, praise_percentage=100
        ))
        assert result.score == 100
        assert result.grade.label == "Excellent"
        assert result.top_actions == []
        assert result.interpretation.startswith("Your product health score of 100 is Excellent! 🟢")

    def test_middle_of_the_road(self):
        result = calculate_health_score(inputs())

        assert result.components["sentiment"].score == 50
        assert result.components["trend"].score == 60
        assert result.components["issues"].score == 95
        assert result.score == 58
        assert result.grade.label == "Needs Attention"
        assert result.interpretation.startswith("Your product health score of 58 is Needs Attention. 🟡")

    def test_struggling_product_actions(self):
        result = calculate_health_score(inputs(
            overall_sentiment=-1.0, sentiment_trend="declining", critical_issue_count=10,
            total_feedback_count=20, top_theme_concentration=20, praise_percentage=0
        ))

        assert result.score == 7
        assert result.grade.emoji == "🔴"
        components = [a.component for a in result.top_actions]
        assert components == [
            "Overall Sentiment", "Sentiment Trend", "Issue Resolution", "User Love", "Feature Clarity"
        ]
        assert result.top_actions[0].impact == "Could improve score by ~18 points"
        assert result.top_actions[2].action == "Prioritize fixing 10 critical issues reported by users"

    def test_component_weights_sum_to_100(self):
        result = calculate_health_score(inputs())
        assert sum(c.weight for c in result.components.values()) == 100

    @pytest.mark.parametrize("score,label", [(80, "Excellent"), (79, "Good"), (60, "Good"), (40, "Needs Attention"), (39, "Critical")])
    def test_grades(self, score, label):
        assert get_grade(score).label == label


class TestInputs:

    def test_trend(self):
        assert sentiment_trend([0.5], [0.2]) == "improving"
        assert sentiment_trend([0.1], [0.4]) == "declining"
        assert sentiment_trend([0.3], [0.25]) == "stable"
        assert sentiment_trend([], [0.9]) == "stable"

    def test_theme_concentration(self):
        assert theme_concentration([]) == 50.0
        assert theme_concentration([5, 3, 2]) == 100.0
        assert theme_concentration([4, 3, 2, 1]) == pytest.approx(90.0)

    def test_service_needs_analyzed_feedback(self, project, make_post):
        service = get_health_score_service()
        assert service.calculate_for_project(project.id) is None

        make_post("Love this product, great work")
        assert service.calculate_for_project(project.id) is None

        get_sentiment_service().analyze_posts(project.id)
        result = service.calculate_for_project(project.id)
        assert result is not None
        assert result.product_name == "Acme"

    def test_service_unknown_project(self):
        with pytest.raises(LookupError):
            get_health_score_service().calculate_for_project("missing")
