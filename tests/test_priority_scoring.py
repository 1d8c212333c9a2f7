"""
Per-post priority scoring.
"""
import threading
from unittest.mock import MagicMock, patch

import pytest

from backend.services.priority_service import (
    is_bug_report, has_frustration, combine_scores, get_priority_level,
    get_quarter_recommendation, current_quarter, get_priority_service, FACTORS,
    PriorityService,
)
from datetime import datetime


def context(title, tier="free", description="", category=None, votes=0, comments=0, pct=0.0, similar=0):
    return {
        "post_id": "p1",
        "title": title,
        "description": description,
        "category": category,
        "tier": tier,
        "metrics": {
            "vote_count": votes,
            "comment_count": comments,
            "unique_voters": votes,
            "percentage_of_active_users": pct,
            "similar_posts_count": similar,
        },
    }


NEUTRAL = {f: 5.0 for f in FACTORS}


class TestBugDetection:

    @pytest.mark.parametrize("title,description,category,expected", [
        ("Export button is broken", "", None, True),
        ("App crashes on launch", "", None, True),
        ("Dark mode", "Would be nice at night", None, False),
        ("Dark mode", "", "Bug", True),
        ("Issue when loading the page", "", None, True),
        ("Pricing problem", "the plans are confusing", None, False),
    ])
    def test_is_bug_report(self, title, description, category, expected):
        assert is_bug_report(title, description, category) is expected

    def test_frustration(self):
        assert has_frustration("So frustrating", "")
        assert not has_frustration("Dark mode", "please")


class TestCombineScores:

    def test_neutral_feature_request(self):
        result = combine_scores(NEUTRAL, context("Add dark mode"), "growth", quarter="Q2")

        assert result["weighted_score"] == 5.0
        assert result["priority_level"] == "next-quarter"
        assert result["quarter_recommendation"] == "Q3"
        assert result["is_bug"] is False

    def test_low_engagement_bug_gets_floor(self):
        result = combine_scores(NEUTRAL, context("Login button broken"), "growth", quarter="Q2")

        assert result["is_bug"] is True
        assert result["scores"]["revenueImpact"] == 7.0
        assert result["scores"]["riskMitigation"] == 7.0
        assert result["weighted_score"] == 7.0
        assert result["priority_level"] == "current-quarter"
        assert result["quarter_recommendation"] == "Q2"

    def test_enterprise_bug_is_immediate(self):
        result = combine_scores(NEUTRAL, context("Login button broken", tier="enterprise"), "growth")

        assert result["weighted_score"] >= 9.0
        assert result["priority_level"] == "immediate"
        assert result["quarter_recommendation"] == "This Sprint"

    def test_scores_are_clamped(self):
        scores = dict(NEUTRAL, userReach=42, revenueImpact=-3)
        result = combine_scores(scores, context("Add dark mode"), "growth")
        assert result["scores"]["userReach"] == 10.0
        assert result["scores"]["revenueImpact"] == 0.0

    def test_malformed_factor_values_are_neutral(self):
        scores = dict(NEUTRAL, revenueImpact=None, userReach="high", strategicAlignment="7.5", riskMitigation=True)
        result = combine_scores(scores, context("Add dark mode"), "growth")
        assert result["scores"]["revenueImpact"] == 5.0
        assert result["scores"]["userReach"] == 5.0
        assert result["scores"]["strategicAlignment"] == 7.5
        assert result["scores"]["riskMitigation"] == 5.0

    def test_missing_factors_default_to_neutral(self):
        result = combine_scores({}, context("Add dark mode"), "growth", quarter="Q2")
        assert result["weighted_score"] == 5.0

    def test_profiles_change_the_weighting(self):
        scores = dict(NEUTRAL, revenueImpact=10.0, userReach=0.0)
        growth = combine_scores(scores, context("Add SSO"), "growth")
        profitability = combine_scores(scores, context("Add SSO"), "profitability")
        assert profitability["weighted_score"] > growth["weighted_score"]


class TestLevels:

    @pytest.mark.parametrize("score,risk,level", [
        (2.0, 9.0, "immediate"), (8.5, 0, "immediate"), (7.0, 0, "current-quarter"),
        (5.0, 0, "next-quarter"), (3.0, 0, "backlog"), (2.9, 0, "declined"),
    ])
    def test_priority_levels(self, score, risk, level):
        assert get_priority_level(score, risk) == level

    def test_quarter_wraps(self):
        assert get_quarter_recommendation("next-quarter", "Q4") == "Q1"
        assert get_quarter_recommendation("backlog", "Q1") == "Future"
        assert get_quarter_recommendation("declined", "Q1") == "Not Planned"
        assert current_quarter(datetime(2025, 8, 1)) == "Q3"


class TestService:

    def test_score_posts_persists(self, board, project, make_post):
        post = make_post("Checkout is broken", votes=3)
        make_post("Add dark mode")

        results = get_priority_service().score_posts(project.id)

        assert len(results) == 2
        by_id = {r.post_id: r for r in results}
        assert by_id[post.id].is_bug
        # pro plan, high-impact bug
        assert by_id[post.id].priority_level == "immediate"
        stored = board.get_post(post.id)
        assert stored.priority_score == by_id[post.id].weighted_score
        assert stored.priority_level == "immediate"

    def test_unknown_profile(self, project):
        with pytest.raises(ValueError):
            get_priority_service().score_posts(project.id, profile="vibes")

    def test_unknown_project(self):
        with pytest.raises(LookupError):
            get_priority_service().score_posts("missing")


def scoring_llm(answer):
    llm = MagicMock()
    llm.enabled = True
    llm.truncate.side_effect = lambda text, limit: text
    if callable(answer):
        llm.invoke_json.side_effect = answer
    else:
        llm.invoke_json.return_value = answer
    return llm


class TestModelScoring:

    def test_null_and_word_scores(self):
        llm = scoring_llm({
            "scores": {"revenueImpact": None, "userReach": "high", "riskMitigation": 9},
            "businessJustification": "Frequently requested",
        })
        with patch("backend.services.priority_service.get_llm_client", return_value=llm):
            result = PriorityService().score_context(context("Add dark mode"))

        assert result.method == "llm"
        assert result.scores["revenueImpact"] == 5.0
        assert result.scores["userReach"] == 5.0
        assert result.scores["riskMitigation"] == 9.0
        assert result.reasoning == "Frequently requested"

    @pytest.mark.parametrize("answer", [["not", "an", "object"], {"scores": None}, {"scores": "8/10"}])
    def test_unusable_reply_uses_heuristics(self, answer):
        with patch("backend.services.priority_service.get_llm_client", return_value=scoring_llm(answer)):
            result = PriorityService().score_context(context("Add dark mode"))

        assert result.method == "heuristic"
        assert result.reasoning == "Prioritized based on user engagement and tier"

    def test_batch_members_are_scored_concurrently(self):
        # every call blocks until all five in the batch have started
        barrier = threading.Barrier(5, timeout=5)

        def answer(*args, **kwargs):
            barrier.wait()
            return {"scores": NEUTRAL, "businessJustification": "ok"}

        contexts = [dict(context(f"Idea {i}"), post_id=f"p{i}") for i in range(5)]
        with patch("backend.services.priority_service.get_llm_client", return_value=scoring_llm(answer)):
            results = PriorityService()._score_in_batches(contexts, "growth")

        assert [r.method for r in results] == ["llm"] * 5
        assert [r.post_id for r in results] == [f"p{i}" for i in range(5)]

    def test_results_keep_input_order_across_batches(self):
        contexts = [dict(context(f"Idea {i}", votes=i), post_id=f"p{i}") for i in range(12)]
        results = PriorityService()._score_in_batches(contexts, "growth")
        assert [r.post_id for r in results] == [f"p{i}" for i in range(12)]
