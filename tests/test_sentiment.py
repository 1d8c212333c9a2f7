"""
Sentiment analysis.
"""
from unittest.mock import MagicMock, patch

from backend.persistence.database import get_db_session
from backend.persistence.models import SentimentAnalysis
from backend.services.sentiment_service import (
    SentimentService, detect_sentiment_quick, validate_sentiment,
)
from sqlmodel import select


class TestHelpers:

    def test_quick_detection(self):
        assert detect_sentiment_quick("I love it, great job")["category"] == "positive"
        assert detect_sentiment_quick("The export is broken, terrible")["category"] == "negative"
        assert detect_sentiment_quick("Please add a CSV column") == {"category": "neutral", "confidence": 0.5}

    def test_validate_clamps_and_defaults(self):
        result = validate_sentiment({
            "sentiment_category": "ECSTATIC",
            "sentiment_score": 4,
            "confidence_score": "high",
        })
        assert result.sentiment_category == "neutral"
        assert result.sentiment_score == 1.0
        assert result.confidence_score == 0.5
        assert result.emotional_tone == "neutral"


class TestService:

    def test_offline_analysis(self):
        result = SentimentService().analyze_text("Export is broken", title="Export")
        assert result.sentiment_category == "negative"
        assert result.sentiment_score < 0
        assert result.emotional_tone == "frustrated"

    def test_llm_failure_returns_neutral_fallback(self):
        llm = MagicMock()
        llm.enabled = True
        llm.truncate.side_effect = lambda text, n: text
        llm.invoke_json.side_effect = RuntimeError("boom")
        with patch("backend.services.sentiment_service.get_llm_client", return_value=llm):
            result = SentimentService().analyze_text("anything")

        assert result.success is False
        assert result.sentiment_category == "neutral"
        assert result.error == "boom"

    def test_partial_or_non_object_reply(self):
        llm = MagicMock()
        llm.enabled = True
        llm.truncate.side_effect = lambda text, n: text
        replies = [
            ["negative"],
            {"sentiment_category": None, "sentiment_score": None, "emotional_tone": None},
            {"sentiment_category": "Negative", "sentiment_score": "-0.8"},
        ]
        llm.invoke_json.side_effect = replies
        with patch("backend.services.sentiment_service.get_llm_client", return_value=llm):
            service = SentimentService()
            results = [service.analyze_text("Export is broken") for _ in replies]

        assert [r.sentiment_category for r in results] == ["neutral", "neutral", "negative"]
        assert [r.sentiment_score for r in results] == [0.0, 0.0, -0.8]
        assert all(r.success for r in results)
        assert results[2].confidence_score == 0.5

    def test_analyze_posts_upserts_rows(self, project, make_post):
        happy = make_post("Love the editor, great work")
        sad = make_post("Sync is broken")
        service = SentimentService()

        summary = service.analyze_posts(project.id)
        assert summary.analyzed == 2
        assert summary.distribution == {"positive": 1, "negative": 1}

        # second run updates rather than duplicates
        service.analyze_posts(project.id, [happy.id])
        session = get_db_session()
        try:
            rows = session.exec(select(SentimentAnalysis)).all()
        finally:
            session.close()
        assert len(rows) == 2
        assert set(service.get_sentiment_map([happy.id, sad.id])) == {happy.id, sad.id}
