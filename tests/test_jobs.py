"""
Batch jobs: feedback processing and the per-project runner.
"""
import json

import pytest

from backend.jobs.runner import JOBS, run_job, unanalyzed_post_ids, main
from backend.persistence.database import get_db_session
from backend.persistence.models import DiscoveredFeedback
from backend.services.feedback_processor import (
    FeedbackProcessor, classify_heuristic, normalize_classification,
)
from backend.services.sentiment_service import get_sentiment_service


def add_feedback(project_id, content, title=None, status="pending"):
    session = get_db_session()
    try:
        row = DiscoveredFeedback(project_id=project_id, content=content, title=title, processing_status=status)
        session.add(row)
        session.commit()
        session.refresh(row)
        return row.id
    finally:
        session.close()


def load_feedback(feedback_id):
    session = get_db_session()
    try:
        return session.get(DiscoveredFeedback, feedback_id)
    finally:
        session.close()


class TestClassification:

    @pytest.mark.parametrize("content,classification,urgency", [
        ("I'm cancelling and switching to Linear", "churn_risk", "high"),
        ("The export is broken", "bug", "high"),
        ("Notion vs Coda for roadmaps", "comparison", "medium"),
        ("Please add a calendar view", "feature_request", "medium"),
        ("Love the new editor", "praise", "low"),
        ("How do I invite teammates?", "question", "low"),
        ("Just a note", "other", "low"),
    ])
    def test_heuristic(self, content, classification, urgency):
        result = classify_heuristic("", content)
        assert result["classification"] == classification
        assert result["urgency_level"] == urgency

    def test_heuristic_sentiment(self):
        result = classify_heuristic("", "The export is broken")
        assert result["sentiment_label"] == "negative"
        assert result["sentiment_score"] == -0.2

    def test_normalize_bad_model_output(self):
        result = normalize_classification({
            "classification": "rant",
            "sentiment_score": "very bad",
            "urgency_level": "extreme",
            "key_topics": "export",
        })
        assert result == {
            "classification": "other",
            "sentiment_score": 0.0,
            "sentiment_label": "neutral",
            "urgency_level": "medium",
            "key_topics": [],
        }


class TestFeedbackProcessor:

    def test_nothing_pending(self):
        result = FeedbackProcessor().run()
        assert result.success
        assert result.message == "No pending items"
        assert result.processed == 0

    def test_processes_pending_rows(self, project):
        bug_id = add_feedback(project.id, "The export is broken", title="Export")
        done_id = add_feedback(project.id, "Old item", status="completed")

        result = FeedbackProcessor().run()

        assert result.processed == 1
        assert result.failed == 0
        row = load_feedback(bug_id)
        assert row.processing_status == "completed"
        assert row.classification == "bug"
        assert row.processed_at is not None
        assert "export" in json.loads(row.key_topics)
        assert load_feedback(done_id).classification is None

    def test_batch_size_limits_a_run(self, project):
        for i in range(3):
            add_feedback(project.id, f"Feedback number {i}")
        assert FeedbackProcessor(batch_size=2).run().processed == 2
        assert FeedbackProcessor(batch_size=2).run().processed == 1

    def test_classification_error_marks_row_failed(self, project, monkeypatch):
        feedback_id = add_feedback(project.id, "Anything")

        def boom(self, title, content):
            raise RuntimeError("model timeout")

        monkeypatch.setattr(FeedbackProcessor, "classify", boom)
        result = FeedbackProcessor().run()

        assert result.failed == 1
        row = load_feedback(feedback_id)
        assert row.processing_status == "failed"
        assert row.error_message == "model timeout"


class TestRunner:

    def test_known_jobs(self):
        assert set(JOBS) == {
            "process-feedback", "weekly-digest", "detect-themes", "sentiment-backfill",
            "priority-scoring", "roadmap-suggestions", "daily-briefing",
        }

    def test_unknown_job(self):
        with pytest.raises(ValueError):
            run_job("make-coffee")

    def test_detect_themes_skips_small_projects(self, board, project, make_post):
        for title in ("Export is broken", "Login error on Safari", "Sync crash on save"):
            make_post(title)
        board.create_project(name="Tiny", slug="tiny")

        result = run_job("detect-themes")

        assert result.success
        assert result.processed == 1
        assert result.details["skipped"] == 1

    def test_sentiment_backfill_only_touches_new_posts(self, project, make_post):
        first = make_post("Love the editor")
        get_sentiment_service().analyze_posts(project.id)
        second = make_post("Sync is broken")

        assert unanalyzed_post_ids(project.id) == [second.id]
        result = run_job("sentiment-backfill")
        assert result.processed == 1
        assert unanalyzed_post_ids(project.id) == []
        assert first.id not in unanalyzed_post_ids(project.id)

    def test_project_errors_are_collected(self, project, monkeypatch):
        from backend.jobs import runner

        def boom(project_id):
            raise RuntimeError("db gone")

        monkeypatch.setitem(runner.JOBS, "detect-themes", lambda: runner._for_each_project("detect-themes", boom))
        result = run_job("detect-themes")

        assert result.success is False
        assert result.failed == 1
        assert result.details["errors"] == [{"project_id": project.id, "error": "db gone"}]

    def test_cli(self, capsys):
        assert main(["process-feedback"]) == 0
        assert '"job": "process-feedback"' in capsys.readouterr().out
