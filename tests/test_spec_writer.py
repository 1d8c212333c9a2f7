"""
Spec writer: template generation and quality scoring, with and without a model.
"""
from unittest.mock import MagicMock, patch

import pytest

from backend.services.spec_service import (
    default_spec_template, find_missing_sections, get_spec_service, score_to_grade,
    build_quality_report, heuristic_dimension_scores, SpecService,
)
from shared.schemas import SpecQualityIssue


class TestQualityScoring:

    def test_template_scores_well(self):
        content = default_spec_template("Bulk export to CSV", "Users want their data out in one go.", [])
        report = get_spec_service().score_spec_quality(content)

        assert report.missing_sections == []
        assert report.dimensions["completeness"] == 100.0
        assert report.overall_score == 88
        assert report.grade == "B"
        assert report.issues == []
        assert report.rework_risk == "low"
        assert report.method == "heuristic"

    def test_missing_required_sections(self):
        content = "# Dark mode\n\n## Problem Statement\n\nThe app is too bright."
        report = get_spec_service().score_spec_quality(content)

        assert report.missing_sections == ["User Stories", "Acceptance Criteria", "Success Metrics"]
        assert report.dimensions["completeness"] == 16.7
        assert report.issues[0].severity == "critical"
        assert report.rework_risk == "high"
        assert report.grade == "F"

    def test_vague_wording_hurts_clarity(self):
        clean = heuristic_dimension_scores("## Problem Statement\nExport fails.")
        vague = heuristic_dimension_scores("## Problem Statement\nExport maybe fails somehow, etc.")
        assert vague["clarity"] == clean["clarity"] - 15

    def test_model_issues_are_merged(self):
        content = default_spec_template("Bulk export to CSV", "Users want their data out.", [])
        scores = {k: 90 for k in ("completeness", "clarity", "acceptance_criteria", "edge_cases",
                                  "technical_detail", "success_metrics")}
        report = build_quality_report(
            content, scores,
            [SpecQualityIssue(severity="suggestion", dimension="clarity", message="Add a mockup")],
            method="llm",
        )
        assert report.overall_score == 90
        assert report.grade == "A"
        assert [i.message for i in report.issues] == ["Add a mockup"]

    @pytest.mark.parametrize("score,grade", [(95, "A"), (80, "B"), (79, "C"), (60, "D"), (10, "F")])
    def test_grades(self, score, grade):
        assert score_to_grade(score) == grade

    def test_zero_is_kept_and_junk_is_neutral(self):
        content = default_spec_template("Bulk export to CSV", "Users want their data out.", [])
        report = build_quality_report(content, {"clarity": 0, "edge_cases": "70", "success_metrics": "high"})
        assert report.dimensions["clarity"] == 0.0
        assert report.dimensions["edge_cases"] == 70.0
        assert report.dimensions["success_metrics"] == 50.0

    def test_find_missing_sections_is_case_insensitive(self):
        content = "## problem statement\n## user stories\n## acceptance criteria\n## success metrics"
        assert find_missing_sections(content) == []


class TestGeneration:

    def test_needs_idea_or_posts(self, project):
        with pytest.raises(ValueError):
            get_spec_service().generate_spec(project.id)

    def test_unknown_project(self):
        with pytest.raises(LookupError):
            get_spec_service().generate_spec("missing", idea="Bulk export")

    def test_posts_from_another_project(self, board, project):
        other = board.create_project(name="Other", slug="other")
        foreign = board.create_post(other.id, "Bulk export to CSV")
        with pytest.raises(LookupError):
            get_spec_service().generate_spec(project.id, post_ids=[foreign.id])

    def test_generate_from_posts(self, project, make_post):
        post = make_post("Bulk export to CSV", "Need all boards at once", votes=4)
        service = get_spec_service()

        spec = service.generate_spec(project.id, post_ids=[post.id])

        assert spec.title == "Bulk export to CSV"
        assert spec.status == "draft"
        assert spec.linked_post_ids == [post.id]
        assert "- Bulk export to CSV (4 votes)" in spec.content
        assert spec.quality["grade"] == "B"
        assert spec.url.endswith(f"/specs/{spec.id}")
        assert service.get_spec(spec.id).content == spec.content
        assert [s.id for s in service.list_specs(project.id)] == [spec.id]
        assert service.get_spec("missing") is None


def quality_llm(answer):
    llm = MagicMock()
    llm.enabled = True
    llm.truncate.side_effect = lambda text, limit: text
    llm.invoke_json.return_value = answer
    return llm


class TestModelQualityReplies:

    CONTENT = default_spec_template("Bulk export to CSV", "Users want their data out.", [])

    def score(self, answer):
        with patch("backend.services.spec_service.get_llm_client", return_value=quality_llm(answer)):
            return SpecService().score_spec_quality(self.CONTENT)

    def test_null_scores_and_issues(self):
        report = self.score({"scores": None, "issues": None})

        assert report.method == "llm"
        assert set(report.dimensions.values()) == {50.0}
        assert report.overall_score == 50

    def test_null_and_word_dimension_values(self):
        report = self.score({
            "scores": {"completeness": None, "clarity": "high", "edge_cases": 85},
            "issues": [{"severity": "major", "dimension": "edge_cases", "message": "Cover empty boards"}, "junk"],
        })

        assert report.dimensions["completeness"] == 50.0
        assert report.dimensions["clarity"] == 50.0
        assert report.dimensions["edge_cases"] == 85.0
        assert [i.message for i in report.issues] == ["Cover empty boards"]

    def test_non_object_reply_uses_heuristics(self):
        report = self.score(["scores", 90])

        assert report.method == "heuristic"
        assert report.grade == "B"
