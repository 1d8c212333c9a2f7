"""
Duplicate detection: token overlap offline, the ChromaDB embedding index with a model.
"""
from unittest.mock import MagicMock, patch

import pytest

from backend.services.duplicate_service import (
    DuplicateService, classify_similarity, cluster_action, get_duplicate_service,
    is_generic_title, token_similarity,
)


class TestSimilarity:

    def test_token_similarity_ignores_order_and_short_words(self):
        assert token_similarity("Export to CSV fails", "CSV export fails") == 1.0
        assert token_similarity("Dark mode", "Export to CSV") == 0.0
        assert token_similarity("", "anything") == 0.0

    @pytest.mark.parametrize("score,expected", [
        (0.97, ("exact", "merge")),
        (0.90, ("semantic", "merge")),
        (0.75, ("partial", "link")),
        (0.62, ("related", "keep_separate")),
        (0.10, ("none", "keep_separate")),
    ])
    def test_classify(self, score, expected):
        assert classify_similarity(score) == expected

    def test_generic_titles(self):
        assert is_generic_title("Dark mode")
        assert not is_generic_title("Allow exporting boards to CSV with comments")

    def test_cluster_action(self):
        assert cluster_action(["merge", "merge", "link"]) == "Merge all into single feature request"
        assert cluster_action(["link", "link"]) == "Link as related features"
        assert cluster_action(["merge", "link"]) == "Review individually for consolidation opportunities"


class TestService:

    def test_find_duplicates(self, make_post):
        target = make_post("Export to CSV fails on large files")
        twin = make_post("CSV export fails on large files")
        make_post("Dark mode please")

        result = get_duplicate_service().find_duplicates(target.id)

        assert [c.post_id for c in result.candidates] == [twin.id]
        assert result.candidates[0].duplicate_type == "exact"
        assert result.candidates[0].merge_recommendation == "merge"

    def test_unknown_post(self):
        assert get_duplicate_service().find_duplicates("missing") is None

    def test_find_clusters(self, project, make_post):
        a = make_post("Export to CSV fails on large files", votes=2)
        b = make_post("CSV export fails on large files", votes=1)
        make_post("Dark mode please")

        clusters = get_duplicate_service().find_clusters(project.id)

        assert len(clusters) == 1
        assert set(clusters[0].post_ids) == {a.id, b.id}
        assert clusters[0].total_votes == 3
        assert clusters[0].recommended_action == "Merge all into single feature request"


def topic_vectors(texts):
    """Export requests point one way, everything else another."""
    return [[1.0, 0.0, 0.1] if "export" in text.lower() else [0.0, 1.0, 0.1] for text in texts]


@pytest.fixture
def embedding_llm():
    llm = MagicMock()
    llm.enabled = True
    llm.embed_documents.side_effect = topic_vectors
    llm.invoke_json.return_value = {
        "duplicateType": "semantic",
        "mergeRecommendation": "merge",
        "explanation": "Both ask for a data export",
    }
    return llm


class TestEmbeddingIndex:

    def test_semantic_match_through_index(self, board, make_post, embedding_llm):
        target = make_post("Export to CSV fails")
        twin = make_post("Let me download everything as an export")
        make_post("Dark mode please")
        other = board.create_project(name="Other", slug="other")
        board.create_post(other.id, "Export button missing")

        with patch("backend.services.duplicate_service.get_llm_client", return_value=embedding_llm):
            service = DuplicateService()
            result = service.find_duplicates(target.id)
            again = service.find_duplicates(target.id)

        assert [c.post_id for c in result.candidates] == [twin.id]
        assert result.candidates[0].similarity == pytest.approx(1.0, abs=1e-3)
        assert result.candidates[0].duplicate_type == "semantic"
        assert result.candidates[0].reasoning == "Both ask for a data export"
        assert [c.post_id for c in again.candidates] == [twin.id]

        # stored embeddings are reused; only this project's three posts were embedded
        embedding_llm.embed_documents.assert_called_once()
        assert len(embedding_llm.embed_documents.call_args[0][0]) == 3

    def test_edited_text_is_embedded_again(self, make_post, embedding_llm):
        from backend.persistence.vector_store import get_vector_store

        post = make_post("Export to CSV fails")
        store = get_vector_store()
        store.index_posts([(post.id, post.project_id, "Export to CSV fails")], embedding_llm.embed_documents)
        assert store.index_posts([(post.id, post.project_id, "Export to CSV fails")], embedding_llm.embed_documents) == 0
        assert store.index_posts([(post.id, post.project_id, "Dark mode")], embedding_llm.embed_documents) == 1

    def test_clusters_from_index(self, project, make_post, embedding_llm):
        a = make_post("Export to CSV fails", votes=2)
        b = make_post("Need an export of all boards", votes=1)
        make_post("Dark mode please")

        with patch("backend.services.duplicate_service.get_llm_client", return_value=embedding_llm):
            clusters = DuplicateService().find_clusters(project.id)

        assert len(clusters) == 1
        assert set(clusters[0].post_ids) == {a.id, b.id}
        assert clusters[0].total_votes == 3

    def test_embedding_failure_falls_back_to_tokens(self, make_post, embedding_llm):
        target = make_post("Export to CSV fails on large files")
        twin = make_post("CSV export fails on large files")
        embedding_llm.embed_documents.side_effect = RuntimeError("quota exceeded")

        with patch("backend.services.duplicate_service.get_llm_client", return_value=embedding_llm):
            result = DuplicateService().find_duplicates(target.id)

        assert [c.post_id for c in result.candidates] == [twin.id]
