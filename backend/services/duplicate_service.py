"""
Duplicate detection for feedback posts.

Stage 1 ranks candidates by embedding similarity from the ChromaDB post
index (token overlap when no embedding model is configured); stage 2 asks
the LLM whether the closest candidates really describe the same request.
"""
import logging
import re
from typing import List, Optional, Tuple

from sqlmodel import select

from backend.persistence.database import get_db_session
from backend.persistence.models import Post
from backend.persistence.vector_store import get_vector_store
from backend.services.llm_client import get_llm_client
from shared.schemas import DuplicateCandidate, DuplicateCluster, DuplicateResponse

logger = logging.getLogger(__name__)

THRESHOLDS = {
    "exact": 0.95,     # nearly identical
    "semantic": 0.85,  # same issue, different wording
    "partial": 0.70,   # partially overlapping
    "related": 0.60,   # related but distinct
}

DUPLICATE_SYSTEM_PROMPT = """You are an expert at identifying duplicate feedback in a SaaS product feedback system.
Decide whether two posts are duplicates by considering:
1. Root problem: are users describing the same underlying issue?
2. Solution space: would implementing one request satisfy both users?
3. User intent: are they trying to achieve the same goal?
4. Planning: would these be treated as one item on a roadmap?

Respond with JSON only:
{
  "isDuplicate": true/false,
  "duplicateType": "exact|semantic|partial|related|none",
  "confidence": 0.0-1.0,
  "mergeRecommendation": "merge|link|keep_separate",
  "explanation": "clear explanation for the product team"
}"""


def _tokens(text: str) -> set:
    return {w for w in re.findall(r"[a-z0-9]+", (text or "").lower()) if len(w) > 2}


def token_similarity(text_a: str, text_b: str) -> float:
    """Jaccard overlap of word sets."""
    a, b = _tokens(text_a), _tokens(text_b)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def classify_similarity(score: float) -> Tuple[str, str]:
    """(duplicate_type, merge_recommendation) for a similarity score."""
    if score >= THRESHOLDS["exact"]:
        return "exact", "merge"
    if score >= THRESHOLDS["semantic"]:
        return "semantic", "merge"
    if score >= THRESHOLDS["partial"]:
        return "partial", "link"
    if score >= THRESHOLDS["related"]:
        return "related", "keep_separate"
    return "none", "keep_separate"


def is_generic_title(title: str) -> bool:
    """Short titles ("Dark mode", "Bug") are too vague to match on alone."""
    return len(title.split()) <= 3 or len(title) < 20


def cluster_action(recommendations: List[str]) -> str:
    merges = recommendations.count("merge")
    links = recommendations.count("link")
    if merges > len(recommendations) / 2:
        return "Merge all into single feature request"
    if links > len(recommendations) / 2:
        return "Link as related features"
    return "Review individually for consolidation opportunities"


class DuplicateService:
    """Find duplicate and related posts within a project."""

    def __init__(self):
        self.llm = get_llm_client()

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------

    @staticmethod
    def _post_text(post: Post) -> str:
        return f"{post.title} {post.description or ''}".strip()

    def _vector_similarities(self, target: Post, others: List[Post]) -> List[Tuple[Post, float]]:
        store = get_vector_store()
        store.index_posts(
            [(p.id, p.project_id, self._post_text(p)) for p in [target] + others],
            self.llm.embed_documents
        )
        by_id = {p.id: p for p in others}
        matches = store.similar_posts(target.id, target.project_id, n_results=len(others))
        return [(by_id[post_id], score) for post_id, score in matches if post_id in by_id]

    def _similarities(self, target: Post, others: List[Post]) -> List[Tuple[Post, float]]:
        if not others:
            return []
        if self.llm.enabled:
            try:
                return self._vector_similarities(target, others)
            except Exception as e:
                logger.error(f"[DuplicateService] Embedding search failed, using token overlap: {e}")

        target_text = self._post_text(target)
        return [(other, token_similarity(target_text, self._post_text(other))) for other in others]

    def _analyze_pair(self, post: Post, other: Post, score: float) -> DuplicateCandidate:
        dup_type, recommendation = classify_similarity(score)
        reasoning = f"Based on {score * 100:.1f}% similarity"

        if self.llm.enabled:
            prompt = (
                f"Similarity score: {score * 100:.1f}%\n\n"
                f"POST 1:\nTitle: \"{post.title}\"\nDescription: \"{post.description or ''}\"\n"
                f"Category: {post.category or 'uncategorized'}\nVotes: {post.vote_count}\n\n"
                f"POST 2:\nTitle: \"{other.title}\"\nDescription: \"{other.description or ''}\"\n"
                f"Category: {other.category or 'uncategorized'}\nVotes: {other.vote_count}"
            )
            try:
                raw = self.llm.invoke_json(DUPLICATE_SYSTEM_PROMPT, prompt, temperature=0.3)
                if raw.get("duplicateType") in ("exact", "semantic", "partial", "related", "none"):
                    dup_type = raw["duplicateType"]
                if raw.get("mergeRecommendation") in ("merge", "link", "keep_separate"):
                    recommendation = raw["mergeRecommendation"]
                reasoning = str(raw.get("explanation") or reasoning)
            except Exception as e:
                logger.error(f"[DuplicateService] Semantic analysis failed: {e}")

        return DuplicateCandidate(
            post_id=other.id,
            title=other.title,
            similarity=round(score, 4),
            duplicate_type=dup_type,
            merge_recommendation=recommendation,
            reasoning=reasoning,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def find_duplicates(
        self,
        post_id: str,
        threshold: float = THRESHOLDS["related"],
        max_results: int = 5,
        include_related: bool = False
    ) -> Optional[DuplicateResponse]:
        """Posts in the same project that look like duplicates of post_id."""
        session = get_db_session()
        try:
            target = session.get(Post, post_id)
            if not target:
                return None
            others = session.exec(
                select(Post).where(Post.project_id == target.project_id).where(Post.id != post_id)
            ).all()

            scored = [(p, s) for p, s in self._similarities(target, list(others)) if s >= threshold]
            scored.sort(key=lambda pair: pair[1], reverse=True)

            candidates = []
            for other, score in scored[:max_results]:
                if not include_related and score < THRESHOLDS["partial"]:
                    continue
                candidates.append(self._analyze_pair(target, other, score))

            return DuplicateResponse(post_id=post_id, candidates=candidates)
        finally:
            session.close()

    def find_clusters(
        self,
        project_id: str,
        min_cluster_size: int = 2,
        cluster_threshold: float = THRESHOLDS["partial"]
    ) -> List[DuplicateCluster]:
        """Greedy clustering of similar posts, largest vote totals first."""
        session = get_db_session()
        try:
            posts = list(session.exec(select(Post).where(Post.project_id == project_id)).all())
            processed = set()
            clusters: List[DuplicateCluster] = []

            for post in posts:
                if post.id in processed:
                    continue
                remaining = [p for p in posts if p.id != post.id and p.id not in processed]
                members = []
                for other, score in self._similarities(post, remaining):
                    exact_title = (
                        not is_generic_title(post.title)
                        and post.title.strip().lower() == other.title.strip().lower()
                    )
                    if exact_title or score >= cluster_threshold:
                        members.append((other, 1.0 if exact_title else score))

                if members and len(members) >= min_cluster_size - 1:
                    recommendations = [classify_similarity(s)[1] for _, s in members]
                    clusters.append(DuplicateCluster(
                        primary_post_id=post.id,
                        post_ids=[post.id] + [m.id for m, _ in members],
                        titles=[post.title] + [m.title for m, _ in members],
                        average_similarity=round(sum(s for _, s in members) / len(members), 4),
                        total_votes=post.vote_count + sum(m.vote_count for m, _ in members),
                        recommended_action=cluster_action(recommendations),
                    ))
                    processed.add(post.id)
                    processed.update(m.id for m, _ in members)
        finally:
            session.close()

        clusters.sort(key=lambda c: c.total_votes, reverse=True)
        return clusters


# Singleton
_duplicate_service = None


def get_duplicate_service() -> DuplicateService:
    """Get or create duplicate service singleton."""
    global _duplicate_service
    if _duplicate_service is None:
        _duplicate_service = DuplicateService()
    return _duplicate_service
