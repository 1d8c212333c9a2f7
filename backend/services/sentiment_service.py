"""
Sentiment analysis for feedback posts.

LLM classification with a keyword heuristic when no model is configured.
Results are stored one row per post in sentiment_analysis.
"""
import logging
import time
from collections import Counter
from typing import Any, Dict, List, Optional

from sqlmodel import select, col

from backend import config
from backend.persistence.database import get_db_session
from backend.persistence.models import Post, SentimentAnalysis, utc_now
from backend.services.llm_client import get_llm_client
from shared.constants import SentimentCategory
from shared.schemas import SentimentResult, SentimentSummary

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

VALID_CATEGORIES = {c.value for c in SentimentCategory}

EMOTIONAL_TONES = [
    "excited", "satisfied", "frustrated", "angry", "confused",
    "concerned", "disappointed", "hopeful", "neutral", "urgent"
]

POSITIVE_KEYWORDS = [
    "love", "great", "excellent", "amazing", "awesome",
    "fantastic", "perfect", "thank", "appreciate", "wonderful"
]

NEGATIVE_KEYWORDS = [
    "bug", "broken", "crash", "error", "issue", "problem",
    "frustrated", "angry", "terrible", "awful", "hate", "disappointed"
]

SENTIMENT_SYSTEM_PROMPT = f"""You are an expert at analyzing the sentiment and emotional tone of user feedback for SaaS products.

Determine:
1. Overall sentiment category (positive, negative, neutral, or mixed)
2. Sentiment score from -1 (very negative) to 1 (very positive)
3. Emotional tone (one of: {", ".join(EMOTIONAL_TONES)})
4. Confidence in your analysis (0 to 1)

Score guidelines:
- 0.7 to 1.0: very positive (praising, thanking, loving features)
- 0.3 to 0.7: somewhat positive (likes but has suggestions)
- -0.3 to 0.3: neutral (factual, informational)
- -0.7 to -0.3: somewhat negative (frustrated, minor complaints)
- -1.0 to -0.7: very negative (angry, major issues, considering leaving)

Bugs are negative even when politely worded. Feedback with both praise and complaints is "mixed".

Respond with JSON only:
{{
  "sentiment_category": "positive|negative|neutral|mixed",
  "sentiment_score": -1.0 to 1.0,
  "emotional_tone": "one of the listed tones",
  "confidence_score": 0.0 to 1.0,
  "reasoning": "brief explanation"
}}"""


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def validate_sentiment(raw: Dict[str, Any]) -> SentimentResult:
    """Coerce a model reply into a well-formed SentimentResult."""
    category = str(raw.get("sentiment_category", "")).lower()
    if category not in VALID_CATEGORIES:
        category = SentimentCategory.NEUTRAL.value
    return SentimentResult(
        sentiment_category=category,
        sentiment_score=_clamp(raw.get("sentiment_score"), -1.0, 1.0, 0.0),
        emotional_tone=str(raw.get("emotional_tone") or "neutral"),
        confidence_score=_clamp(raw.get("confidence_score"), 0.0, 1.0, 0.5),
    )


def detect_sentiment_quick(text: str) -> Dict[str, Any]:
    """Keyword-based sentiment guess: {"category", "confidence"}."""
    lower = (text or "").lower()
    positive = sum(1 for k in POSITIVE_KEYWORDS if k in lower)
    negative = sum(1 for k in NEGATIVE_KEYWORDS if k in lower)

    if positive > negative and positive > 0:
        return {"category": SentimentCategory.POSITIVE.value, "confidence": min(0.7, positive * 0.2)}
    if negative > positive and negative > 0:
        return {"category": SentimentCategory.NEGATIVE.value, "confidence": min(0.7, negative * 0.2)}
    return {"category": SentimentCategory.NEUTRAL.value, "confidence": 0.5}


def neutral_fallback(error: Optional[str] = None) -> SentimentResult:
    return SentimentResult(
        sentiment_category=SentimentCategory.NEUTRAL.value,
        sentiment_score=0.0,
        emotional_tone="neutral",
        confidence_score=0.0,
        success=False,
        error=error,
    )


class SentimentService:
    """Analyze and persist sentiment for posts."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE):
        self.batch_size = batch_size
        self.llm = get_llm_client()

    def analyze_text(
        self,
        text: str,
        title: Optional[str] = None,
        category: Optional[str] = None
    ) -> SentimentResult:
        """Sentiment for one piece of feedback."""
        if not self.llm.enabled:
            quick = detect_sentiment_quick(f"{title or ''} {text or ''}")
            sign = {"positive": 1, "negative": -1}.get(quick["category"], 0)
            tone = {"positive": "satisfied", "negative": "frustrated"}.get(quick["category"], "neutral")
            return SentimentResult(
                sentiment_category=quick["category"],
                sentiment_score=round(sign * quick["confidence"], 2),
                emotional_tone=tone,
                confidence_score=quick["confidence"],
            )

        prompt = f"Analyze the sentiment of this feedback:\n\n{self.llm.truncate(text or '', 1500)}"
        if title:
            prompt = f"Title: {title}\n\n{prompt}"
        if category:
            prompt += f"\n\nCategory: {category}"

        try:
            raw = self.llm.invoke_json(
                SENTIMENT_SYSTEM_PROMPT, prompt,
                model=config.SENTIMENT_MODEL, temperature=0.3
            )
            return validate_sentiment(raw if isinstance(raw, dict) else {})
        except Exception as e:
            logger.error(f"[SentimentService] Analysis failed: {e}")
            return neutral_fallback(str(e))

    def analyze_batch(self, items: List[Dict[str, Any]]) -> List[SentimentResult]:
        """
        Analyze items in chunks of batch_size with a pause between chunks.

        Each item is {"text", "title"?, "category"?}. Output order matches input.
        """
        results: List[SentimentResult] = []
        for start in range(0, len(items), self.batch_size):
            chunk = items[start:start + self.batch_size]
            logger.info(
                f"[SentimentService] Batch {start // self.batch_size + 1}: {len(chunk)} items"
            )
            for item in chunk:
                results.append(self.analyze_text(
                    item.get("text", ""),
                    title=item.get("title"),
                    category=item.get("category")
                ))
            if start + self.batch_size < len(items):
                time.sleep(config.BATCH_SLEEP_SECONDS)
        return results

    def analyze_posts(self, project_id: str, post_ids: Optional[List[str]] = None) -> SentimentSummary:
        """Analyze a project's posts and upsert their sentiment rows."""
        session = get_db_session()
        try:
            query = select(Post).where(Post.project_id == project_id)
            if post_ids:
                query = query.where(col(Post.id).in_(post_ids))
            posts = session.exec(query).all()

            results = self.analyze_batch([
                {"text": p.description or "", "title": p.title, "category": p.category}
                for p in posts
            ])

            analyzed = 0
            failed = 0
            for post, result in zip(posts, results):
                if not result.success:
                    failed += 1
                    continue
                row = session.exec(
                    select(SentimentAnalysis).where(SentimentAnalysis.post_id == post.id)
                ).first()
                if row is None:
                    row = SentimentAnalysis(post_id=post.id)
                row.sentiment_category = result.sentiment_category
                row.sentiment_score = result.sentiment_score
                row.emotional_tone = result.emotional_tone
                row.confidence_score = result.confidence_score
                row.analyzed_at = utc_now()
                session.add(row)
                analyzed += 1
            session.commit()
        finally:
            session.close()

        ok = [r for r in results if r.success]
        distribution = Counter(r.sentiment_category for r in ok)
        average = sum(r.sentiment_score for r in ok) / len(ok) if ok else 0.0
        logger.info(f"[SentimentService] Project {project_id}: {analyzed} analyzed, {failed} failed")
        return SentimentSummary(
            project_id=project_id,
            analyzed=analyzed,
            failed=failed,
            distribution=dict(distribution),
            average_score=round(average, 3)
        )

    def get_sentiment_map(self, post_ids: List[str]) -> Dict[str, SentimentAnalysis]:
        """post_id -> stored sentiment row."""
        if not post_ids:
            return {}
        session = get_db_session()
        try:
            rows = session.exec(
                select(SentimentAnalysis).where(col(SentimentAnalysis.post_id).in_(post_ids))
            ).all()
            return {r.post_id: r for r in rows}
        finally:
            session.close()


# Singleton
_sentiment_service = None


def get_sentiment_service() -> SentimentService:
    """Get or create sentiment service singleton."""
    global _sentiment_service
    if _sentiment_service is None:
        _sentiment_service = SentimentService()
    return _sentiment_service
