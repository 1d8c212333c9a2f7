"""
Background classification of externally discovered feedback.

Each run takes the oldest pending rows, marks them processing, classifies
them and marks each one completed or failed.
"""
import json
import logging
import time
from typing import Any, Dict

from sqlmodel import select, col

from backend.persistence.database import get_db_session
from backend.persistence.models import DiscoveredFeedback, utc_now
from backend.services.categorization_service import extract_keywords
from backend.services.llm_client import get_llm_client
from backend.services.sentiment_service import detect_sentiment_quick
from shared.constants import FeedbackClassification, UrgencyLevel, ProcessingStatus
from shared.schemas import JobResult

logger = logging.getLogger(__name__)

BATCH_SIZE = 10

VALID_CLASSIFICATIONS = {c.value for c in FeedbackClassification}
VALID_URGENCY = {u.value for u in UrgencyLevel}

CHURN_PHRASES = ["cancel", "switching to", "moving to", "leaving", "unsubscribe", "refund"]
BUG_WORDS = ["bug", "crash", "broken", "error", "not working", "fails"]
FEATURE_WORDS = ["please add", "would love", "feature request", "wish", "it would be great"]
COMPARISON_WORDS = [" vs ", "versus", "compared to", "better than", "alternative to"]

CLASSIFY_SYSTEM_PROMPT = """You are a feedback classification AI. Analyze the feedback and return a JSON object with:
- classification: one of "bug", "feature_request", "usability_issue", "praise", "complaint", "comparison", "churn_risk", "question", "other"
- sentiment_score: -1 to 1 (negative to positive)
- sentiment_label: "negative", "neutral", or "positive"
- urgency_level: "low", "medium", "high", "critical"
- key_topics: array of 2-5 key topics/themes"""


def classify_heuristic(title: str, content: str) -> Dict[str, Any]:
    """Keyword classification used when no LLM is configured."""
    text = f"{title or ''} {content or ''}".lower()
    sentiment = detect_sentiment_quick(text)
    label = sentiment["category"]
    score = {"positive": 1, "negative": -1}.get(label, 0) * sentiment["confidence"]

    if any(p in text for p in CHURN_PHRASES):
        classification, urgency = FeedbackClassification.CHURN_RISK, UrgencyLevel.HIGH
    elif any(w in text for w in BUG_WORDS):
        classification, urgency = FeedbackClassification.BUG, UrgencyLevel.HIGH
    elif any(w in text for w in COMPARISON_WORDS):
        classification, urgency = FeedbackClassification.COMPARISON, UrgencyLevel.MEDIUM
    elif any(w in text for w in FEATURE_WORDS):
        classification, urgency = FeedbackClassification.FEATURE_REQUEST, UrgencyLevel.MEDIUM
    elif label == "positive":
        classification, urgency = FeedbackClassification.PRAISE, UrgencyLevel.LOW
    elif "?" in text:
        classification, urgency = FeedbackClassification.QUESTION, UrgencyLevel.LOW
    elif label == "negative":
        classification, urgency = FeedbackClassification.COMPLAINT, UrgencyLevel.MEDIUM
    else:
        classification, urgency = FeedbackClassification.OTHER, UrgencyLevel.LOW

    return {
        "classification": classification.value,
        "sentiment_score": round(score, 2),
        "sentiment_label": label if label in ("positive", "negative") else "neutral",
        "urgency_level": urgency.value,
        "key_topics": extract_keywords(text),
    }


def normalize_classification(raw: Dict[str, Any]) -> Dict[str, Any]:
    classification = raw.get("classification")
    urgency = raw.get("urgency_level")
    try:
        score = max(-1.0, min(1.0, float(raw.get("sentiment_score", 0))))
    except (TypeError, ValueError):
        score = 0.0
    topics = raw.get("key_topics") or []
    return {
        "classification": classification if classification in VALID_CLASSIFICATIONS else "other",
        "sentiment_score": score,
        "sentiment_label": raw.get("sentiment_label") if raw.get("sentiment_label") in ("negative", "neutral", "positive") else "neutral",
        "urgency_level": urgency if urgency in VALID_URGENCY else "medium",
        "key_topics": [str(t) for t in topics][:5] if isinstance(topics, list) else [],
    }


class FeedbackProcessor:
    """Classify pending DiscoveredFeedback rows in small batches."""

    def __init__(self, batch_size: int = BATCH_SIZE):
        self.batch_size = batch_size
        self.llm = get_llm_client()

    def classify(self, title: str, content: str) -> Dict[str, Any]:
        if not self.llm.enabled:
            return classify_heuristic(title, content)
        prompt = f"Classify this feedback:\n\nTitle: {title or 'N/A'}\nContent: {(content or '')[:1500]}"
        raw = self.llm.invoke_json(CLASSIFY_SYSTEM_PROMPT, prompt, temperature=0.1)
        return normalize_classification(raw if isinstance(raw, dict) else {})

    def run(self) -> JobResult:
        start = time.time()
        logger.info("[FeedbackProcessor] Starting background processing...")

        session = get_db_session()
        try:
            pending = list(session.exec(
                select(DiscoveredFeedback)
                .where(DiscoveredFeedback.processing_status == ProcessingStatus.PENDING.value)
                .order_by(col(DiscoveredFeedback.discovered_at).asc())
                .limit(self.batch_size)
            ).all())

            if not pending:
                logger.info("[FeedbackProcessor] No pending items to process")
                return JobResult(
                    success=True, job="process-feedback", message="No pending items",
                    duration_ms=int((time.time() - start) * 1000)
                )

            for item in pending:
                item.processing_status = ProcessingStatus.PROCESSING.value
                session.add(item)
            session.commit()

            processed = 0
            failed = 0
            for item in pending:
                try:
                    result = self.classify(item.title or "", item.content)
                    item.classification = result["classification"]
                    item.sentiment_score = result["sentiment_score"]
                    item.sentiment_label = result["sentiment_label"]
                    item.urgency_level = result["urgency_level"]
                    item.key_topics = json.dumps(result["key_topics"])
                    item.processing_status = ProcessingStatus.COMPLETED.value
                    item.error_message = None
                    processed += 1
                except Exception as e:
                    logger.error(f"[FeedbackProcessor] Error classifying {item.id}: {e}")
                    item.processing_status = ProcessingStatus.FAILED.value
                    item.error_message = str(e)[:500]
                    failed += 1
                item.processed_at = utc_now()
                session.add(item)
                session.commit()
        finally:
            session.close()

        duration = int((time.time() - start) * 1000)
        logger.info(f"[FeedbackProcessor] Completed: {processed} processed, {failed} failed in {duration}ms")
        return JobResult(
            success=True,
            job="process-feedback",
            message=f"Processed {processed} items",
            processed=processed,
            failed=failed,
            duration_ms=duration,
        )


# Singleton
_feedback_processor = None


def get_feedback_processor() -> FeedbackProcessor:
    """Get or create feedback processor singleton."""
    global _feedback_processor
    if _feedback_processor is None:
        _feedback_processor = FeedbackProcessor()
    return _feedback_processor
