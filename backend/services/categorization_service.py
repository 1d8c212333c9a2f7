"""
Feedback categorization against a fixed SaaS category table.

Order of attempts:
1. Quick phrase rules (critical bugs, billing failures) - no model call
2. LLM categorization, validated against the known names
3. Keyword fallback
"""
import logging
import re
from typing import Any, Dict, List, Optional

from backend.services.llm_client import get_llm_client
from shared.schemas import CategorizationResult

logger = logging.getLogger(__name__)


SAAS_CATEGORIES: Dict[str, Dict[str, Any]] = {
    "Critical Bug": {
        "description": "System crashes, data loss, security vulnerabilities",
        "keywords": ["crash", "data loss", "security", "vulnerability", "down", "broken completely"],
        "urgency": "critical",
        "color": "#dc2626",
    },
    "Bug": {
        "description": "Functionality not working as expected",
        "keywords": ["error", "not working", "bug", "issue", "problem", "fails"],
        "urgency": "high",
        "color": "#ef4444",
    },
    "Feature Request": {
        "description": "Completely new functionality",
        "keywords": ["add", "new feature", "would like", "request", "need", "want"],
        "urgency": "medium",
        "color": "#3b82f6",
    },
    "Enhancement": {
        "description": "Improvements to existing features",
        "keywords": ["improve", "enhance", "better", "optimize", "update"],
        "urgency": "medium",
        "color": "#8b5cf6",
    },
    "UI/UX": {
        "description": "Interface and usability issues",
        "keywords": ["ui", "ux", "design", "interface", "usability", "confusing", "layout"],
        "urgency": "low",
        "color": "#ec4899",
    },
    "Performance": {
        "description": "Speed and resource usage issues",
        "keywords": ["slow", "performance", "speed", "loading", "memory", "cpu"],
        "urgency": "high",
        "color": "#f59e0b",
    },
    "Integration": {
        "description": "Third-party connections and APIs",
        "keywords": ["api", "integration", "webhook", "connect", "sync", "import", "export"],
        "urgency": "medium",
        "color": "#10b981",
    },
    "Documentation": {
        "description": "Help content and guides",
        "keywords": ["docs", "documentation", "guide", "tutorial", "help", "explain"],
        "urgency": "low",
        "color": "#6b7280",
    },
    "Billing/Pricing": {
        "description": "Payment and subscription issues",
        "keywords": ["payment", "billing", "price", "subscription", "charge", "invoice"],
        "urgency": "high",
        "color": "#14b8a6",
    },
    "Security/Compliance": {
        "description": "Data privacy and compliance requirements",
        "keywords": ["security", "privacy", "gdpr", "compliance", "encryption", "authentication"],
        "urgency": "critical",
        "color": "#991b1b",
    },
}

DEFAULT_CATEGORY = "Feature Request"

CRITICAL_PHRASES = ["data loss", "security vulnerability", "system crash", "completely broken"]
BILLING_PHRASES = ["payment failed", "cannot subscribe", "billing error"]

STOP_WORDS = {
    "the", "is", "at", "which", "on", "a", "an", "as", "are", "was", "were", "be", "been",
    "being", "have", "has", "had", "having", "do", "does", "did", "doing", "will", "would",
    "could", "should", "may", "might", "must", "shall", "can", "need", "dare", "ought",
    "used", "to", "of", "in", "for", "with", "by", "from", "about", "into", "through",
    "during", "before", "after", "above", "below", "up", "down", "out", "off", "over",
    "under", "again", "further", "then", "once", "this", "that", "there", "when", "what",
}


def extract_keywords(text: str, limit: int = 5) -> List[str]:
    """First distinct non-stop-words longer than 3 characters."""
    keywords: List[str] = []
    for word in re.split(r"\W+", (text or "").lower()):
        if len(word) > 3 and word not in STOP_WORDS and word not in keywords:
            keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords


def validate_category(category: Optional[str]) -> str:
    """Map a model answer onto a known category name."""
    if not category:
        return DEFAULT_CATEGORY
    if category in SAAS_CATEGORIES:
        return category
    for name in SAAS_CATEGORIES:
        if name.lower() == category.strip().lower():
            return name

    normalized = re.sub(r"[^a-z]", "", category.lower())
    if normalized:
        for name in SAAS_CATEGORIES:
            if normalized in re.sub(r"[^a-z]", "", name.lower()):
                return name
    return DEFAULT_CATEGORY


def quick_categorize(text: str) -> Optional[CategorizationResult]:
    """High-confidence phrase rules; None when nothing obvious matches."""
    lower = (text or "").lower()

    if any(p in lower for p in CRITICAL_PHRASES):
        return CategorizationResult(
            category="Critical Bug",
            confidence=0.95,
            reasoning="Critical issue detected based on keywords",
            tags=["urgent", "critical", "bug"],
            urgency="critical",
            method="quick",
        )

    if any(p in lower for p in BILLING_PHRASES):
        return CategorizationResult(
            category="Billing/Pricing",
            confidence=0.92,
            reasoning="Payment/billing issue requiring immediate attention",
            tags=["billing", "urgent", "revenue-impact"],
            urgency="high",
            method="quick",
        )

    return None


def keyword_categorize(title: str, description: str = "") -> CategorizationResult:
    """First category whose keyword appears in the text."""
    text = f"{title} {description}".lower()
    for name, info in SAAS_CATEGORIES.items():
        for keyword in info["keywords"]:
            if re.search(rf"\b{re.escape(keyword)}\b", text):
                return CategorizationResult(
                    category=name,
                    confidence=0.6,
                    reasoning=f"Categorized based on keyword: {keyword}",
                    tags=[re.sub(r"[^a-z]", "", name.lower())],
                    urgency=info["urgency"],
                    method="keyword",
                )

    return CategorizationResult(
        category=DEFAULT_CATEGORY,
        confidence=0.3,
        reasoning="Default categorization - unable to determine specific category",
        tags=["needs-review"],
        urgency="medium",
        method="default",
    )


class CategorizationService:
    """Categorize feedback into SAAS_CATEGORIES."""

    def __init__(self):
        self.llm = get_llm_client()

    def _system_prompt(self, user_tier: Optional[str], vote_count: int) -> str:
        lines = "\n".join(
            f"- {name}: {info['description']} (Keywords: {', '.join(info['keywords'])})"
            for name, info in SAAS_CATEGORIES.items()
        )
        notes = ""
        if user_tier == "enterprise":
            notes += "\nNote: This is from an ENTERPRISE customer - prioritize accordingly."
        if vote_count > 5:
            notes += f"\nNote: This has {vote_count} votes already - likely affects multiple users."

        return f"""You are an expert at categorizing SaaS product feedback.

Categories and their definitions:
{lines}
{notes}

Respond with JSON only:
{{
  "primaryCategory": "exact category name from the list",
  "urgencyLevel": "critical|high|medium|low",
  "confidence": 0.0 to 1.0,
  "reasoning": "one sentence explanation",
  "suggestedTags": ["relevant", "tags"]
}}"""

    def categorize(
        self,
        title: str,
        description: str = "",
        user_tier: Optional[str] = None,
        vote_count: int = 0
    ) -> CategorizationResult:
        quick = quick_categorize(f"{title} {description}")
        if quick:
            logger.info("[CategorizationService] Quick categorization used - no model call")
            return quick

        if not self.llm.enabled:
            return keyword_categorize(title, description)

        try:
            raw = self.llm.invoke_json(
                self._system_prompt(user_tier, vote_count),
                f"Categorize this feedback:\nTitle: {title}\nDescription: {description}",
                temperature=0.3,
            )
            category = validate_category(raw.get("primaryCategory"))
            try:
                confidence = max(0.0, min(1.0, float(raw.get("confidence", 0.7))))
            except (TypeError, ValueError):
                confidence = 0.7
            return CategorizationResult(
                category=category,
                confidence=confidence,
                reasoning=str(raw.get("reasoning", "")),
                tags=[str(t) for t in raw.get("suggestedTags", [])][:5],
                urgency=raw.get("urgencyLevel") or SAAS_CATEGORIES[category]["urgency"],
                method="llm",
            )
        except Exception as e:
            logger.error(f"[CategorizationService] Categorization failed: {e}")
            return keyword_categorize(title, description)


# Singleton
_categorization_service = None


def get_categorization_service() -> CategorizationService:
    """Get or create categorization service singleton."""
    global _categorization_service
    if _categorization_service is None:
        _categorization_service = CategorizationService()
    return _categorization_service
