"""
Theme detection for a project's feedback.

Posts are sent to the LLM in batches; the themes it returns are validated,
merged across batches and then reconciled with the themes already stored
for the project (see backend/analysis/clustering.py). Without an LLM a
keyword map groups posts into broad themes instead.
"""
import logging
import re
import time
from typing import Any, Dict, List, Optional

from sqlmodel import select, col

from backend import config
from backend.analysis.clustering import (
    MIN_CLUSTER_SIZE, merge_and_rank_themes, create_theme_clusters,
    cluster_name_for, rank_themes, identify_emerging_themes,
    deduplicate_themes, merge_similar_themes
)
from backend.persistence.database import get_db_session
from backend.persistence.models import (
    Project, Post, Theme, FeedbackTheme, ThemeCluster, SentimentAnalysis, utc_now
)
from backend.services.llm_client import get_llm_client
from shared.schemas import ThemeResponse, DetectThemesResponse, EmergingTheme

logger = logging.getLogger(__name__)

THEME_BATCH_SIZE = 100
MAX_THEMES_PER_BATCH = 10
MIN_THEME_CONFIDENCE = 0.5
DEFAULT_ITEM_LIMIT = 100
FORCE_ITEM_LIMIT = 1000

THEME_SYSTEM_PROMPT = f"""You are a product analyst finding recurring themes in user feedback for a SaaS product.

You will receive numbered feedback items. Group them into themes:
- A theme is a specific, actionable topic (e.g. "CSV export for reports", not "Features")
- Each theme must be supported by at least {MIN_CLUSTER_SIZE} items
- Return at most {MAX_THEMES_PER_BATCH} themes, most common first
- Use the item numbers exactly as given

Respond with JSON only:
{{
  "themes": [
    {{
      "theme_name": "short name (2-5 words)",
      "description": "one sentence describing what users are asking for",
      "item_indices": [0, 3, 7],
      "confidence": 0.0-1.0
    }}
  ]
}}"""

QUICK_THEMES = {
    "Feature Request": ["add", "feature", "would like", "wish", "please support", "request", "ability to"],
    "Bug Report": ["bug", "broken", "error", "crash", "not working", "fails", "issue"],
    "Performance": ["slow", "lag", "performance", "loading", "timeout", "speed"],
    "UI/UX": ["ui", "ux", "design", "confusing", "layout", "button", "hard to find"],
    "Mobile": ["mobile", "ios", "android", "phone", "tablet", "app store"],
    "Integration": ["integration", "integrate", "api", "webhook", "slack", "zapier", "sync"],
    "Documentation": ["docs", "documentation", "tutorial", "guide", "how do i", "example"],
    "Pricing": ["price", "pricing", "expensive", "cost", "billing", "plan", "subscription"],
}

QUICK_THEME_DESCRIPTIONS = {
    "Feature Request": "Requests for new capabilities",
    "Bug Report": "Reports of things that are broken or erroring",
    "Performance": "Complaints about speed and responsiveness",
    "UI/UX": "Feedback about layout, design and usability",
    "Mobile": "Feedback about mobile apps and small screens",
    "Integration": "Requests to connect with other tools",
    "Documentation": "Questions and gaps in docs and guides",
    "Pricing": "Feedback about plans, prices and billing",
}


# ============================================================
# Validation & merging
# ============================================================

def validate_themes(raw: Any, item_count: int) -> List[Dict[str, Any]]:
    """
    Keep well-formed themes only.

    Drops themes without a name or description, removes out-of-range indices,
    drops themes left with fewer than MIN_CLUSTER_SIZE items, floors confidence
    at MIN_THEME_CONFIDENCE and removes repeated names.
    """
    themes = raw.get("themes") if isinstance(raw, dict) else None
    if not isinstance(themes, list):
        return []
    valid: List[Dict[str, Any]] = []
    seen = set()

    for theme in themes:
        if not isinstance(theme, dict):
            continue
        name = str(theme.get("theme_name") or "").strip()
        description = str(theme.get("description") or "").strip()
        if not name or not description:
            continue
        if name.lower() in seen:
            continue

        raw_indices = theme.get("item_indices")
        if not isinstance(raw_indices, list):
            continue
        indices = []
        for i in raw_indices:
            if isinstance(i, int) and not isinstance(i, bool) and 0 <= i < item_count and i not in indices:
                indices.append(i)
        if len(indices) < MIN_CLUSTER_SIZE:
            continue

        try:
            confidence = float(theme.get("confidence", MIN_THEME_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = MIN_THEME_CONFIDENCE

        seen.add(name.lower())
        valid.append({
            "theme_name": name,
            "description": description,
            "item_indices": sorted(indices),
            "confidence": min(1.0, max(MIN_THEME_CONFIDENCE, confidence)),
        })

    return valid[:MAX_THEMES_PER_BATCH]


def merge_themes_across_batches(batches: List[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Combine same-named themes from different batches, biggest first."""
    merged: Dict[str, Dict[str, Any]] = {}
    confidences: Dict[str, List[float]] = {}

    for batch in batches:
        for theme in batch:
            key = theme["theme_name"].lower()
            if key not in merged:
                merged[key] = {**theme, "item_indices": list(theme["item_indices"])}
                confidences[key] = [theme["confidence"]]
                continue
            existing = merged[key]["item_indices"]
            existing.extend(i for i in theme["item_indices"] if i not in existing)
            existing.sort()
            confidences[key].append(theme["confidence"])

    result = []
    for key, theme in merged.items():
        theme["confidence"] = round(sum(confidences[key]) / len(confidences[key]), 2)
        result.append(theme)
    result.sort(key=lambda t: len(t["item_indices"]), reverse=True)
    return result


def suggest_theme_quick(text: str) -> Optional[str]:
    lower = (text or "").lower()
    for theme_name, keywords in QUICK_THEMES.items():
        if any(re.search(rf"\b{re.escape(k)}\b", lower) for k in keywords):
            return theme_name
    return None


def detect_themes_quick(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keyword grouping used when no LLM is configured."""
    groups: Dict[str, List[int]] = {}
    for index, item in enumerate(items):
        name = suggest_theme_quick(f"{item.get('title', '')} {item.get('text', '')}")
        if name:
            groups.setdefault(name, []).append(index)

    themes = [
        {
            "theme_name": name,
            "description": QUICK_THEME_DESCRIPTIONS[name],
            "item_indices": indices,
            "confidence": MIN_THEME_CONFIDENCE,
        }
        for name, indices in groups.items()
        if len(indices) >= MIN_CLUSTER_SIZE
    ]
    themes.sort(key=lambda t: len(t["item_indices"]), reverse=True)
    return themes


def to_theme_response(theme: Theme) -> ThemeResponse:
    return ThemeResponse(**theme.model_dump())


class ThemeService:
    """Detect, persist and list feedback themes."""

    def __init__(self, batch_size: int = THEME_BATCH_SIZE):
        self.batch_size = batch_size
        self.llm = get_llm_client()

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def _detect_batch(self, batch: List[Dict[str, Any]], offset: int) -> List[Dict[str, Any]]:
        lines = []
        for i, item in enumerate(batch):
            text = self.llm.truncate(item.get("text") or "", 200)
            lines.append(f"[{i}] {item.get('title', '')}: {text}")
        prompt = "Feedback items:\n\n" + "\n".join(lines)

        try:
            raw = self.llm.invoke_json(THEME_SYSTEM_PROMPT, prompt, temperature=0.3)
        except Exception as e:
            logger.error(f"[ThemeService] Batch at offset {offset} failed: {e}")
            return []

        themes = validate_themes(raw, len(batch))
        for theme in themes:
            theme["item_indices"] = [i + offset for i in theme["item_indices"]]
        return themes

    def detect_from_items(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Themes with item_indices pointing into items."""
        if not self.llm.enabled:
            return detect_themes_quick(items)

        batches = []
        for start in range(0, len(items), self.batch_size):
            batches.append(self._detect_batch(items[start:start + self.batch_size], start))
            if start + self.batch_size < len(items):
                time.sleep(config.BATCH_SLEEP_SECONDS)
        return merge_themes_across_batches(batches)

    def detect_themes(self, project_id: str, force: bool = False) -> DetectThemesResponse:
        """
        Detect themes in a project's recent posts and store them.

        force widens the window from the latest 100 posts to the whole board.
        """
        session = get_db_session()
        try:
            if session.get(Project, project_id) is None:
                raise LookupError(f"Project {project_id} not found")

            limit = FORCE_ITEM_LIMIT if force else DEFAULT_ITEM_LIMIT
            posts = list(session.exec(
                select(Post)
                .where(Post.project_id == project_id)
                .order_by(col(Post.created_at).desc())
                .limit(limit)
            ).all())

            if len(posts) < MIN_CLUSTER_SIZE:
                return DetectThemesResponse(
                    success=False,
                    processed_items=len(posts),
                    message=f"Need at least {MIN_CLUSTER_SIZE} feedback items to detect themes"
                )

            sentiments = {
                row.post_id: row.sentiment_score
                for row in session.exec(
                    select(SentimentAnalysis).where(
                        col(SentimentAnalysis.post_id).in_([p.id for p in posts])
                    )
                ).all()
            }
            items = [
                {
                    "post_id": p.id,
                    "title": p.title,
                    "text": p.description or "",
                    "created_at": p.created_at,
                    "sentiment_score": sentiments.get(p.id),
                }
                for p in posts
            ]

            detected = self.detect_from_items(items)
            existing_rows = list(session.exec(select(Theme).where(Theme.project_id == project_id)).all())
            previous = [t.model_dump() for t in existing_rows]
            new_themes, updated_themes = merge_and_rank_themes(detected, previous, items, project_id)

            rows_by_id = {t.id: t for t in existing_rows}
            for data in updated_themes:
                row = rows_by_id[data["id"]]
                for key in ("frequency", "avg_sentiment", "first_seen", "last_seen", "is_emerging", "updated_at"):
                    setattr(row, key, data[key])
                session.add(row)
                self._link_posts(session, row.id, items, data["item_indices"], 0.5)

            for data in new_themes:
                row = Theme(
                    project_id=project_id,
                    theme_name=data["theme_name"],
                    description=data["description"],
                    frequency=data["frequency"],
                    avg_sentiment=data["avg_sentiment"],
                    first_seen=data["first_seen"],
                    last_seen=data["last_seen"],
                    is_emerging=data["is_emerging"],
                )
                session.add(row)
                session.flush()
                self._link_posts(session, row.id, items, data["item_indices"], data["confidence"])

            session.flush()
            all_themes = list(session.exec(select(Theme).where(Theme.project_id == project_id)).all())
            self._rebuild_clusters(session, project_id, all_themes)
            session.commit()

            current = [t.model_dump() for t in all_themes]
            responses = [ThemeResponse(**t) for t in rank_themes(current)]
            emerging = [
                EmergingTheme(
                    theme_id=t["id"],
                    theme_name=t["theme_name"],
                    recent_mentions=t["recent_mentions"],
                    previous_mentions=t["previous_mentions"],
                    growth_rate=t["growth_rate"],
                    growth_label=t["growth_label"],
                )
                for t in identify_emerging_themes(current, previous)
            ]
        finally:
            session.close()

        logger.info(
            f"[ThemeService] Project {project_id}: {len(new_themes)} new, "
            f"{len(updated_themes)} updated from {len(items)} items"
        )
        return DetectThemesResponse(
            success=True,
            themes=responses,
            emerging=emerging,
            new_count=len(new_themes),
            updated_count=len(updated_themes),
            processed_items=len(items),
            message=f"Detected {len(detected)} themes in {len(items)} feedback items"
        )

    @staticmethod
    def _link_posts(session, theme_id: str, items: List[Dict[str, Any]], indices: List[int], confidence: float):
        linked = set(session.exec(
            select(FeedbackTheme.post_id).where(FeedbackTheme.theme_id == theme_id)
        ).all())
        for i in indices:
            if not 0 <= i < len(items):
                continue
            post_id = items[i]["post_id"]
            if post_id in linked:
                continue
            session.add(FeedbackTheme(post_id=post_id, theme_id=theme_id, confidence=confidence))
            linked.add(post_id)

    @staticmethod
    def _rebuild_clusters(session, project_id: str, themes: List[Theme]):
        for old in session.exec(select(ThemeCluster).where(ThemeCluster.project_id == project_id)).all():
            session.delete(old)
        clusters = create_theme_clusters([t.model_dump() for t in themes], project_id)

        cluster_ids = {}
        for data in clusters:
            row = ThemeCluster(**data)
            session.add(row)
            session.flush()
            cluster_ids[row.cluster_name] = row.id

        for theme in themes:
            theme.cluster_id = cluster_ids.get(cluster_name_for(theme.model_dump()))
            theme.updated_at = utc_now()
            session.add(theme)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_themes(self, project_id: str, merge_similar: bool = False) -> List[ThemeResponse]:
        """
        All stored themes, ranked.

        merge_similar folds near-identical names ("Sync", "Sync issues") into
        one entry with combined frequency; stored rows are left untouched.
        """
        session = get_db_session()
        try:
            rows = session.exec(select(Theme).where(Theme.project_id == project_id)).all()
            themes = [r.model_dump() for r in rows]
        finally:
            session.close()

        if merge_similar:
            themes = merge_similar_themes(deduplicate_themes(themes))
        return [ThemeResponse(**t) for t in rank_themes(themes)]

    def get_top_themes(self, project_id: str, limit: int = 5) -> List[ThemeResponse]:
        """Most frequent themes first."""
        session = get_db_session()
        try:
            rows = session.exec(
                select(Theme)
                .where(Theme.project_id == project_id)
                .order_by(col(Theme.frequency).desc())
                .limit(limit)
            ).all()
            return [to_theme_response(r) for r in rows]
        finally:
            session.close()

    def get_theme_posts(self, theme_id: str) -> List[Post]:
        session = get_db_session()
        try:
            return list(session.exec(
                select(Post)
                .join(FeedbackTheme, FeedbackTheme.post_id == Post.id)
                .where(FeedbackTheme.theme_id == theme_id)
            ).all())
        finally:
            session.close()


# Singleton
_theme_service = None


def get_theme_service() -> ThemeService:
    """Get or create theme service singleton."""
    global _theme_service
    if _theme_service is None:
        _theme_service = ThemeService()
    return _theme_service
