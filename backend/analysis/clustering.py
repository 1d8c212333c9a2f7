"""
Theme clustering: merge detected themes into stored ones, rank them,
spot emerging themes and group themes into keyword clusters.

Themes are plain dicts with the keys of the themes table
(id, theme_name, description, frequency, avg_sentiment,
first_seen, last_seen, is_emerging).
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

# 100% growth marks a theme as emerging
EMERGING_THEME_THRESHOLD = 1.0
MIN_CLUSTER_SIZE = 3

CLUSTER_DEFINITIONS = [
    {"name": "Feature Requests", "keywords": ["feature", "add", "implement", "support", "request", "want", "need"]},
    {"name": "Bug Reports", "keywords": ["bug", "error", "crash", "broken", "issue", "problem", "fail", "not working"]},
    {"name": "Performance", "keywords": ["slow", "performance", "speed", "lag", "loading", "fast", "optimize"]},
    {"name": "User Experience", "keywords": ["ui", "ux", "design", "interface", "confusing", "difficult", "usability"]},
    {"name": "Mobile & Platforms", "keywords": ["mobile", "app", "ios", "android", "phone", "tablet", "desktop"]},
    {"name": "Integrations", "keywords": ["integration", "connect", "sync", "import", "export", "api", "webhook"]},
    {"name": "Documentation & Support", "keywords": ["docs", "documentation", "help", "tutorial", "guide", "support", "learning"]},
    {"name": "Pricing & Billing", "keywords": ["price", "pricing", "cost", "billing", "subscription", "plan", "payment"]},
]

OTHER_CLUSTER = "Other"


def _now() -> str:
    return datetime.utcnow().isoformat()


def average_sentiment(items: List[Dict[str, Any]]) -> float:
    """Mean sentiment_score of the items that have one, 2 d.p."""
    scores = [i["sentiment_score"] for i in items if i.get("sentiment_score") is not None]
    if not scores:
        return 0.0
    return round(sum(scores) / len(scores), 2)


def detect_emerging_status(current_frequency: int, previous_frequency: int) -> bool:
    if previous_frequency == 0:
        return current_frequency >= MIN_CLUSTER_SIZE
    growth = (current_frequency - previous_frequency) / previous_frequency
    return growth >= EMERGING_THEME_THRESHOLD


def merge_and_rank_themes(
    detected: List[Dict[str, Any]],
    existing: List[Dict[str, Any]],
    items: List[Dict[str, Any]],
    project_id: str
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Split detected themes into (new_themes, updated_themes).

    detected: [{"theme_name", "description", "item_indices", "confidence"}]
    items: feedback dicts indexed by item_indices (created_at, sentiment_score).
    """
    if not detected:
        return [], []

    now = _now()
    existing_by_name = {t["theme_name"].lower(): t for t in existing}
    new_themes: List[Dict[str, Any]] = []
    updated_themes: List[Dict[str, Any]] = []

    for theme in detected:
        related = [items[i] for i in theme["item_indices"] if 0 <= i < len(items)]
        frequency = len(theme["item_indices"])
        avg = average_sentiment(related)
        dates = [r["created_at"] for r in related if r.get("created_at")]
        first_seen = min(dates) if dates else now
        last_seen = max(dates) if dates else now

        current = existing_by_name.get(theme["theme_name"].lower())
        if current:
            previous = current.get("frequency", 0)
            new_frequency = max(frequency, previous)
            updated_themes.append({
                "id": current["id"],
                "frequency": new_frequency,
                "avg_sentiment": avg,
                "first_seen": min(current.get("first_seen") or first_seen, first_seen),
                "last_seen": max(current.get("last_seen") or last_seen, last_seen),
                "is_emerging": detect_emerging_status(new_frequency, previous),
                "item_indices": theme["item_indices"],
                "updated_at": now,
            })
        else:
            new_themes.append({
                "project_id": project_id,
                "theme_name": theme["theme_name"],
                "description": theme.get("description", ""),
                "frequency": frequency,
                "avg_sentiment": avg,
                "first_seen": first_seen,
                "last_seen": last_seen,
                "is_emerging": True,
                "item_indices": theme["item_indices"],
                "confidence": theme.get("confidence", 0.5),
            })

    new_themes.sort(key=lambda t: t["frequency"], reverse=True)
    updated_themes.sort(key=lambda t: t["frequency"], reverse=True)
    logger.info(
        f"[Clustering] Processed {len(detected)} themes: "
        f"{len(new_themes)} new, {len(updated_themes)} updated"
    )
    return new_themes, updated_themes


def calculate_theme_growth(
    current: List[Dict[str, Any]],
    previous: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Growth per theme id, highest growth first."""
    previous_by_id = {t["id"]: t for t in previous}
    metrics = []
    for theme in current:
        before = previous_by_id.get(theme["id"])
        if before is None:
            metrics.append({
                "theme_id": theme["id"],
                "current_frequency": theme["frequency"],
                "previous_frequency": 0,
                "growth_percentage": 100,
                "growth_absolute": theme["frequency"],
                "is_new": True,
            })
            continue
        absolute = theme["frequency"] - before["frequency"]
        percentage = (absolute / before["frequency"] * 100) if before["frequency"] > 0 else 0
        metrics.append({
            "theme_id": theme["id"],
            "current_frequency": theme["frequency"],
            "previous_frequency": before["frequency"],
            "growth_percentage": round(percentage),
            "growth_absolute": absolute,
            "is_new": False,
        })
    metrics.sort(key=lambda m: m["growth_percentage"], reverse=True)
    return metrics


def identify_emerging_themes(
    current: List[Dict[str, Any]],
    previous: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """New themes and themes that at least doubled, with a growth label."""
    by_id = {t["id"]: t for t in current}
    emerging = []
    for metric in calculate_theme_growth(current, previous):
        theme = by_id.get(metric["theme_id"])
        if theme is None:
            continue
        if not (metric["is_new"] or metric["growth_percentage"] >= EMERGING_THEME_THRESHOLD * 100):
            continue
        if metric["is_new"]:
            label = "New theme"
        else:
            pct = metric["growth_percentage"]
            label = f"{'+' if pct > 0 else ''}{pct}% {'increase' if pct > 0 else 'decrease'}"
        emerging.append({
            **theme,
            "recent_mentions": metric["current_frequency"],
            "previous_mentions": metric["previous_frequency"],
            "growth_rate": metric["growth_percentage"],
            "growth_label": label,
        })
    return emerging


def cluster_name_for(theme: Dict[str, Any]) -> str:
    text = f"{theme.get('theme_name', '')} {theme.get('description') or ''}".lower()
    for definition in CLUSTER_DEFINITIONS:
        if any(k in text for k in definition["keywords"]):
            return definition["name"]
    return OTHER_CLUSTER


def group_themes_into_clusters(themes: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for theme in themes:
        grouped.setdefault(cluster_name_for(theme), []).append(theme)
    return grouped


def create_theme_clusters(themes: List[Dict[str, Any]], project_id: str) -> List[Dict[str, Any]]:
    """Cluster rows for a set of themes, largest cluster first."""
    clusters = []
    for name, members in group_themes_into_clusters(themes).items():
        top = ", ".join(t["theme_name"] for t in members[:3])
        more = ", and more" if len(members) > 3 else ""
        frequencies = [t.get("frequency", 0) for t in members]
        clusters.append({
            "project_id": project_id,
            "cluster_name": name,
            "description": f"Cluster containing themes like: {top}{more}",
            "theme_count": len(members),
            "total_frequency": sum(frequencies),
            "avg_sentiment": round(
                sum(t.get("avg_sentiment", 0.0) for t in members) / len(members), 2
            ),
        })
    clusters.sort(key=lambda c: c["theme_count"], reverse=True)
    logger.info(f"[Clustering] Created {len(clusters)} clusters from {len(themes)} themes")
    return clusters


def deduplicate_themes(themes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the highest-frequency theme per lowercase name."""
    kept: Dict[str, Dict[str, Any]] = {}
    for theme in themes:
        key = theme["theme_name"].lower()
        if key not in kept or theme["frequency"] > kept[key]["frequency"]:
            kept[key] = theme
    return list(kept.values())


def are_themes_similar(name_a: str, name_b: str) -> bool:
    a = name_a.lower().strip()
    b = name_b.lower().strip()
    if a == b or a in b or b in a:
        return True
    words_a = set(a.split())
    words_b = set(b.split())
    if not words_a or not words_b:
        return False
    common = words_a & words_b
    return len(common) / min(len(words_a), len(words_b)) >= 0.6


def combine_themes(themes: List[Dict[str, Any]]) -> Dict[str, Any]:
    base = max(themes, key=lambda t: t["frequency"])
    return {
        **base,
        "frequency": sum(t["frequency"] for t in themes),
        "avg_sentiment": round(sum(t["avg_sentiment"] for t in themes) / len(themes), 2),
        "first_seen": min(t["first_seen"] for t in themes),
        "last_seen": max(t["last_seen"] for t in themes),
    }


def merge_similar_themes(themes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if len(themes) <= 1:
        return list(themes)

    merged = []
    used = set()
    for i, theme in enumerate(themes):
        if i in used:
            continue
        group = [theme]
        for j in range(i + 1, len(themes)):
            if j not in used and are_themes_similar(theme["theme_name"], themes[j]["theme_name"]):
                group.append(themes[j])
                used.add(j)
        used.add(i)
        merged.append(theme if len(group) == 1 else combine_themes(group))

    logger.info(f"[Clustering] Merged {len(themes)} themes into {len(merged)} unique themes")
    return merged


def rank_themes(themes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Frequency desc, then most recent, then emerging first,
    then the more negative sentiment first.
    """
    ranked = sorted(themes, key=lambda t: t["avg_sentiment"])
    ranked.sort(key=lambda t: not t.get("is_emerging", False))
    ranked.sort(key=lambda t: t.get("last_seen") or "", reverse=True)
    ranked.sort(key=lambda t: t["frequency"], reverse=True)
    return ranked

