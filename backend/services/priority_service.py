"""
Per-post priority scoring.

Seven factors (0-10) are scored by the LLM, or estimated from engagement when
no model is configured, then combined with a strategy weight profile. Bug
reports get enforced minimums, a boost from engagement signals and a floor.
"""
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import select, col

from backend.persistence.database import get_db_session
from backend.persistence.models import Post, Project, Vote, utc_now
from backend.services.duplicate_service import token_similarity, THRESHOLDS
from backend.services.llm_client import get_llm_client
from shared.schemas import PriorityScoreResult

logger = logging.getLogger(__name__)

SCORING_BATCH_SIZE = 5

FACTORS = [
    "revenueImpact", "userReach", "strategicAlignment", "implementationEffort",
    "competitiveAdvantage", "riskMitigation", "userSatisfaction"
]

WEIGHT_PROFILES: Dict[str, Dict[str, float]] = {
    "growth": {
        "revenueImpact": 0.20, "userReach": 0.25, "strategicAlignment": 0.10,
        "implementationEffort": 0.10, "competitiveAdvantage": 0.20,
        "riskMitigation": 0.05, "userSatisfaction": 0.10,
    },
    "retention": {
        "revenueImpact": 0.15, "userReach": 0.15, "strategicAlignment": 0.10,
        "implementationEffort": 0.10, "competitiveAdvantage": 0.10,
        "riskMitigation": 0.15, "userSatisfaction": 0.25,
    },
    "enterprise": {
        "revenueImpact": 0.25, "userReach": 0.10, "strategicAlignment": 0.15,
        "implementationEffort": 0.05, "competitiveAdvantage": 0.15,
        "riskMitigation": 0.20, "userSatisfaction": 0.10,
    },
    "profitability": {
        "revenueImpact": 0.30, "userReach": 0.10, "strategicAlignment": 0.15,
        "implementationEffort": 0.20, "competitiveAdvantage": 0.10,
        "riskMitigation": 0.10, "userSatisfaction": 0.05,
    },
}

BUG_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in [
        r"bug", r"error", r"broken", r"not\s+work", r"doesn['’]?t\s+work",
        r"doesn['’]?t\s+open", r"won['’]?t\s+open", r"fail(?:ed|s)?\s+to",
        r"unable\s+to", r"cannot", r"can't", r"won't", r"stuck",
        r"block(?:er|ed)?", r"crash", r"glitch", r"freeze", r"unresponsive",
        r"partial(?:ly)?\s+open",
        r"modal\s+(?:is\s+)?(?:not|never|won['’]?t|doesn['’]?t)\s+open",
        r"loading\s+forever",
    ]
]

FRUSTRATION_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in [
        r"frustrat", r"annoy", r"difficult", r"pain", r"disrupt", r"block",
        r"urgent", r"asap", r"critical", r"can't", r"cannot", r"unable", r"stuck",
    ]
]

SEVERITY_PATTERN = re.compile(
    r"(broken|error|fail|failed|failing|cannot|can't|cant|won't|wont|doesn't|doesnt|stuck|"
    r"block|blocked|blocking|modal|button|open|load|loading|crash|bug|urgent|critical|prevent|unable)"
)


def is_bug_report(title: str, description: str = "", category: Optional[str] = None) -> bool:
    text = f"{title} {description or ''}".lower()
    if (category or "").lower() in ("bug", "critical bug"):
        return True
    if any(p.search(title) or p.search(description or "") for p in BUG_PATTERNS):
        return True
    issue_detected = "issue" in text or "problem" in text
    return issue_detected and bool(SEVERITY_PATTERN.search(text))


def has_frustration(title: str, description: str = "") -> bool:
    return any(p.search(title) or p.search(description or "") for p in FRUSTRATION_PATTERNS)


def get_priority_level(score: float, risk_score: float) -> str:
    if risk_score >= 9:
        return "immediate"
    if score >= 8.5:
        return "immediate"
    if score >= 7.0:
        return "current-quarter"
    if score >= 5.0:
        return "next-quarter"
    if score >= 3.0:
        return "backlog"
    return "declined"


def current_quarter(now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    return f"Q{(now.month - 1) // 3 + 1}"


def get_quarter_recommendation(level: str, quarter: str) -> str:
    quarters = ["Q1", "Q2", "Q3", "Q4"]
    index = quarters.index(quarter) if quarter in quarters else 0
    if level == "immediate":
        return "This Sprint"
    if level == "current-quarter":
        return quarter
    if level == "next-quarter":
        return quarters[(index + 1) % 4]
    if level == "backlog":
        return "Future"
    return "Not Planned"


def heuristic_factor_scores(context: Dict[str, Any], is_bug: bool, frustrated: bool) -> Dict[str, float]:
    """Factor estimates from engagement and tier alone."""
    metrics = context["metrics"]
    tier = context["tier"]

    pct = metrics["percentage_of_active_users"]
    if pct >= 30:
        reach = 9.5
    elif pct >= 15:
        reach = 7.5
    elif pct >= 5:
        reach = 5.0
    else:
        reach = 2.0
    reach = max(reach, min(10.0, metrics["vote_count"] / 10))

    satisfaction = min(10.0, 2.0 + metrics["comment_count"])
    if frustrated:
        satisfaction = max(satisfaction, 8.0)

    return {
        "revenueImpact": {"enterprise": 8.0, "pro": 5.0}.get(tier, 3.0),
        "userReach": round(reach, 1),
        "strategicAlignment": 5.0,
        "implementationEffort": 5.0,
        "competitiveAdvantage": 5.0,
        "riskMitigation": 7.0 if is_bug else 3.0,
        "userSatisfaction": round(satisfaction, 1),
    }


def _factor(value: Any, default: float = 5.0) -> float:
    # null, booleans and words ("high") count as a neutral score
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def combine_scores(
    scores: Dict[str, float],
    context: Dict[str, Any],
    profile: str = "growth",
    quarter: Optional[str] = None
) -> Dict[str, Any]:
    """
    Apply bug minimums, strategy weights, tier multiplier, bug boost and floors.

    Returns {"scores", "weighted_score", "priority_level", "quarter_recommendation",
    "is_bug", "high_impact_bug"}.
    """
    title = context["title"]
    description = context.get("description") or ""
    tier = context["tier"]
    metrics = context["metrics"]
    paying = tier in ("pro", "enterprise")

    is_bug = is_bug_report(title, description, context.get("category"))
    frustrated = has_frustration(title, description)

    scores = {f: max(0.0, min(10.0, _factor(scores.get(f)))) for f in FACTORS}

    if is_bug:
        scores["revenueImpact"] = max(scores["revenueImpact"], 8.0 if paying else 7.0)
        scores["riskMitigation"] = max(scores["riskMitigation"], 7.0)
        scores["userSatisfaction"] = max(scores["userSatisfaction"], 7.0)

    weights = WEIGHT_PROFILES.get(profile, WEIGHT_PROFILES["growth"])
    weighted = sum(scores[f] * weights[f] for f in FACTORS)

    tier_multiplier = {"enterprise": 1.3, "pro": 1.1}.get(tier, 1.0)
    weighted = min(10.0, weighted * tier_multiplier)

    high_impact = False
    if is_bug:
        votes = metrics["vote_count"]
        comments = metrics["comment_count"]
        pct = metrics["percentage_of_active_users"]
        similar = metrics["similar_posts_count"]

        boost = (
            {"enterprise": 0.9, "pro": 0.65}.get(tier, 0.4)
            + (0.5 if votes >= 10 else 0.3 if votes >= 3 else 0.15 if votes > 0 else 0)
            + (0.25 if comments >= 3 else 0.1 if comments >= 1 else 0)
            + (0.5 if pct >= 25 else 0.3 if pct >= 10 else 0.2 if pct >= 5 else 0)
            + (0.2 if similar >= 3 else 0.1 if similar >= 1 else 0)
            + (0.35 if frustrated else 0)
            + (0.2 if scores["riskMitigation"] >= 8 else 0)
        )
        weighted = min(10.0, weighted + boost)

        high_impact = (
            paying or pct >= 5 or votes >= 3 or comments >= 2
            or frustrated or scores["riskMitigation"] >= 8
        )
        if high_impact:
            floor = {"enterprise": 9.0, "pro": 8.6}.get(tier, 7.5)
        else:
            floor = {"enterprise": 8.4, "pro": 7.8}.get(tier, 7.0)
        weighted = max(weighted, floor)

    level = get_priority_level(weighted, scores["riskMitigation"])
    if is_bug:
        if high_impact:
            level = "immediate"
        elif level == "next-quarter":
            level = "current-quarter"

    quarter = quarter or current_quarter()
    return {
        "scores": scores,
        "weighted_score": round(weighted, 1),
        "priority_level": level,
        "quarter_recommendation": get_quarter_recommendation(level, quarter),
        "is_bug": is_bug,
        "high_impact_bug": high_impact,
    }


PRIORITY_SYSTEM_PROMPT = """You are a senior product strategist scoring SaaS feedback for prioritization.

Score each factor from 0 to 10:
- revenueImpact: workflow-blocking bugs 8-10, bugs with workarounds 5-7, missing features 3-6, nice-to-haves 0-3
- userReach: 0-5% of active users 1-3, 5-15% 4-6, 15-30% 7-8, 30%+ 9-10
- strategicAlignment: fit with the company strategy
- implementationEffort: INVERTED, 10 = 1-2 days, 0 = 3+ months
- competitiveAdvantage: unique 8-10, table stakes 6-8, me-too 2-4
- riskMitigation: security/data loss 9-10, compliance 8-10, workflow blockers 7-9, minor bugs 2-4
- userSatisfaction: removes major frustration 8-10, fixes annoyance 5-7, small improvement 2-4

Respond with JSON only:
{
  "scores": {"revenueImpact": n, "userReach": n, "strategicAlignment": n, "implementationEffort": n,
             "competitiveAdvantage": n, "riskMitigation": n, "userSatisfaction": n},
  "businessJustification": "1-2 sentence business case"
}"""


class PriorityService:
    """Score posts and persist priority_score / priority_level."""

    def __init__(self):
        self.llm = get_llm_client()

    def _llm_scores(self, context: Dict[str, Any], profile: str) -> Dict[str, Any]:
        metrics = context["metrics"]
        prompt = (
            f"Strategy: {profile}\n"
            f"Title: \"{context['title']}\"\n"
            f"Description: \"{self.llm.truncate(context.get('description') or '', 800)}\"\n"
            f"Category: {context.get('category') or 'uncategorized'}\n"
            f"Customer tier: {context['tier']}\n"
            f"{metrics['vote_count']} votes, {metrics['comment_count']} comments, "
            f"{metrics['percentage_of_active_users']:.1f}% of active users, "
            f"{metrics['similar_posts_count']} similar posts"
        )
        return self.llm.invoke_json(PRIORITY_SYSTEM_PROMPT, prompt, temperature=0.1)

    def score_context(self, context: Dict[str, Any], profile: str = "growth") -> PriorityScoreResult:
        """Score one post described by a context dict."""
        is_bug = is_bug_report(context["title"], context.get("description") or "", context.get("category"))
        frustrated = has_frustration(context["title"], context.get("description") or "")

        method = "heuristic"
        reasoning = "Prioritized based on user engagement and tier"
        scores = heuristic_factor_scores(context, is_bug, frustrated)

        if self.llm.enabled:
            try:
                raw = self._llm_scores(context, profile)
                if isinstance(raw.get("scores"), dict):
                    scores = raw["scores"]
                    method = "llm"
                    reasoning = str(raw.get("businessJustification") or "")
            except Exception as e:
                logger.error(f"[PriorityService] Scoring failed for '{context['title']}': {e}")

        combined = combine_scores(scores, context, profile)
        logger.info(
            f"[PriorityService] '{context['title'][:60]}' -> {combined['weighted_score']} "
            f"({combined['priority_level']}, bug={combined['is_bug']})"
        )
        return PriorityScoreResult(
            post_id=context["post_id"],
            scores=combined["scores"],
            weighted_score=combined["weighted_score"],
            priority_level=combined["priority_level"],
            quarter_recommendation=combined["quarter_recommendation"],
            is_bug=combined["is_bug"],
            reasoning=reasoning,
            method=method,
        )

    def _score_in_batches(self, contexts: List[Dict[str, Any]], profile: str) -> List[PriorityScoreResult]:
        """
        Score up to SCORING_BATCH_SIZE posts at a time in parallel.

        Batches run one after another; results keep the order of contexts.
        """
        results: List[PriorityScoreResult] = []
        with ThreadPoolExecutor(max_workers=SCORING_BATCH_SIZE) as pool:
            for start in range(0, len(contexts), SCORING_BATCH_SIZE):
                batch = contexts[start:start + SCORING_BATCH_SIZE]
                results.extend(pool.map(lambda context: self.score_context(context, profile), batch))
        return results

    def _build_contexts(self, session, project: Project, posts: List[Post]) -> List[Dict[str, Any]]:
        all_posts = session.exec(select(Post).where(Post.project_id == project.id)).all()
        post_ids = [p.id for p in all_posts]
        votes = session.exec(select(Vote).where(col(Vote.post_id).in_(post_ids))).all() if post_ids else []
        active_users = len({v.voter_id for v in votes}) or 1

        voters_by_post: Dict[str, set] = {}
        for v in votes:
            voters_by_post.setdefault(v.post_id, set()).add(v.voter_id)

        contexts = []
        for post in posts:
            text = f"{post.title} {post.description or ''}"
            similar = sum(
                1 for other in all_posts
                if other.id != post.id
                and token_similarity(text, f"{other.title} {other.description or ''}") >= THRESHOLDS["related"]
            )
            unique_voters = len(voters_by_post.get(post.id, set()))
            contexts.append({
                "post_id": post.id,
                "title": post.title,
                "description": post.description or "",
                "category": post.category,
                "tier": project.plan,
                "metrics": {
                    "vote_count": post.vote_count,
                    "comment_count": post.comment_count,
                    "unique_voters": unique_voters,
                    "percentage_of_active_users": unique_voters / active_users * 100,
                    "similar_posts_count": similar,
                },
            })
        return contexts

    def score_posts(
        self,
        project_id: str,
        post_ids: Optional[List[str]] = None,
        profile: str = "growth"
    ) -> List[PriorityScoreResult]:
        """Score a project's posts in batches of five and store the results."""
        if profile not in WEIGHT_PROFILES:
            raise ValueError(f"Unknown weight profile: {profile}")

        session = get_db_session()
        try:
            project = session.get(Project, project_id)
            if not project:
                raise LookupError(f"Project {project_id} not found")

            query = select(Post).where(Post.project_id == project_id)
            if post_ids:
                query = query.where(col(Post.id).in_(post_ids))
            posts = list(session.exec(query).all())
            contexts = self._build_contexts(session, project, posts)

            results = self._score_in_batches(contexts, profile)

            by_id = {r.post_id: r for r in results}
            for post in posts:
                result = by_id[post.id]
                post.priority_score = result.weighted_score
                post.priority_level = result.priority_level
                post.updated_at = utc_now()
                session.add(post)
            session.commit()
            return results
        finally:
            session.close()


# Singleton
_priority_service = None


def get_priority_service() -> PriorityService:
    """Get or create priority service singleton."""
    global _priority_service
    if _priority_service is None:
        _priority_service = PriorityService()
    return _priority_service
