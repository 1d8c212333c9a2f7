"""
Spec writer: PRD generation from feedback and spec quality scoring.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

from sqlmodel import select, col

from backend import config
from backend.persistence.database import get_db_session
from backend.persistence.models import Project, Post, Spec
from backend.services.llm_client import get_llm_client
from shared.schemas import SpecResponse, SpecQualityIssue, SpecQualityReport

logger = logging.getLogger(__name__)

# (title, required) in document order
STANDARD_SECTIONS = [
    ("Problem Statement", True),
    ("User Stories", True),
    ("Acceptance Criteria", True),
    ("Edge Cases & Error Handling", False),
    ("Technical Considerations", False),
    ("Success Metrics", True),
    ("Out of Scope", False),
    ("Open Questions", False),
    ("Appendix", False),
]

QUALITY_WEIGHTS = {
    "completeness": 0.20,
    "clarity": 0.20,
    "acceptance_criteria": 0.20,
    "edge_cases": 0.15,
    "technical_detail": 0.10,
    "success_metrics": 0.15,
}

SEVERITY_ORDER = {"critical": 0, "major": 1, "minor": 2, "suggestion": 3}

VAGUE_TERMS = ["maybe", "somehow", "etc", "various", "tbd", "probably", "some kind of", "as needed"]

SPEC_SYSTEM_PROMPT = """You are an expert product manager writing a product requirements document (PRD) in markdown.
Ground every requirement in the user feedback you are given.

Use exactly these "## " sections, in order:
Problem Statement, User Stories, Acceptance Criteria, Edge Cases & Error Handling,
Technical Considerations, Success Metrics, Out of Scope, Open Questions, Appendix.

Rules:
- User stories use "As a [persona], I want [action] so that [benefit]"
- Acceptance criteria use Given/When/Then and are grouped as Must Have (P0), Should Have (P1), Nice to Have (P2)
- Success metrics are measurable (numbers, percentages, time frames)
- The Appendix lists the linked feedback titles

Return only the markdown document starting with a "# " title line."""

QUALITY_SYSTEM_PROMPT = """You are an expert product manager and technical writer evaluating a product spec (PRD).

Score each dimension 0-100:
- completeness: are the required sections present and filled in?
- clarity: would an engineer know exactly what to build?
- acceptance_criteria: specific, measurable, Given/When/Then?
- edge_cases: are error scenarios covered?
- technical_detail: enough technical context without over-prescribing?
- success_metrics: defined, measurable, achievable?

Respond with JSON only:
{
  "scores": {"completeness": 0, "clarity": 0, "acceptance_criteria": 0, "edge_cases": 0, "technical_detail": 0, "success_metrics": 0},
  "issues": [{"severity": "critical|major|minor|suggestion", "dimension": "one of the dimensions", "message": "what to fix"}]
}"""


# ============================================================
# Quality scoring
# ============================================================

def has_section(content: str, title: str) -> bool:
    return re.search(rf"^##\s+{re.escape(title)}", content, re.IGNORECASE | re.MULTILINE) is not None


def section_body(content: str, title: str) -> str:
    match = re.search(
        rf"^##\s+{re.escape(title)}[^\n]*\n(.*?)(?=^##\s|\Z)",
        content, re.IGNORECASE | re.MULTILINE | re.DOTALL
    )
    return match.group(1).strip() if match else ""


def find_missing_sections(content: str) -> List[str]:
    return [title for title, required in STANDARD_SECTIONS if required and not has_section(content, title)]


def style_warnings(content: str) -> List[str]:
    warnings = []
    if len(content) < 500:
        warnings.append("Spec content seems too short. Consider adding more detail.")
    if "As a" not in content:
        warnings.append("No user stories found. Consider adding user stories.")
    if "Given" not in content or "When" not in content or "Then" not in content:
        warnings.append("Acceptance criteria may not be in Given/When/Then format. Consider restructuring.")
    return warnings


def heuristic_dimension_scores(content: str) -> Dict[str, float]:
    """Structure-based scores used when no LLM is configured."""
    present = sum(1 for title, _ in STANDARD_SECTIONS if has_section(content, title))
    lower = content.lower()

    clarity = 80.0
    clarity -= 5 * sum(len(re.findall(rf"\b{re.escape(t)}\b", lower)) for t in VAGUE_TERMS)
    if len(content) < 500:
        clarity -= 20

    if not has_section(content, "Acceptance Criteria"):
        acceptance = 30.0
    elif all(w in content for w in ("Given", "When", "Then")):
        acceptance = 90.0
    else:
        acceptance = 60.0

    metrics_body = section_body(content, "Success Metrics")
    if not metrics_body:
        metrics = 20.0
    elif re.search(r"\d", metrics_body):
        metrics = 90.0
    else:
        metrics = 70.0

    return {
        "completeness": 40 + 60 * present / len(STANDARD_SECTIONS),
        "clarity": max(20.0, clarity),
        "acceptance_criteria": acceptance,
        "edge_cases": 80.0 if section_body(content, "Edge Cases") else 30.0,
        "technical_detail": 80.0 if section_body(content, "Technical Considerations") else 40.0,
        "success_metrics": metrics,
    }


def score_to_grade(score: float) -> str:
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"


def rework_risk(score: float, issues: List[SpecQualityIssue]) -> str:
    critical = sum(1 for i in issues if i.severity == "critical")
    major = sum(1 for i in issues if i.severity == "major")
    if critical > 0 or score < 60:
        return "high"
    if major > 2 or score < 75:
        return "medium"
    return "low"


def _dimension_score(value: Any, default: float = 50.0) -> float:
    """Model scores arrive as numbers, numeric strings, null or words like "high"."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def build_quality_report(
    content: str,
    scores: Dict[str, float],
    extra_issues: Optional[List[SpecQualityIssue]] = None,
    method: str = "heuristic"
) -> SpecQualityReport:
    """Apply the missing-section penalty, weight the dimensions and collect issues."""
    missing = find_missing_sections(content)
    dimensions = {}
    for key in QUALITY_WEIGHTS:
        value = _dimension_score(scores.get(key))
        if key == "completeness" and missing:
            value = max(0.0, value - 10 * len(missing))
        dimensions[key] = round(min(100.0, max(0.0, value)), 1)

    overall = round(sum(dimensions[k] * w for k, w in QUALITY_WEIGHTS.items()))

    issues = list(extra_issues or [])
    for section in missing:
        issues.append(SpecQualityIssue(
            severity="critical",
            dimension="completeness",
            message=f'The "{section}" section is required but missing from the spec.',
        ))
    for warning in style_warnings(content):
        issues.append(SpecQualityIssue(severity="minor", dimension="clarity", message=warning))
    if method == "heuristic":
        for key, value in dimensions.items():
            if value < 50 and key != "completeness":
                issues.append(SpecQualityIssue(
                    severity="major",
                    dimension=key,
                    message=f"{key.replace('_', ' ').capitalize()} is weak ({value:.0f}/100)",
                ))
    issues.sort(key=lambda i: SEVERITY_ORDER.get(i.severity, 3))

    return SpecQualityReport(
        overall_score=overall,
        grade=score_to_grade(overall),
        dimensions=dimensions,
        missing_sections=missing,
        issues=issues,
        rework_risk=rework_risk(overall, issues),
        method=method,
    )


def default_spec_template(title: str, idea: Optional[str], posts: List[Post]) -> str:
    """PRD skeleton filled from the idea and linked feedback."""
    problem = idea or (posts[0].description if posts and posts[0].description else title)
    evidence = "\n".join(f"- {p.title} ({p.vote_count} votes)" for p in posts) or "- No linked feedback"
    total_votes = sum(p.vote_count for p in posts)

    return f"""# {title}

## Problem Statement

{problem}

{len(posts)} linked feedback item(s) with {total_votes} total votes describe this need.

## User Stories

- As a user, I want {title.lower()} so that I can get my work done without workarounds.

## Acceptance Criteria

**Must Have (P0)**
- Given a signed-in user, When they use {title.lower()}, Then the result is saved and visible immediately.

**Should Have (P1)**
- Given an invalid input, When the user submits it, Then a clear error message is shown.

## Edge Cases & Error Handling

- Empty state when there is no data yet
- Network failure while saving

## Technical Considerations

- Reuse existing APIs where possible
- Track usage events for the success metrics below

## Success Metrics

- 30% of active users adopt the feature within 60 days
- Related feedback volume drops by 50% within one quarter

## Out of Scope

- Changes to billing or permissions

## Open Questions

- Which plans should include this feature?

## Appendix

Linked feedback:
{evidence}
"""


def spec_url(spec_id: str) -> str:
    return f"{config.SITE_URL}/specs/{spec_id}"


def to_spec_response(spec: Spec) -> SpecResponse:
    return SpecResponse(
        id=spec.id,
        project_id=spec.project_id,
        title=spec.title,
        content=spec.content,
        status=spec.status,
        linked_post_ids=json.loads(spec.linked_post_ids or "[]"),
        quality=json.loads(spec.quality) if spec.quality else None,
        url=spec_url(spec.id),
    )


class SpecService:
    """Generate, score and store product specs."""

    def __init__(self):
        self.llm = get_llm_client()

    def score_spec_quality(self, content: str) -> SpecQualityReport:
        if not self.llm.enabled:
            return build_quality_report(content, heuristic_dimension_scores(content))

        try:
            raw = self.llm.invoke_json(
                QUALITY_SYSTEM_PROMPT, self.llm.truncate(content, 6000), temperature=0.3
            )
        except Exception as e:
            logger.error(f"[SpecService] Quality analysis failed: {e}")
            return build_quality_report(content, heuristic_dimension_scores(content))

        if not isinstance(raw, dict):
            logger.warning("[SpecService] Quality analysis returned no JSON object, using heuristics")
            return build_quality_report(content, heuristic_dimension_scores(content))

        issues = []
        raw_issues = raw.get("issues")
        for item in raw_issues if isinstance(raw_issues, list) else []:
            if not isinstance(item, dict) or not item.get("message"):
                continue
            severity = item.get("severity") if item.get("severity") in SEVERITY_ORDER else "minor"
            issues.append(SpecQualityIssue(
                severity=severity,
                dimension=str(item.get("dimension") or "general"),
                message=str(item["message"]),
            ))
        scores = raw.get("scores")
        if not isinstance(scores, dict):
            scores = {}
        return build_quality_report(content, scores, issues, method="llm")

    def _write_content(self, title: str, idea: Optional[str], posts: List[Post]) -> str:
        if not self.llm.enabled:
            return default_spec_template(title, idea, posts)

        feedback = "\n".join(
            f"- {p.title} ({p.vote_count} votes): {self.llm.truncate(p.description or '', 150)}"
            for p in posts
        ) or "- none"
        prompt = f"Feature: {title}\n\nIdea: {idea or 'Derived from feedback'}\n\nLinked feedback:\n{feedback}"
        try:
            content = self.llm.invoke_text(SPEC_SYSTEM_PROMPT, prompt, temperature=0.4).strip()
            return content or default_spec_template(title, idea, posts)
        except Exception as e:
            logger.error(f"[SpecService] Spec generation failed: {e}")
            return default_spec_template(title, idea, posts)

    def generate_spec(
        self,
        project_id: str,
        idea: Optional[str] = None,
        post_ids: Optional[List[str]] = None
    ) -> SpecResponse:
        """Write a draft PRD for an idea and/or a set of posts and store it."""
        post_ids = post_ids or []
        idea = (idea or "").strip() or None
        if not idea and not post_ids:
            raise ValueError("An idea or at least one post is required")

        session = get_db_session()
        try:
            if session.get(Project, project_id) is None:
                raise LookupError(f"Project {project_id} not found")
            posts = []
            if post_ids:
                posts = list(session.exec(
                    select(Post)
                    .where(Post.project_id == project_id)
                    .where(col(Post.id).in_(post_ids))
                    .order_by(col(Post.vote_count).desc())
                ).all())
        finally:
            session.close()

        if not idea and not posts:
            raise LookupError("None of the given posts belong to this project")
        title = idea.split("\n")[0][:120] if idea else posts[0].title
        content = self._write_content(title, idea, posts)
        quality = self.score_spec_quality(content)

        session = get_db_session()
        try:
            spec = Spec(
                project_id=project_id,
                title=title,
                content=content,
                linked_post_ids=json.dumps([p.id for p in posts]),
                quality=quality.model_dump_json(),
                generation_model=config.LLM_MODEL if self.llm.enabled else "template",
            )
            session.add(spec)
            session.commit()
            session.refresh(spec)
            logger.info(f"[SpecService] Created spec '{spec.title}' ({quality.grade}) for {project_id}")
            return to_spec_response(spec)
        finally:
            session.close()

    def get_spec(self, spec_id: str) -> Optional[SpecResponse]:
        session = get_db_session()
        try:
            spec = session.get(Spec, spec_id)
            return to_spec_response(spec) if spec else None
        finally:
            session.close()

    def list_specs(self, project_id: str) -> List[SpecResponse]:
        session = get_db_session()
        try:
            rows = session.exec(
                select(Spec).where(Spec.project_id == project_id).order_by(col(Spec.created_at).desc())
            ).all()
            return [to_spec_response(s) for s in rows]
        finally:
            session.close()


# Singleton
_spec_service = None


def get_spec_service() -> SpecService:
    """Get or create spec service singleton."""
    global _spec_service
    if _spec_service is None:
        _spec_service = SpecService()
    return _spec_service
