"""
Shared Pydantic schemas for the SignalsLoop API.
All API request/response models are defined here.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from shared.constants import (
    PostStatus, PostCategory, VotePriority, IntentAction, PlanTier
)


# ============================================================
# PROJECT SCHEMAS
# ============================================================

class CreateProjectRequest(BaseModel):
    name: str
    slug: str
    plan: PlanTier = PlanTier.FREE
    owner_email: Optional[str] = None
    is_private: bool = False


class ProjectResponse(BaseModel):
    id: str
    slug: str
    name: str
    plan: str
    owner_email: Optional[str] = None
    is_private: bool = False
    created_at: str


# ============================================================
# BOARD SCHEMAS
# ============================================================

class CreatePostRequest(BaseModel):
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    author_name: Optional[str] = None
    author_email: Optional[str] = None


class PostResponse(BaseModel):
    """A post as shown on the board."""
    id: str
    project_id: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    status: str
    author_name: Optional[str] = None
    source: str = "web"
    vote_count: int = 0
    comment_count: int = 0
    priority_score: Optional[float] = None
    priority_level: Optional[str] = None
    created_at: str
    updated_at: str


class PostListResponse(BaseModel):
    posts: List[PostResponse]
    total_count: int
    filters_applied: Dict[str, Any] = Field(default_factory=dict)


class UpdateStatusRequest(BaseModel):
    status: PostStatus


class VoteRequest(BaseModel):
    voter_id: str
    priority: VotePriority = VotePriority.NICE_TO_HAVE


class VoteResponse(BaseModel):
    post_id: str
    priority: str
    total_votes: int
    created: bool


class CreateCommentRequest(BaseModel):
    content: str
    author_name: Optional[str] = None


class CommentResponse(BaseModel):
    id: str
    post_id: str
    content: str
    author_name: Optional[str] = None
    created_at: str


class RoadmapResponse(BaseModel):
    """Posts grouped by roadmap column."""
    project_id: str
    columns: Dict[str, List[PostResponse]]


class DashboardStats(BaseModel):
    project_id: str
    total_posts: int
    total_votes: int
    total_comments: int
    posts_last_7_days: int
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_category: Dict[str, int] = Field(default_factory=dict)


class ImportResult(BaseModel):
    success: bool
    imported: int = 0
    skipped: int = 0
    message: str = ""


# ============================================================
# CHAT SCHEMAS
# ============================================================

class ParsedIntent(BaseModel):
    """Result of parsing a chat command."""
    action: IntentAction
    parameters: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = 0.0
    response: Optional[str] = None


class ActionResult(BaseModel):
    """Outcome of executing a chat action."""
    success: bool
    message: str
    data: Optional[Any] = None
    error: Optional[str] = None


class LinkIntegrationRequest(BaseModel):
    platform: str
    external_id: str
    project_id: str
    channel_id: Optional[str] = None
    webhook_url: Optional[str] = None


class IntegrationResponse(BaseModel):
    id: str
    platform: str
    external_id: str
    project_id: str
    channel_id: Optional[str] = None


class ChatCommandRequest(BaseModel):
    """Platform-neutral chat command (used by the test console endpoint)."""
    project_id: str
    message: str
    platform: str = "slack"
    user: Optional[str] = None


class ChatCommandResponse(BaseModel):
    intent: ParsedIntent
    result: ActionResult
    reply: str


# ============================================================
# AI ANALYSIS SCHEMAS
# ============================================================

class SentimentResult(BaseModel):
    sentiment_category: str
    sentiment_score: float
    emotional_tone: str
    confidence_score: float
    success: bool = True
    error: Optional[str] = None


class SentimentRequest(BaseModel):
    project_id: str
    post_ids: Optional[List[str]] = None


class SentimentSummary(BaseModel):
    project_id: str
    analyzed: int
    failed: int
    distribution: Dict[str, int] = Field(default_factory=dict)
    average_score: float = 0.0


class CategorizeRequest(BaseModel):
    title: str
    description: Optional[str] = None


class CategorizationResult(BaseModel):
    category: str
    confidence: float
    reasoning: str = ""
    tags: List[str] = Field(default_factory=list)
    urgency: Optional[str] = None
    method: str = "keyword"


class DuplicateCandidate(BaseModel):
    post_id: str
    title: str
    similarity: float
    duplicate_type: str  # exact, semantic, partial, related
    merge_recommendation: str  # merge, link, keep_separate
    reasoning: str = ""


class DuplicateResponse(BaseModel):
    post_id: str
    candidates: List[DuplicateCandidate] = Field(default_factory=list)


class DuplicateCluster(BaseModel):
    primary_post_id: str
    post_ids: List[str]
    titles: List[str]
    average_similarity: float
    total_votes: int = 0
    recommended_action: str = ""


class PriorityScoringRequest(BaseModel):
    project_id: str
    post_ids: Optional[List[str]] = None
    profile: str = "growth"


class PriorityScoreResult(BaseModel):
    post_id: str
    scores: Dict[str, float]
    weighted_score: float
    priority_level: str
    quarter_recommendation: str
    is_bug: bool = False
    reasoning: str = ""
    method: str = "heuristic"


class DetectThemesRequest(BaseModel):
    project_id: str
    force: bool = False


class ThemeResponse(BaseModel):
    id: str
    theme_name: str
    description: Optional[str] = None
    frequency: int
    avg_sentiment: float
    first_seen: str
    last_seen: str
    is_emerging: bool
    cluster_id: Optional[str] = None


class EmergingTheme(BaseModel):
    theme_id: str
    theme_name: str
    recent_mentions: int
    previous_mentions: int
    growth_rate: int
    growth_label: str


class DetectThemesResponse(BaseModel):
    success: bool
    themes: List[ThemeResponse] = Field(default_factory=list)
    emerging: List[EmergingTheme] = Field(default_factory=list)
    new_count: int = 0
    updated_count: int = 0
    processed_items: int = 0
    message: str = ""


class RoadmapSuggestionResponse(BaseModel):
    id: str
    theme_id: str
    theme_name: str
    priority_score: float
    priority_level: str
    breakdown: Dict[str, float] = Field(default_factory=dict)
    reasoning: Optional[str] = None


# ============================================================
# HEALTH SCORE / BRIEFING SCHEMAS
# ============================================================

class HealthScoreComponent(BaseModel):
    name: str
    score: int
    weight: int
    weighted_score: float
    status: str  # excellent, good, warning, critical
    description: str


class HealthScoreGrade(BaseModel):
    label: str
    color: str
    emoji: str
    description: str


class HealthScoreAction(BaseModel):
    priority: int
    component: str
    action: str
    impact: str
    urgency: str


class HealthScoreResult(BaseModel):
    score: int
    grade: HealthScoreGrade
    components: Dict[str, HealthScoreComponent]
    interpretation: str
    top_actions: List[HealthScoreAction] = Field(default_factory=list)
    product_name: Optional[str] = None
    calculated_at: str


class BriefingItem(BaseModel):
    title: str
    description: str = ""
    post_id: Optional[str] = None
    theme_id: Optional[str] = None


class DailyBriefingContent(BaseModel):
    sentiment_score: float = 0.5  # 0 .. 1
    sentiment_trend: str = "stable"  # up, down, stable
    critical_items: List[BriefingItem] = Field(default_factory=list)
    warning_items: List[BriefingItem] = Field(default_factory=list)
    info_items: List[BriefingItem] = Field(default_factory=list)
    success_items: List[BriefingItem] = Field(default_factory=list)
    recommended_actions: List[BriefingItem] = Field(default_factory=list)
    opportunities: List[str] = Field(default_factory=list)
    threats: List[str] = Field(default_factory=list)
    briefing_text: str = ""


class DailyBriefingResponse(BaseModel):
    id: str
    project_id: str
    briefing_date: str
    content: DailyBriefingContent
    created_at: str


# ============================================================
# SPEC SCHEMAS
# ============================================================

class GenerateSpecRequest(BaseModel):
    project_id: str
    idea: Optional[str] = None
    post_ids: List[str] = Field(default_factory=list)


class SpecResponse(BaseModel):
    id: str
    project_id: str
    title: str
    content: str
    status: str
    linked_post_ids: List[str] = Field(default_factory=list)
    quality: Optional[Dict[str, Any]] = None
    url: str


class ScoreSpecRequest(BaseModel):
    content: str


class SpecQualityIssue(BaseModel):
    severity: str  # critical, major, minor, suggestion
    dimension: str
    message: str


class SpecQualityReport(BaseModel):
    overall_score: float
    grade: str
    dimensions: Dict[str, float]
    missing_sections: List[str] = Field(default_factory=list)
    issues: List[SpecQualityIssue] = Field(default_factory=list)
    rework_risk: str
    method: str = "heuristic"


# ============================================================
# JOB / HEALTH SCHEMAS
# ============================================================

class JobResult(BaseModel):
    success: bool
    job: str
    message: str = ""
    processed: int = 0
    failed: int = 0
    duration_ms: int = 0
    details: Dict[str, Any] = Field(default_factory=dict)


class HealthCheckResponse(BaseModel):
    status: str
    version: str
    components: Dict[str, str]
