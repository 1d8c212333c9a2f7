"""
SQLModel models for SignalsLoop.
Tables:
- projects: feedback boards (one public board + roadmap per project)
- posts / votes / comments: board content
- sentiment_analysis: per-post sentiment results
- themes / feedback_themes / theme_clusters: detected themes and their links
- roadmap_suggestions: theme-level prioritization output
- specs: generated product specs
- daily_briefings: cached mission-control briefings
- discovered_feedback: externally collected feedback awaiting classification
- chat_integrations: Slack team / Discord guild to project links
- notification_recipients: weekly digest subscribers
"""
from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field
from uuid import uuid4


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


def utc_now() -> str:
    """Current UTC time as ISO string."""
    return datetime.utcnow().isoformat()


class Project(SQLModel, table=True):
    """A feedback board."""
    __tablename__ = "projects"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    slug: str = Field(index=True, unique=True)
    name: str
    plan: str = Field(default="free")  # "free", "pro", "enterprise"
    owner_email: Optional[str] = None
    is_private: bool = Field(default=False)
    created_at: str = Field(default_factory=utc_now)


class Post(SQLModel, table=True):
    """A piece of feedback on a board."""
    __tablename__ = "posts"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    status: str = Field(default="open", index=True)

    author_name: Optional[str] = None
    author_email: Optional[str] = None
    source: str = Field(default="web")  # "web", "slack", "discord", "import"

    # Denormalized counters
    vote_count: int = Field(default=0)
    comment_count: int = Field(default=0)

    # AI outputs
    priority_score: Optional[float] = None
    priority_level: Optional[str] = None

    created_at: str = Field(default_factory=utc_now, index=True)
    updated_at: str = Field(default_factory=utc_now)


class Vote(SQLModel, table=True):
    """One vote per voter per post."""
    __tablename__ = "votes"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    post_id: str = Field(index=True, foreign_key="posts.id")
    voter_id: str = Field(index=True)  # email or chat user id
    priority: str = Field(default="nice_to_have")
    created_at: str = Field(default_factory=utc_now)


class Comment(SQLModel, table=True):
    """Comment on a post."""
    __tablename__ = "comments"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    post_id: str = Field(index=True, foreign_key="posts.id")
    content: str
    author_name: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)


class SentimentAnalysis(SQLModel, table=True):
    """Sentiment result for a post."""
    __tablename__ = "sentiment_analysis"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    post_id: str = Field(index=True, unique=True, foreign_key="posts.id")
    sentiment_category: str = Field(default="neutral")
    sentiment_score: float = Field(default=0.0)  # -1 .. 1
    emotional_tone: str = Field(default="neutral")
    confidence_score: float = Field(default=0.5)
    analyzed_at: str = Field(default_factory=utc_now)


class Theme(SQLModel, table=True):
    """A recurring theme detected across feedback."""
    __tablename__ = "themes"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    theme_name: str
    description: Optional[str] = None
    frequency: int = Field(default=0)
    avg_sentiment: float = Field(default=0.0)
    first_seen: str = Field(default_factory=utc_now)
    last_seen: str = Field(default_factory=utc_now)
    is_emerging: bool = Field(default=False)
    cluster_id: Optional[str] = Field(default=None, index=True)
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)


class FeedbackTheme(SQLModel, table=True):
    """Link between a post and a theme."""
    __tablename__ = "feedback_themes"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    post_id: str = Field(index=True, foreign_key="posts.id")
    theme_id: str = Field(index=True, foreign_key="themes.id")
    confidence: float = Field(default=0.5)
    created_at: str = Field(default_factory=utc_now)


class ThemeCluster(SQLModel, table=True):
    """Keyword-based grouping of themes."""
    __tablename__ = "theme_clusters"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    cluster_name: str
    description: Optional[str] = None
    theme_count: int = Field(default=0)
    total_frequency: int = Field(default=0)
    avg_sentiment: float = Field(default=0.0)
    created_at: str = Field(default_factory=utc_now)


class RoadmapSuggestion(SQLModel, table=True):
    """Prioritized roadmap entry derived from a theme."""
    __tablename__ = "roadmap_suggestions"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    theme_id: str = Field(index=True, foreign_key="themes.id")
    priority_score: float = Field(default=0.0)
    priority_level: str = Field(default="low")
    breakdown: str = Field(default="{}")  # JSON
    reasoning: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)


class Spec(SQLModel, table=True):
    """A generated product spec (PRD)."""
    __tablename__ = "specs"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    title: str
    content: str
    status: str = Field(default="draft")
    linked_post_ids: str = Field(default="[]")  # JSON
    quality: Optional[str] = None  # JSON quality report
    generation_model: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)


class DailyBriefing(SQLModel, table=True):
    """Cached mission-control briefing (one per project per day)."""
    __tablename__ = "daily_briefings"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    briefing_date: str = Field(index=True)  # YYYY-MM-DD
    content: str  # JSON
    created_at: str = Field(default_factory=utc_now)


class DiscoveredFeedback(SQLModel, table=True):
    """Feedback collected from external platforms, classified in batches."""
    __tablename__ = "discovered_feedback"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    platform: str = Field(default="other")
    title: Optional[str] = None
    content: str
    author_username: Optional[str] = None
    url: Optional[str] = None

    processing_status: str = Field(default="pending", index=True)
    classification: Optional[str] = None
    sentiment_score: Optional[float] = None
    sentiment_label: Optional[str] = None
    urgency_level: Optional[str] = None
    key_topics: Optional[str] = None  # JSON
    error_message: Optional[str] = None

    discovered_at: str = Field(default_factory=utc_now, index=True)
    processed_at: Optional[str] = None


class ChatIntegration(SQLModel, table=True):
    """Slack workspace / Discord guild linked to a project."""
    __tablename__ = "chat_integrations"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    platform: str = Field(index=True)  # "slack", "discord"
    external_id: str = Field(index=True)  # team_id or guild_id
    channel_id: Optional[str] = None
    project_id: str = Field(index=True, foreign_key="projects.id")
    webhook_url: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)


class NotificationRecipient(SQLModel, table=True):
    """Email recipient for project notifications."""
    __tablename__ = "notification_recipients"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    email: str
    name: Optional[str] = None
    receive_weekly_digest: bool = Field(default=True)
    created_at: str = Field(default_factory=utc_now)
