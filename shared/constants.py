"""
Shared constants for SignalsLoop.
"""
from enum import Enum


# Post lifecycle on the board / roadmap
class PostStatus(str, Enum):
    OPEN = "open"
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CLOSED = "closed"


# Roadmap columns, in display order
ROADMAP_COLUMNS = [PostStatus.PLANNED, PostStatus.IN_PROGRESS, PostStatus.COMPLETED]


# Categories offered when feedback is created from chat
class PostCategory(str, Enum):
    BUG = "Bug"
    FEATURE_REQUEST = "Feature Request"
    IMPROVEMENT = "Improvement"
    QUESTION = "Question"
    OTHER = "Other"


class VotePriority(str, Enum):
    MUST_HAVE = "must_have"
    IMPORTANT = "important"
    NICE_TO_HAVE = "nice_to_have"


# Chat command intents
class IntentAction(str, Enum):
    CREATE_FEEDBACK = "create_feedback"
    VOTE_ON_POST = "vote_on_post"
    UPDATE_STATUS = "update_status"
    GET_BRIEFING = "get_briefing"
    GET_HEALTH_SCORE = "get_health_score"
    SEARCH_FEEDBACK = "search_feedback"
    GENERATE_SPEC = "generate_spec"
    GET_INSIGHTS = "get_insights"
    UNKNOWN = "unknown"


class ChatPlatform(str, Enum):
    SLACK = "slack"
    DISCORD = "discord"


class SentimentCategory(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    MIXED = "mixed"


# Classification of externally discovered feedback
class FeedbackClassification(str, Enum):
    BUG = "bug"
    FEATURE_REQUEST = "feature_request"
    USABILITY_ISSUE = "usability_issue"
    PRAISE = "praise"
    COMPLAINT = "complaint"
    COMPARISON = "comparison"
    CHURN_RISK = "churn_risk"
    QUESTION = "question"
    OTHER = "other"


class UrgencyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Theme-level roadmap priority
class PriorityLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PlanTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


CHAT_HELP_TEXT = (
    "Hi! I'm SignalsLoop. I can help you:\n"
    "• Create feedback\n"
    "• Vote on posts\n"
    "• Get your daily briefing\n"
    "• Check product health\n"
    "• Search feedback\n\n"
    "Just tell me what you'd like to do!"
)
