"""Persistence layer - SQLModel tables over SQLite or a hosted database."""
from backend.persistence.database import get_engine, get_db_session, init_db
from backend.persistence.models import (
    Project, Post, Vote, Comment,
    SentimentAnalysis, Theme, FeedbackTheme, ThemeCluster,
    RoadmapSuggestion, Spec, DailyBriefing, DiscoveredFeedback,
    ChatIntegration, NotificationRecipient
)
