"""
FastAPI backend for SignalsLoop.

Feedback boards, AI analysis, chat integrations and cron entry points.
All business logic lives in the services; this module only maps HTTP to them.
Handlers are sync and run in the threadpool; the webhook handlers await the
raw body and offload the service calls with run_in_threadpool.
"""
import json
import logging
import os
from typing import Optional, List
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, UploadFile, File, Request, Header
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from backend import config
from backend.chat.formatters import (
    slack_reply, slack_message, discord_reply, discord_pong, DISCORD_PING, DISCORD_APPLICATION_COMMAND
)
from backend.chat.graph import get_chat_graph
from backend.chat.verification import verify_slack_signature, verify_discord_signature
from backend.jobs.runner import run_job, JOBS
from backend.persistence.database import init_db
from backend.services.board_service import get_board_service
from backend.services.briefing_service import get_briefing_service
from backend.services.categorization_service import get_categorization_service
from backend.services.duplicate_service import get_duplicate_service
from backend.services.health_score import get_health_score_service
from backend.services.integration_service import get_integration_service
from backend.services.priority_service import get_priority_service
from backend.services.roadmap_service import get_roadmap_service
from backend.services.sentiment_service import get_sentiment_service
from backend.services.spec_service import get_spec_service
from backend.services.theme_service import get_theme_service

# Import shared schemas
from shared.schemas import (
    CreateProjectRequest, ProjectResponse,
    CreatePostRequest, PostResponse, PostListResponse, UpdateStatusRequest,
    VoteRequest, VoteResponse, CreateCommentRequest, CommentResponse,
    RoadmapResponse, DashboardStats, ImportResult,
    SentimentRequest, SentimentSummary, CategorizeRequest, CategorizationResult,
    DuplicateResponse, DuplicateCluster, PriorityScoringRequest, PriorityScoreResult,
    DetectThemesRequest, DetectThemesResponse, ThemeResponse, RoadmapSuggestionResponse,
    HealthScoreResult, DailyBriefingResponse,
    GenerateSpecRequest, SpecResponse, ScoreSpecRequest, SpecQualityReport,
    LinkIntegrationRequest, IntegrationResponse, ChatCommandRequest, ChatCommandResponse,
    JobResult, HealthCheckResponse
)

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

UNLINKED_WORKSPACE_TEXT = (
    "👋 This workspace isn't connected to a SignalsLoop project yet.\n"
    f"Connect one at {config.SITE_URL}/settings/integrations and try again."
)


# Initialize database on startup
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    init_db()
    logger.info("[API] Database initialized")
    yield
    logger.info("[API] Shutting down")


# Create FastAPI app
app = FastAPI(
    title="SignalsLoop API",
    description="Backend API for SignalsLoop feedback boards and product intelligence",
    version=VERSION,
    lifespan=lifespan
)

# CORS for the web app and embeddable widget
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_project(project_id: str):
    project = get_board_service().get_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


# ============================================================
# HEALTH CHECK
# ============================================================

@app.get("/health", response_model=HealthCheckResponse)
def health_check():
    """Health check endpoint."""
    return HealthCheckResponse(
        status="healthy",
        version=VERSION,
        components={
            "database": "ok",
            "llm": "enabled" if config.llm_enabled() else "heuristic",
            "email": "ok" if config.RESEND_API_KEY else "disabled"
        }
    )


# ============================================================
# PROJECT ENDPOINTS
# ============================================================

@app.post("/api/projects", response_model=ProjectResponse)
def create_project(request: CreateProjectRequest):
    """Create a project with its feedback board."""
    try:
        return get_board_service().create_project(
            name=request.name,
            slug=request.slug,
            plan=request.plan.value,
            owner_email=request.owner_email,
            is_private=request.is_private
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/projects/{slug}", response_model=ProjectResponse)
def get_project_by_slug(slug: str):
    project = get_board_service().get_project_by_slug(slug)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


# ============================================================
# BOARD ENDPOINTS
# ============================================================

@app.get("/api/projects/{project_id}/posts", response_model=PostListResponse)
def list_posts(
    project_id: str,
    status: Optional[str] = None,
    category: Optional[str] = None,
    sort: str = "votes",
    limit: int = 50
):
    """Get posts for a board."""
    posts = get_board_service().list_posts(
        project_id, status=status, category=category, sort=sort, limit=limit
    )
    return PostListResponse(
        posts=posts,
        total_count=len(posts),
        filters_applied={"status": status, "category": category, "sort": sort}
    )


@app.post("/api/projects/{project_id}/posts", response_model=PostResponse)
def create_post(project_id: str, request: CreatePostRequest):
    try:
        return get_board_service().create_post(
            project_id=project_id,
            title=request.title,
            description=request.description,
            category=request.category,
            author_name=request.author_name,
            author_email=request.author_email
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/posts/{post_id}", response_model=PostResponse)
def get_post(post_id: str):
    post = get_board_service().get_post(post_id)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@app.patch("/api/posts/{post_id}/status", response_model=PostResponse)
def update_post_status(post_id: str, request: UpdateStatusRequest):
    """Move a post along the roadmap."""
    result = get_board_service().update_post_status(post_id, request.status.value)
    if not result:
        raise HTTPException(status_code=404, detail="Post not found")
    return result["post"]


@app.post("/api/posts/{post_id}/votes", response_model=VoteResponse)
def vote_on_post(post_id: str, request: VoteRequest):
    vote = get_board_service().vote(post_id, request.voter_id, request.priority.value)
    if not vote:
        raise HTTPException(status_code=404, detail="Post not found")
    return vote


@app.post("/api/posts/{post_id}/comments", response_model=CommentResponse)
def add_comment(post_id: str, request: CreateCommentRequest):
    try:
        comment = get_board_service().add_comment(post_id, request.content, request.author_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not comment:
        raise HTTPException(status_code=404, detail="Post not found")
    return comment


@app.get("/api/projects/{project_id}/roadmap", response_model=RoadmapResponse)
def get_roadmap(project_id: str):
    """Public roadmap columns."""
    _require_project(project_id)
    return get_board_service().get_roadmap(project_id)


@app.get("/api/projects/{project_id}/dashboard", response_model=DashboardStats)
def get_dashboard(project_id: str):
    """Admin dashboard counters."""
    _require_project(project_id)
    return get_board_service().dashboard_stats(project_id)


@app.post("/api/projects/{project_id}/import", response_model=ImportResult)
def import_feedback(project_id: str, file: UploadFile = File(...)):
    """Import feedback from a CSV export."""
    _require_project(project_id)
    file_ext = os.path.splitext(file.filename or "")[1].lower()
    if file_ext != ".csv":
        raise HTTPException(status_code=400, detail="File type not allowed. Allowed: ['.csv']")

    content = file.file.read()
    result = get_board_service().import_csv(project_id, content)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.message)
    return result


# ============================================================
# AI ANALYSIS ENDPOINTS
# ============================================================

@app.post("/api/ai/sentiment", response_model=SentimentSummary)
def analyze_sentiment(request: SentimentRequest):
    _require_project(request.project_id)
    return get_sentiment_service().analyze_posts(request.project_id, request.post_ids)


@app.post("/api/ai/categorize", response_model=CategorizationResult)
def categorize(request: CategorizeRequest):
    if not request.title.strip():
        raise HTTPException(status_code=400, detail="Title is required")
    return get_categorization_service().categorize(request.title, request.description or "")


@app.get("/api/ai/duplicates/{post_id}", response_model=DuplicateResponse)
def find_duplicates(post_id: str, threshold: float = 0.6, include_related: bool = False, limit: int = 5):
    result = get_duplicate_service().find_duplicates(
        post_id, threshold=threshold, max_results=limit, include_related=include_related
    )
    if result is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return result


@app.get("/api/projects/{project_id}/duplicate-clusters", response_model=List[DuplicateCluster])
def find_duplicate_clusters(project_id: str, min_cluster_size: int = 2):
    _require_project(project_id)
    return get_duplicate_service().find_clusters(project_id, min_cluster_size=min_cluster_size)


@app.post("/api/ai/priority-scoring", response_model=List[PriorityScoreResult])
def score_priorities(request: PriorityScoringRequest):
    try:
        return get_priority_service().score_posts(request.project_id, request.post_ids, request.profile)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/detect-themes", response_model=DetectThemesResponse)
def detect_themes(request: DetectThemesRequest):
    """Detect themes across a project's feedback and rebuild clusters."""
    try:
        return get_theme_service().detect_themes(request.project_id, force=request.force)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/api/projects/{project_id}/themes", response_model=List[ThemeResponse])
def list_themes(project_id: str, merge_similar: bool = False):
    _require_project(project_id)
    return get_theme_service().list_themes(project_id, merge_similar=merge_similar)


@app.get("/api/projects/{project_id}/roadmap-suggestions", response_model=List[RoadmapSuggestionResponse])
def list_roadmap_suggestions(project_id: str):
    _require_project(project_id)
    return get_roadmap_service().list_suggestions(project_id)


@app.post("/api/projects/{project_id}/roadmap-suggestions", response_model=List[RoadmapSuggestionResponse])
def generate_roadmap_suggestions(project_id: str):
    try:
        return get_roadmap_service().generate_suggestions(project_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ============================================================
# MISSION CONTROL ENDPOINTS
# ============================================================

@app.get("/api/projects/{project_id}/health-score", response_model=HealthScoreResult)
def get_health_score(project_id: str):
    try:
        result = get_health_score_service().calculate_for_project(project_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if result is None:
        raise HTTPException(status_code=404, detail="Not enough analyzed feedback for a health score")
    return result


@app.get("/api/projects/{project_id}/briefing", response_model=DailyBriefingResponse)
def get_briefing(project_id: str, refresh: bool = False):
    """Today's briefing, generated on first request of the day."""
    try:
        return get_briefing_service().get_today_briefing(project_id, refresh=refresh)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ============================================================
# SPEC ENDPOINTS
# ============================================================

@app.post("/api/specs/generate", response_model=SpecResponse)
def generate_spec(request: GenerateSpecRequest):
    try:
        return get_spec_service().generate_spec(request.project_id, request.idea, request.post_ids)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/specs/score", response_model=SpecQualityReport)
def score_spec(request: ScoreSpecRequest):
    if not request.content.strip():
        raise HTTPException(status_code=400, detail="Spec content is required")
    return get_spec_service().score_spec_quality(request.content)


@app.get("/api/specs/{spec_id}", response_model=SpecResponse)
def get_spec(spec_id: str):
    spec = get_spec_service().get_spec(spec_id)
    if not spec:
        raise HTTPException(status_code=404, detail="Spec not found")
    return spec


@app.get("/api/projects/{project_id}/specs", response_model=List[SpecResponse])
def list_specs(project_id: str):
    _require_project(project_id)
    return get_spec_service().list_specs(project_id)


# ============================================================
# CHAT INTEGRATION ENDPOINTS
# ============================================================

@app.post("/api/integrations", response_model=IntegrationResponse)
def link_integration(request: LinkIntegrationRequest):
    """Link a Slack workspace or Discord guild to a project."""
    try:
        return get_integration_service().link(
            platform=request.platform,
            external_id=request.external_id,
            project_id=request.project_id,
            channel_id=request.channel_id,
            webhook_url=request.webhook_url
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/chat/command", response_model=ChatCommandResponse)
def chat_command(request: ChatCommandRequest):
    """Run a chat command directly (used by the integrations test console)."""
    _require_project(request.project_id)
    return get_chat_graph().run(request.message, request.project_id, request.platform, request.user)


@app.post("/api/integrations/slack/commands")
async def slack_command(
    request: Request,
    x_slack_request_timestamp: Optional[str] = Header(None),
    x_slack_signature: Optional[str] = Header(None)
):
    """Slack slash command (form-encoded)."""
    body = await request.body()
    if not verify_slack_signature(body, x_slack_request_timestamp, x_slack_signature):
        raise HTTPException(status_code=401, detail="Invalid Slack signature")

    form = await request.form()
    project_id = await run_in_threadpool(
        get_integration_service().resolve_project_id, "slack", form.get("team_id")
    )
    if not project_id:
        return slack_message(UNLINKED_WORKSPACE_TEXT)

    user = form.get("user_name") or form.get("user_id")
    response = await run_in_threadpool(get_chat_graph().run, form.get("text", ""), project_id, "slack", user)
    return slack_reply(response.reply, response.intent.action, response.result)


@app.post("/api/integrations/discord/interactions")
async def discord_interaction(
    request: Request,
    x_signature_ed25519: Optional[str] = Header(None),
    x_signature_timestamp: Optional[str] = Header(None)
):
    """Discord interactions endpoint (PING and application commands)."""
    body = await request.body()
    if not verify_discord_signature(body, x_signature_timestamp, x_signature_ed25519):
        raise HTTPException(status_code=401, detail="Invalid request signature")

    try:
        interaction = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    interaction_type = interaction.get("type")
    if interaction_type == DISCORD_PING:
        return discord_pong()
    if interaction_type != DISCORD_APPLICATION_COMMAND:
        raise HTTPException(status_code=400, detail="Unsupported interaction type")

    project_id = await run_in_threadpool(
        get_integration_service().resolve_project_id, "discord", interaction.get("guild_id")
    )
    if not project_id:
        return discord_reply(UNLINKED_WORKSPACE_TEXT, success=False)

    options = (interaction.get("data") or {}).get("options") or []
    message = next((str(o.get("value", "")) for o in options if o.get("name") == "message"), "")
    member_user = (interaction.get("member") or {}).get("user") or interaction.get("user") or {}
    user = member_user.get("username") or member_user.get("id")

    response = await run_in_threadpool(get_chat_graph().run, message, project_id, "discord", user)
    return discord_reply(response.reply, response.result.success)


# ============================================================
# CRON ENDPOINTS
# ============================================================

def _check_cron_auth(authorization: Optional[str]):
    if not config.CRON_SECRET:
        logger.warning("[API] CRON_SECRET not set, cron endpoints are unprotected")
        return
    if authorization != f"Bearer {config.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.api_route("/api/cron/{job}", methods=["GET", "POST"], response_model=JobResult)
def run_cron_job(job: str, authorization: Optional[str] = Header(None)):
    """Trigger a batch job (Vercel-style cron)."""
    _check_cron_auth(authorization)
    if job not in JOBS:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job}")
    return run_job(job)


# ============================================================
# RUN SERVER
# ============================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
