"""
Board service: projects, posts, votes, comments and the public roadmap.
"""
import io
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import List, Dict, Any, Optional

import pandas as pd
from sqlmodel import select, col, func

from backend.persistence.database import get_db_session
from backend.persistence.models import Project, Post, Vote, Comment, utc_now
from shared.constants import PostStatus, VotePriority, ROADMAP_COLUMNS
from shared.schemas import (
    ProjectResponse, PostResponse, VoteResponse, CommentResponse,
    RoadmapResponse, DashboardStats, ImportResult
)

logger = logging.getLogger(__name__)


def to_post_response(post: Post) -> PostResponse:
    return PostResponse(**post.model_dump())


def to_project_response(project: Project) -> ProjectResponse:
    return ProjectResponse(**project.model_dump())


class BoardService:
    """
    Service for feedback boards.

    Keeps Post.vote_count / Post.comment_count in step with the
    votes and comments tables.
    """

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(
        self,
        name: str,
        slug: str,
        plan: str = "free",
        owner_email: Optional[str] = None,
        is_private: bool = False
    ) -> ProjectResponse:
        """Create a project; slug must be unique."""
        slug = slug.strip().lower()
        if not slug or not name.strip():
            raise ValueError("Project name and slug are required")

        session = get_db_session()
        try:
            existing = session.exec(select(Project).where(Project.slug == slug)).first()
            if existing:
                raise ValueError(f"Project slug '{slug}' is already taken")

            project = Project(
                name=name.strip(),
                slug=slug,
                plan=plan,
                owner_email=owner_email,
                is_private=is_private
            )
            session.add(project)
            session.commit()
            session.refresh(project)
            logger.info(f"[BoardService] Created project {project.slug} ({project.id})")
            return to_project_response(project)
        finally:
            session.close()

    def get_project(self, project_id: str) -> Optional[Project]:
        session = get_db_session()
        try:
            return session.get(Project, project_id)
        finally:
            session.close()

    def get_project_by_slug(self, slug: str) -> Optional[ProjectResponse]:
        session = get_db_session()
        try:
            project = session.exec(select(Project).where(Project.slug == slug.lower())).first()
            return to_project_response(project) if project else None
        finally:
            session.close()

    def list_projects(self) -> List[Project]:
        session = get_db_session()
        try:
            return list(session.exec(select(Project).order_by(Project.created_at)).all())
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def list_posts(
        self,
        project_id: str,
        status: Optional[str] = None,
        category: Optional[str] = None,
        sort: str = "votes",
        limit: int = 50
    ) -> List[PostResponse]:
        """Get posts for a board with optional filters."""
        session = get_db_session()
        try:
            query = select(Post).where(Post.project_id == project_id)
            if status:
                query = query.where(Post.status == status)
            if category:
                query = query.where(Post.category == category)

            if sort == "newest":
                query = query.order_by(col(Post.created_at).desc())
            else:
                query = query.order_by(col(Post.vote_count).desc(), col(Post.created_at).desc())

            posts = session.exec(query.limit(limit)).all()
            return [to_post_response(p) for p in posts]
        finally:
            session.close()

    def get_post(self, post_id: str) -> Optional[PostResponse]:
        session = get_db_session()
        try:
            post = session.get(Post, post_id)
            return to_post_response(post) if post else None
        finally:
            session.close()

    def create_post(
        self,
        project_id: str,
        title: str,
        description: Optional[str] = None,
        category: Optional[str] = None,
        author_name: Optional[str] = None,
        author_email: Optional[str] = None,
        source: str = "web",
        status: str = PostStatus.OPEN.value
    ) -> PostResponse:
        """Create a post on a board."""
        title = (title or "").strip()
        if not title:
            raise ValueError("Post title is required")

        session = get_db_session()
        try:
            if session.get(Project, project_id) is None:
                raise LookupError(f"Project {project_id} not found")

            post = Post(
                project_id=project_id,
                title=title[:300],
                description=(description or "").strip() or None,
                category=category,
                status=status,
                author_name=author_name,
                author_email=author_email,
                source=source
            )
            session.add(post)
            session.commit()
            session.refresh(post)
            logger.info(f"[BoardService] Created post '{post.title}' via {source}")
            return to_post_response(post)
        finally:
            session.close()

    def update_post_status(self, post_id: str, new_status: str) -> Optional[Dict[str, Any]]:
        """
        Change a post's status.

        Returns {"post": PostResponse, "old_status": str, "new_status": str}
        or None when the post does not exist.
        """
        new_status = PostStatus(new_status).value

        session = get_db_session()
        try:
            post = session.get(Post, post_id)
            if not post:
                return None
            old_status = post.status
            post.status = new_status
            post.updated_at = utc_now()
            session.add(post)
            session.commit()
            session.refresh(post)
            return {"post": to_post_response(post), "old_status": old_status, "new_status": new_status}
        finally:
            session.close()

    def search_posts(self, project_id: str, query: str, limit: int = 5) -> List[PostResponse]:
        """Case-insensitive title search, newest first."""
        session = get_db_session()
        try:
            posts = session.exec(
                select(Post)
                .where(Post.project_id == project_id)
                .where(col(Post.title).ilike(f"%{query.strip()}%"))
                .order_by(col(Post.created_at).desc())
                .limit(limit)
            ).all()
            return [to_post_response(p) for p in posts]
        finally:
            session.close()

    def find_post(self, project_id: str, query: str) -> Optional[PostResponse]:
        """Best single match for a free-text reference to a post."""
        results = self.search_posts(project_id, query, limit=1)
        return results[0] if results else None

    # ------------------------------------------------------------------
    # Votes & comments
    # ------------------------------------------------------------------

    def vote(
        self,
        post_id: str,
        voter_id: str,
        priority: str = VotePriority.NICE_TO_HAVE.value
    ) -> Optional[VoteResponse]:
        """Cast or update a vote. One vote per voter per post."""
        priority = VotePriority(priority).value

        session = get_db_session()
        try:
            post = session.get(Post, post_id)
            if not post:
                return None

            existing = session.exec(
                select(Vote).where(Vote.post_id == post_id).where(Vote.voter_id == voter_id)
            ).first()

            created = existing is None
            if existing:
                existing.priority = priority
                session.add(existing)
            else:
                session.add(Vote(post_id=post_id, voter_id=voter_id, priority=priority))

            session.flush()
            total = session.exec(
                select(func.count()).select_from(Vote).where(Vote.post_id == post_id)
            ).one()
            post.vote_count = int(total)
            post.updated_at = utc_now()
            session.add(post)
            session.commit()

            return VoteResponse(post_id=post_id, priority=priority, total_votes=int(total), created=created)
        finally:
            session.close()

    def add_comment(
        self,
        post_id: str,
        content: str,
        author_name: Optional[str] = None
    ) -> Optional[CommentResponse]:
        content = (content or "").strip()
        if not content:
            raise ValueError("Comment content is required")

        session = get_db_session()
        try:
            post = session.get(Post, post_id)
            if not post:
                return None

            comment = Comment(post_id=post_id, content=content, author_name=author_name)
            session.add(comment)
            post.comment_count = (post.comment_count or 0) + 1
            post.updated_at = utc_now()
            session.add(post)
            session.commit()
            session.refresh(comment)
            return CommentResponse(**comment.model_dump())
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Roadmap & dashboard
    # ------------------------------------------------------------------

    def get_roadmap(self, project_id: str) -> RoadmapResponse:
        """Posts grouped into planned / in_progress / completed columns."""
        columns = {}
        for status in ROADMAP_COLUMNS:
            columns[status.value] = self.list_posts(project_id, status=status.value, sort="votes", limit=200)
        return RoadmapResponse(project_id=project_id, columns=columns)

    def dashboard_stats(self, project_id: str) -> DashboardStats:
        session = get_db_session()
        try:
            posts = session.exec(select(Post).where(Post.project_id == project_id)).all()
        finally:
            session.close()

        week_ago = (datetime.utcnow() - timedelta(days=7)).isoformat()
        return DashboardStats(
            project_id=project_id,
            total_posts=len(posts),
            total_votes=sum(p.vote_count for p in posts),
            total_comments=sum(p.comment_count for p in posts),
            posts_last_7_days=sum(1 for p in posts if p.created_at >= week_ago),
            by_status=dict(Counter(p.status for p in posts)),
            by_category=dict(Counter(p.category or "Uncategorized" for p in posts))
        )

    # ------------------------------------------------------------------
    # CSV import
    # ------------------------------------------------------------------

    def import_csv(self, project_id: str, file_bytes: bytes) -> ImportResult:
        """
        Import posts from a CSV export.

        Expected columns: title, description; optional category, author_name, author_email.
        Rows without a title are skipped.
        """
        try:
            df = pd.read_csv(io.BytesIO(file_bytes))
        except Exception as e:
            logger.error(f"[BoardService] CSV parse failed: {e}")
            return ImportResult(success=False, message=f"Could not read CSV: {e}")

        df.columns = [str(c).strip().lower() for c in df.columns]
        if "title" not in df.columns:
            return ImportResult(success=False, message="CSV must contain a 'title' column")

        df = df.fillna("")
        imported = 0
        skipped = 0
        for _, row in df.iterrows():
            title = str(row.get("title", "")).strip()
            if not title:
                skipped += 1
                continue
            self.create_post(
                project_id=project_id,
                title=title,
                description=str(row.get("description", "")) or None,
                category=str(row.get("category", "")) or None,
                author_name=str(row.get("author_name", "")) or None,
                author_email=str(row.get("author_email", "")) or None,
                source="import"
            )
            imported += 1

        logger.info(f"[BoardService] Imported {imported} posts ({skipped} skipped) into {project_id}")
        return ImportResult(
            success=True,
            imported=imported,
            skipped=skipped,
            message=f"Imported {imported} posts"
        )


# Singleton
_board_service = None


def get_board_service() -> BoardService:
    """Get or create board service singleton."""
    global _board_service
    if _board_service is None:
        _board_service = BoardService()
    return _board_service
