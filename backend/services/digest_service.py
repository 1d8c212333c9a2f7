"""
Weekly digest: last 7 days of board activity per project, sent by email
(Resend) and posted to linked chat webhooks.
"""
import html
import logging
import time
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import requests
from sqlmodel import select, col

from backend import config
from backend.persistence.database import get_db_session
from backend.persistence.models import (
    Project, Post, Vote, Comment, NotificationRecipient, ChatIntegration
)
from shared.schemas import JobResult

logger = logging.getLogger(__name__)

DAYS_BACK = 7
TOP_N = 5
RESEND_URL = "https://api.resend.com/emails"
REQUEST_TIMEOUT = 10


def build_project_digest(project: Project, since: str) -> Dict[str, Any]:
    """Activity summary for one project since an ISO timestamp."""
    session = get_db_session()
    try:
        posts = list(session.exec(select(Post).where(Post.project_id == project.id)).all())
        post_ids = [p.id for p in posts]
        votes = []
        comments = []
        if post_ids:
            votes = list(session.exec(
                select(Vote).where(col(Vote.post_id).in_(post_ids)).where(Vote.created_at >= since)
            ).all())
            comments = list(session.exec(
                select(Comment).where(col(Comment.post_id).in_(post_ids)).where(Comment.created_at >= since)
            ).all())
    finally:
        session.close()

    by_id = {p.id: p for p in posts}
    vote_counts = Counter(v.post_id for v in votes)
    comment_counts = Counter(c.post_id for c in comments)

    def entry(post_id: str) -> Dict[str, Any]:
        post = by_id[post_id]
        return {
            "post_id": post_id,
            "title": post.title,
            "status": post.status,
            "total_votes": post.vote_count,
            "new_votes": vote_counts.get(post_id, 0),
            "new_comments": comment_counts.get(post_id, 0),
        }

    new_posts = sorted([p for p in posts if p.created_at >= since], key=lambda p: p.created_at, reverse=True)
    return {
        "project_id": project.id,
        "project_name": project.name,
        "project_slug": project.slug,
        "total_new_posts": len(new_posts),
        "total_new_votes": len(votes),
        "total_new_comments": len(comments),
        "new_posts": [entry(p.id) for p in new_posts[:TOP_N]],
        "top_voted_posts": [entry(pid) for pid, _ in vote_counts.most_common(TOP_N)],
        "top_commented_posts": [entry(pid) for pid, _ in comment_counts.most_common(TOP_N)],
    }


def has_activity(digest: Dict[str, Any]) -> bool:
    return any(digest[k] for k in ("total_new_posts", "total_new_votes", "total_new_comments"))


def digest_subject(digest: Dict[str, Any]) -> str:
    return f"Your weekly SignalsLoop digest: {digest['project_name']}"


def render_digest_html(digest: Dict[str, Any]) -> str:
    """Email body; user-supplied text (project name, post titles) is HTML-escaped."""
    board_url = html.escape(f"{config.SITE_URL}/{digest['project_slug']}/board", quote=True)

    def section(title: str, posts: List[Dict[str, Any]], stat: str) -> str:
        if not posts:
            return ""
        rows = "".join(
            f"<li><strong>{html.escape(p['title'])}</strong> ({p[stat]} {stat.replace('_', ' ')})</li>"
            for p in posts
        )
        return f"<h3>{title}</h3><ul>{rows}</ul>"

    return (
        f"<h2>{html.escape(digest['project_name'])}: last {DAYS_BACK} days</h2>"
        f"<p>{digest['total_new_posts']} new posts, {digest['total_new_votes']} new votes, "
        f"{digest['total_new_comments']} new comments.</p>"
        + section("New feedback", digest["new_posts"], "total_votes")
        + section("Top voted", digest["top_voted_posts"], "new_votes")
        + section("Most discussed", digest["top_commented_posts"], "new_comments")
        + f'<p><a href="{board_url}">Open your board</a></p>'
    )


def render_digest_text(digest: Dict[str, Any]) -> str:
    lines = [
        f"📬 *Weekly digest: {digest['project_name']}*",
        f"{digest['total_new_posts']} new posts • {digest['total_new_votes']} votes • "
        f"{digest['total_new_comments']} comments",
    ]
    if digest["top_voted_posts"]:
        lines.append("\n🔥 *Top voted:*")
        lines.extend(f"• {p['title']} (+{p['new_votes']})" for p in digest["top_voted_posts"][:3])
    if digest["top_commented_posts"]:
        lines.append("\n💬 *Most discussed:*")
        lines.extend(f"• {p['title']} ({p['new_comments']} comments)" for p in digest["top_commented_posts"][:3])
    return "\n".join(lines)


class DigestService:
    """Build and deliver weekly digests."""

    def recipients_for(self, project: Project) -> List[str]:
        session = get_db_session()
        try:
            rows = session.exec(
                select(NotificationRecipient)
                .where(NotificationRecipient.project_id == project.id)
                .where(NotificationRecipient.receive_weekly_digest == True)  # noqa: E712
            ).all()
        finally:
            session.close()
        emails = [project.owner_email] if project.owner_email else []
        for row in rows:
            if row.email not in emails:
                emails.append(row.email)
        return emails

    def send_email(self, to: str, subject: str, html: str) -> bool:
        if not config.RESEND_API_KEY:
            logger.warning(f"[DigestService] RESEND_API_KEY not set, skipping email to {to}")
            return False
        try:
            response = requests.post(
                RESEND_URL,
                headers={"Authorization": f"Bearer {config.RESEND_API_KEY}"},
                json={"from": config.DIGEST_FROM_EMAIL, "to": [to], "subject": subject, "html": html},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"[DigestService] Email to {to} failed: {e}")
            return False
        if response.status_code >= 400:
            logger.error(f"[DigestService] Email to {to} rejected ({response.status_code}): {response.text}")
            return False
        return True

    def post_webhook(self, integration: ChatIntegration, text: str) -> bool:
        payload = {"content": text[:2000]} if integration.platform == "discord" else {"text": text}
        try:
            response = requests.post(integration.webhook_url, json=payload, timeout=REQUEST_TIMEOUT)
        except requests.exceptions.RequestException as e:
            logger.error(f"[DigestService] Webhook post failed for {integration.id}: {e}")
            return False
        return response.status_code < 400

    def run(self, now: Optional[datetime] = None) -> JobResult:
        start = time.time()
        since = ((now or datetime.utcnow()) - timedelta(days=DAYS_BACK)).isoformat()

        session = get_db_session()
        try:
            projects = list(session.exec(select(Project)).all())
            integrations = list(session.exec(
                select(ChatIntegration).where(col(ChatIntegration.webhook_url).is_not(None))
            ).all())
        finally:
            session.close()

        sent = 0
        failed = 0
        webhooks = 0
        skipped = 0
        for project in projects:
            digest = build_project_digest(project, since)
            if not has_activity(digest):
                skipped += 1
                continue

            html = render_digest_html(digest)
            for email in self.recipients_for(project):
                if self.send_email(email, digest_subject(digest), html):
                    sent += 1
                else:
                    failed += 1
                time.sleep(config.BATCH_SLEEP_SECONDS)

            text = render_digest_text(digest)
            for integration in integrations:
                if integration.project_id == project.id and self.post_webhook(integration, text):
                    webhooks += 1

        duration = int((time.time() - start) * 1000)
        logger.info(
            f"[DigestService] {sent} emails sent, {failed} failed, {webhooks} webhook posts, "
            f"{skipped} quiet projects skipped"
        )
        return JobResult(
            success=True,
            job="weekly-digest",
            message=f"Sent {sent} digest emails",
            processed=sent,
            failed=failed,
            duration_ms=duration,
            details={"webhook_posts": webhooks, "skipped_projects": skipped},
        )


# Singleton
_digest_service = None


def get_digest_service() -> DigestService:
    """Get or create digest service singleton."""
    global _digest_service
    if _digest_service is None:
        _digest_service = DigestService()
    return _digest_service
