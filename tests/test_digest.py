"""
Weekly digest building and delivery. HTTP calls are mocked.
"""
from unittest.mock import MagicMock, patch

from backend import config
from backend.persistence.database import get_db_session
from backend.persistence.models import NotificationRecipient
from backend.services.digest_service import (
    DigestService, build_project_digest, has_activity, render_digest_html, render_digest_text, RESEND_URL,
)
from backend.services.integration_service import get_integration_service


def add_recipient(project_id, email, weekly=True):
    session = get_db_session()
    try:
        session.add(NotificationRecipient(project_id=project_id, email=email, receive_weekly_digest=weekly))
        session.commit()
    finally:
        session.close()


def ok_response():
    response = MagicMock()
    response.status_code = 200
    return response


class TestBuild:

    def test_digest_counts_recent_activity(self, board, project, make_post):
        post = make_post("Dark mode", votes=2)
        board.add_comment(post.id, "Yes please")

        digest = build_project_digest(board.get_project(project.id), "2000-01-01T00:00:00")

        assert digest["total_new_posts"] == 1
        assert digest["total_new_votes"] == 2
        assert digest["total_new_comments"] == 1
        assert digest["top_voted_posts"][0]["new_votes"] == 2
        assert has_activity(digest)

        text = render_digest_text(digest)
        assert text.startswith("📬 *Weekly digest: Acme*")
        assert "• Dark mode (+2)" in text

    def test_html_escapes_user_text(self, board):
        project = board.create_project(name="Acme <b>Labs</b>", slug="labs")
        board.create_post(project.id, "<script>alert(1)</script> & export")

        html = render_digest_html(build_project_digest(board.get_project(project.id), "2000-01-01T00:00:00"))

        assert "<script>" not in html
        assert "&lt;script&gt;alert(1)&lt;/script&gt; &amp; export" in html
        assert "<h2>Acme &lt;b&gt;Labs&lt;/b&gt;: last 7 days</h2>" in html
        assert f'href="{config.SITE_URL}/labs/board"' in html

    def test_quiet_project(self, board, project):
        digest = build_project_digest(board.get_project(project.id), "2000-01-01T00:00:00")
        assert not has_activity(digest)


class TestRun:

    def test_sends_to_deduplicated_recipients(self, board, project, make_post, monkeypatch):
        monkeypatch.setattr(config, "RESEND_API_KEY", "re_test")
        make_post("Dark mode", votes=1)
        add_recipient(project.id, "owner@acme.io")
        add_recipient(project.id, "pm@acme.io")
        add_recipient(project.id, "muted@acme.io", weekly=False)
        board.create_project(name="Quiet", slug="quiet", owner_email="quiet@example.com")

        with patch("backend.services.digest_service.requests.post", return_value=ok_response()) as post:
            result = DigestService().run()

        assert result.processed == 2
        assert result.failed == 0
        assert result.details["skipped_projects"] == 1
        recipients = [c.kwargs["json"]["to"] for c in post.call_args_list]
        assert recipients == [["owner@acme.io"], ["pm@acme.io"]]
        assert post.call_args_list[0].args[0] == RESEND_URL
        assert post.call_args_list[0].kwargs["headers"] == {"Authorization": "Bearer re_test"}

    def test_without_resend_key_nothing_is_sent(self, project, make_post):
        make_post("Dark mode")

        with patch("backend.services.digest_service.requests.post") as post:
            result = DigestService().run()

        post.assert_not_called()
        assert result.processed == 0
        assert result.failed == 1

    def test_posts_to_linked_discord_webhook(self, project, make_post):
        make_post("Dark mode")
        get_integration_service().link(
            "discord", "guild-1", project.id, webhook_url="https://discord.test/hook"
        )

        with patch("backend.services.digest_service.requests.post", return_value=ok_response()) as post:
            result = DigestService().run()

        assert result.details["webhook_posts"] == 1
        post.assert_called_once()
        assert post.call_args.args[0] == "https://discord.test/hook"
        assert post.call_args.kwargs["json"]["content"].startswith("📬")
