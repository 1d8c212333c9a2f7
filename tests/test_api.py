"""
HTTP API smoke tests through FastAPI's TestClient.
"""
import inspect

from fastapi.routing import APIRoute

from backend import config
from backend.services.spec_service import default_spec_template


def create_project(client, slug="acme"):
    response = client.post("/api/projects", json={"name": "Acme", "slug": slug, "plan": "pro"})
    assert response.status_code == 200
    return response.json()


def create_post(client, project_id, title="Dark mode"):
    response = client.post(f"/api/projects/{project_id}/posts", json={"title": title})
    assert response.status_code == 200
    return response.json()


class TestBasics:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["components"]["llm"] == "heuristic"

    def test_projects(self, client):
        project = create_project(client)
        assert project["plan"] == "pro"

        assert client.post("/api/projects", json={"name": "Again", "slug": "ACME"}).status_code == 400
        assert client.get("/api/projects/acme").json()["id"] == project["id"]
        assert client.get("/api/projects/nope").status_code == 404


class TestBoard:

    def test_post_lifecycle(self, client):
        project = create_project(client)
        post = create_post(client, project["id"])
        assert post["status"] == "open"

        vote = client.post(f"/api/posts/{post['id']}/votes", json={"voter_id": "u1", "priority": "must_have"})
        assert vote.json() == {"post_id": post["id"], "priority": "must_have", "total_votes": 1, "created": True}

        comment = client.post(f"/api/posts/{post['id']}/comments", json={"content": "Yes please"})
        assert comment.status_code == 200

        moved = client.patch(f"/api/posts/{post['id']}/status", json={"status": "planned"})
        assert moved.json()["status"] == "planned"

        roadmap = client.get(f"/api/projects/{project['id']}/roadmap").json()
        assert [p["id"] for p in roadmap["columns"]["planned"]] == [post["id"]]

        stats = client.get(f"/api/projects/{project['id']}/dashboard").json()
        assert stats["total_posts"] == 1
        assert stats["total_votes"] == 1
        assert stats["total_comments"] == 1
        assert stats["by_status"] == {"planned": 1}

    def test_validation_errors(self, client):
        project = create_project(client)
        post = create_post(client, project["id"])

        assert client.post(f"/api/projects/{project['id']}/posts", json={"title": "  "}).status_code == 400
        assert client.post("/api/projects/missing/posts", json={"title": "Dark mode"}).status_code == 404
        assert client.patch(f"/api/posts/{post['id']}/status", json={"status": "someday"}).status_code == 422
        assert client.post(f"/api/posts/{post['id']}/comments", json={"content": ""}).status_code == 400
        assert client.post("/api/posts/missing/votes", json={"voter_id": "u1"}).status_code == 404
        assert client.get("/api/projects/missing/roadmap").status_code == 404

    def test_list_posts_sorted_by_votes(self, client):
        project = create_project(client)
        quiet = create_post(client, project["id"], "Quiet idea")
        loud = create_post(client, project["id"], "Loud idea")
        client.post(f"/api/posts/{loud['id']}/votes", json={"voter_id": "u1"})

        body = client.get(f"/api/projects/{project['id']}/posts").json()
        assert [p["id"] for p in body["posts"]] == [loud["id"], quiet["id"]]
        assert body["total_count"] == 2

    def test_csv_import(self, client):
        project = create_project(client)
        csv_bytes = b"title,description\nDark mode,Easier at night\n,no title\n"

        response = client.post(
            f"/api/projects/{project['id']}/import",
            files={"file": ("feedback.csv", csv_bytes, "text/csv")}
        )
        assert response.json()["imported"] == 1
        assert response.json()["skipped"] == 1

        rejected = client.post(
            f"/api/projects/{project['id']}/import",
            files={"file": ("feedback.txt", csv_bytes, "text/plain")}
        )
        assert rejected.status_code == 400


class TestAIEndpoints:

    def test_categorize(self, client):
        response = client.post("/api/ai/categorize", json={"title": "Page is slow"})
        assert response.json()["category"] == "Performance"
        assert client.post("/api/ai/categorize", json={"title": " "}).status_code == 400

    def test_health_score_needs_data(self, client):
        project = create_project(client)
        assert client.get(f"/api/projects/{project['id']}/health-score").status_code == 404
        assert client.get("/api/projects/missing/health-score").status_code == 404

    def test_spec_endpoints(self, client):
        project = create_project(client)
        content = default_spec_template("Bulk export", "Users want all their data.", [])

        report = client.post("/api/specs/score", json={"content": content}).json()
        assert report["grade"] == "B"
        assert client.post("/api/specs/score", json={"content": ""}).status_code == 400

        spec = client.post("/api/specs/generate", json={"project_id": project["id"], "idea": "Bulk export"})
        assert spec.status_code == 200
        spec_id = spec.json()["id"]
        assert client.get(f"/api/specs/{spec_id}").json()["title"] == "Bulk export"
        assert [s["id"] for s in client.get(f"/api/projects/{project['id']}/specs").json()] == [spec_id]
        assert client.post("/api/specs/generate", json={"project_id": project["id"]}).status_code == 400

    def test_chat_command_console(self, client):
        project = create_project(client)
        response = client.post("/api/chat/command", json={
            "project_id": project["id"],
            "message": "add feedback about slow loading on mobile",
            "user": "alice",
        })

        body = response.json()
        assert body["intent"]["action"] == "create_feedback"
        assert body["result"]["success"] is True
        assert body["reply"].startswith('✅ Created feedback: "Slow loading on mobile"')


class TestCron:

    def test_open_when_no_secret(self, client):
        response = client.get("/api/cron/process-feedback")
        assert response.status_code == 200
        assert response.json()["job"] == "process-feedback"

    def test_secret_required(self, client, monkeypatch):
        monkeypatch.setattr(config, "CRON_SECRET", "s3cret")

        assert client.post("/api/cron/process-feedback").status_code == 401
        assert client.post(
            "/api/cron/process-feedback", headers={"Authorization": "Bearer wrong"}
        ).status_code == 401
        ok = client.post("/api/cron/process-feedback", headers={"Authorization": "Bearer s3cret"})
        assert ok.status_code == 200
        assert ok.json()["success"] is True

    def test_unknown_job(self, client):
        assert client.get("/api/cron/make-coffee").status_code == 404


class TestHandlers:

    def test_only_webhooks_are_coroutines(self):
        from backend.main import app

        async_paths = {
            route.path for route in app.routes
            if isinstance(route, APIRoute) and inspect.iscoroutinefunction(route.endpoint)
        }
        assert async_paths == {"/api/integrations/slack/commands", "/api/integrations/discord/interactions"}
