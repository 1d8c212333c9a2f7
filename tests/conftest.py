"""
Shared fixtures: a throwaway SQLite database per test and LLM calls disabled,
so every AI feature runs on its heuristic path.
"""
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from backend import config
from backend.persistence.database import reset_engine, init_db
from backend.persistence.vector_store import reset_vector_store


@pytest.fixture(autouse=True)
def offline(monkeypatch):
    """No API keys, no secrets, no sleeping."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("ENABLE_LLM", "false")
    monkeypatch.setattr(config, "BATCH_SLEEP_SECONDS", 0)
    monkeypatch.setattr(config, "CRON_SECRET", "")
    monkeypatch.setattr(config, "SLACK_SIGNING_SECRET", "")
    monkeypatch.setattr(config, "DISCORD_PUBLIC_KEY", "")
    monkeypatch.setattr(config, "RESEND_API_KEY", "")


@pytest.fixture(autouse=True)
def db(tmp_path):
    reset_engine(f"sqlite:///{tmp_path}/test.db")
    reset_vector_store(str(tmp_path / "chromadb"))
    init_db()
    yield
    reset_engine()
    reset_vector_store()


@pytest.fixture
def board():
    from backend.services.board_service import get_board_service
    return get_board_service()


@pytest.fixture
def project(board):
    return board.create_project(name="Acme", slug="acme", plan="pro", owner_email="owner@acme.io")


@pytest.fixture
def make_post(board, project):
    def _make(title, description="", category=None, status="open", votes=0):
        post = board.create_post(project.id, title, description=description, category=category, status=status)
        for i in range(votes):
            board.vote(post.id, f"voter-{i}")
        return board.get_post(post.id)
    return _make


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from backend.main import app
    with TestClient(app) as c:
        yield c
