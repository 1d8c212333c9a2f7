"""
LLM client wiring: model construction, retry configuration and JSON parsing.
"""
from unittest.mock import MagicMock, patch

import pytest

from backend import config
from backend.services.llm_client import LLMClient, LLMUnavailableError, parse_json_content


@pytest.fixture
def online(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("ENABLE_LLM", "true")
    monkeypatch.setattr(config, "LLM_MAX_RETRIES", 5)


class TestParsing:

    def test_fenced_and_bare_json(self):
        assert parse_json_content('```json\n{"a": 1}\n```') == {"a": 1}
        assert parse_json_content('```\n[1, 2]\n```') == [1, 2]
        assert parse_json_content(' {"b": true} ') == {"b": True}

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError):
            parse_json_content("Sure! Here are the scores.")


class TestModels:

    def test_disabled_without_key(self):
        client = LLMClient()
        assert not client.enabled
        with pytest.raises(LLMUnavailableError):
            client.chat_model()
        with pytest.raises(LLMUnavailableError):
            client.embed_documents(["anything"])

    def test_chat_model_uses_client_retries(self, online):
        with patch("backend.services.llm_client.ChatOpenAI") as chat_cls:
            client = LLMClient(model="gpt-test")
            first = client.chat_model(temperature=0.1)
            second = client.chat_model(temperature=0.1)

        chat_cls.assert_called_once_with(model="gpt-test", temperature=0.1, max_retries=5)
        assert first is second

    def test_failures_are_not_retried_again(self, online):
        with patch("backend.services.llm_client.ChatOpenAI") as chat_cls:
            chat_cls.return_value.invoke.side_effect = RuntimeError("rate limited")
            client = LLMClient()
            with pytest.raises(RuntimeError):
                client.invoke_json("system", "user")

        assert chat_cls.return_value.invoke.call_count == 1

    def test_invoke_json(self, online):
        with patch("backend.services.llm_client.ChatOpenAI") as chat_cls:
            chat_cls.return_value.invoke.return_value = MagicMock(content='```json\n{"ok": true}\n```')
            assert LLMClient().invoke_json("system", "user") == {"ok": True}

    def test_embed_documents_truncates_and_batches(self, online):
        with patch("backend.services.llm_client.OpenAIEmbeddings") as embeddings_cls:
            embeddings_cls.return_value.embed_documents.return_value = [[0.1], [0.2]]
            client = LLMClient(embedding_model="embed-test")
            vectors = client.embed_documents(["x" * 9000, "short"])

        embeddings_cls.assert_called_once_with(model="embed-test", max_retries=5)
        embeddings_cls.return_value.embed_documents.assert_called_once_with(["x" * 8000, "short"])
        assert vectors == [[0.1], [0.2]]
