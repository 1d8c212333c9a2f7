"""
Shared LLM client for every AI feature.

Wraps langchain-openai so services only deal with prompts and parsed JSON:
- JSON invocation with markdown-fence stripping
- Retries with backoff delegated to the OpenAI client (LLM_MAX_RETRIES)
- Batched embeddings for duplicate detection
- Token-aware truncation of long feedback
"""
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import tiktoken
from langchain_openai import ChatOpenAI, OpenAIEmbeddings
from langchain_core.messages import SystemMessage, HumanMessage

from backend import config

logger = logging.getLogger(__name__)


class LLMUnavailableError(RuntimeError):
    """Raised when no LLM is configured (no API key or ENABLE_LLM=false)."""


def parse_json_content(content: str) -> Any:
    """Parse a model reply that may be wrapped in ```json fences."""
    content = (content or "").strip()
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return json.loads(content.strip())


class LLMClient:
    """
    Thin wrapper around ChatOpenAI / OpenAIEmbeddings.

    Chat models are cached per (model, temperature) pair.
    """

    def __init__(self, model: Optional[str] = None, embedding_model: Optional[str] = None):
        self.model = model or config.LLM_MODEL
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self._chat_models: Dict[Tuple[str, float], ChatOpenAI] = {}
        self._embeddings = None

        self.encoding = None
        try:
            self.encoding = tiktoken.get_encoding("cl100k_base")
        except Exception as e:
            logger.warning(f"[LLMClient] Failed to initialize tiktoken: {e}")

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return config.llm_enabled()

    def chat_model(self, model: Optional[str] = None, temperature: float = 0.3) -> ChatOpenAI:
        if not self.enabled:
            raise LLMUnavailableError("LLM disabled or OPENAI_API_KEY not set")
        key = (model or self.model, temperature)
        if key not in self._chat_models:
            self._chat_models[key] = ChatOpenAI(
                model=key[0],
                temperature=temperature,
                max_retries=config.LLM_MAX_RETRIES
            )
        return self._chat_models[key]

    def embeddings(self) -> OpenAIEmbeddings:
        if not self.enabled:
            raise LLMUnavailableError("LLM disabled or OPENAI_API_KEY not set")
        if self._embeddings is None:
            self._embeddings = OpenAIEmbeddings(
                model=self.embedding_model,
                max_retries=config.LLM_MAX_RETRIES
            )
        return self._embeddings

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def invoke_text(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
        temperature: float = 0.3,
    ) -> str:
        """Run a chat completion and return the raw text."""
        llm = self.chat_model(model, temperature)
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        response = llm.invoke(messages)
        return str(response.content)

    def invoke_json(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
        temperature: float = 0.3,
    ) -> Any:
        """Run a chat completion that must answer with JSON."""
        return parse_json_content(self.invoke_text(system_prompt, user_prompt, model, temperature))

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """Embedding vectors for several texts (first 8000 chars of each) in one request."""
        return self.embeddings().embed_documents([text[:8000] for text in texts])

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def truncate(self, text: str, max_tokens: int) -> str:
        """Cut text down to at most max_tokens tokens."""
        if not text:
            return ""
        if self.encoding:
            tokens = self.encoding.encode(text)
            if len(tokens) <= max_tokens:
                return text
            return self.encoding.decode(tokens[:max_tokens])
        return text[: max_tokens * 4]


# Singleton
_llm_client = None


def get_llm_client() -> LLMClient:
    """Get or create LLM client singleton."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
