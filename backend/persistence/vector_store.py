"""
ChromaDB vector store for post embeddings.

Each entry is one feedback post:
- id: post id
- document: the text that was embedded (title + description)
- embedding: vector from the configured embedding model
- metadata: project_id
"""
import logging
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import chromadb
from chromadb.config import Settings

logger = logging.getLogger(__name__)


def _get_chroma_path() -> Path:
    """Resolve the on-disk ChromaDB directory."""
    path = os.getenv("CHROMA_PATH")
    if path:
        return Path(path)
    return Path(__file__).parent.parent.parent / "data" / "chromadb"


COLLECTION_NAME = "post_embeddings"


class PostVectorStore:
    """
    Post embeddings keyed by post id, filtered by project at query time.

    The collection uses cosine distance, so similarity is 1 - distance.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else _get_chroma_path()
        self.path.mkdir(parents=True, exist_ok=True)

        self.client = chromadb.PersistentClient(
            path=str(self.path),
            settings=Settings(
                anonymized_telemetry=False,
                allow_reset=True
            )
        )
        self.collection = self.client.get_or_create_collection(
            name=COLLECTION_NAME,
            metadata={"description": "Feedback post embeddings", "hnsw:space": "cosine"}
        )

    def index_posts(
        self,
        posts: List[Tuple[str, str, str]],
        embed_fn: Callable[[List[str]], List[List[float]]]
    ) -> int:
        """
        Make sure every (post_id, project_id, text) triple has a current embedding.

        Posts already stored with the same text are skipped; new or edited
        posts are embedded in one call and upserted. Returns how many were embedded.
        """
        if not posts:
            return 0
        existing = self.collection.get(ids=[p[0] for p in posts], include=["documents"])
        stored: Dict[str, str] = dict(zip(existing["ids"], existing.get("documents") or []))

        stale = [p for p in posts if stored.get(p[0]) != p[2]]
        if not stale:
            return 0

        vectors = embed_fn([text for _, _, text in stale])
        self.collection.upsert(
            ids=[post_id for post_id, _, _ in stale],
            documents=[text for _, _, text in stale],
            embeddings=vectors,
            metadatas=[{"project_id": project_id} for _, project_id, _ in stale]
        )
        logger.info(f"[VectorStore] Embedded {len(stale)} posts")
        return len(stale)

    def similar_posts(
        self,
        post_id: str,
        project_id: str,
        n_results: int = 10,
        exclude_ids: Optional[List[str]] = None
    ) -> List[Tuple[str, float]]:
        """
        Nearest posts to post_id within the same project.

        Returns (post_id, similarity) pairs, most similar first. The post
        itself and anything in exclude_ids are left out.
        """
        stored = self.collection.get(ids=[post_id], include=["embeddings"])
        embeddings = stored.get("embeddings")
        if embeddings is None or len(embeddings) == 0:
            return []

        excluded = set(exclude_ids or [])
        excluded.add(post_id)
        total = self.collection.count()
        if total == 0:
            return []

        results = self.collection.query(
            query_embeddings=[[float(x) for x in embeddings[0]]],
            n_results=min(total, n_results + len(excluded)),
            where={"project_id": project_id}
        )

        matches = []
        ids = results["ids"][0] if results.get("ids") else []
        distances = results["distances"][0] if results.get("distances") else []
        for other_id, distance in zip(ids, distances):
            if other_id in excluded:
                continue
            matches.append((other_id, max(0.0, min(1.0, 1.0 - float(distance)))))
        return matches[:n_results]


# Singleton
_vector_store = None
_vector_store_path: Optional[Path] = None


def get_vector_store() -> PostVectorStore:
    """Get or create vector store singleton."""
    global _vector_store
    if _vector_store is None:
        _vector_store = PostVectorStore(_vector_store_path)
    return _vector_store


def reset_vector_store(path: Optional[str] = None):
    """Point the store at another directory (used by tests)."""
    global _vector_store, _vector_store_path
    _vector_store = None
    _vector_store_path = Path(path) if path else None
