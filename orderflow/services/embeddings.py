from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Protocol

import numpy as np
from openai import OpenAI

from orderflow.core.config import (
    EMBEDDINGS_ENABLED,
    EXTRACTION_TIMEOUT_SECONDS,
    OPENAI_API_KEY,
    OPENAI_EMBEDDING_DIMENSIONS,
    OPENAI_EMBEDDING_MODEL,
)
from orderflow.services.catalog import PublishedMenu

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarItem:
    item_id: int
    score: float


class EmbeddingProvider(Protocol):
    def embed(self, text: str) -> list[float]:
        ...

    def search_similar(self, tenant_id: int, vector: list[float], top_k: int = 10) -> list[SimilarItem]:
        ...

    def ensure_indexed(self, menu: PublishedMenu) -> None:
        ...


def item_embedding_text(item) -> str:
    parts = [item.name]
    if item.category_name:
        parts.append(item.category_name)
    if item.description:
        parts.append(item.description)
    return " - ".join(parts)


class InMemoryVectorIndex:
    """Per-tenant matrix of L2-normalized item vectors, one row per menu item."""

    def __init__(self) -> None:
        self._matrices: dict[int, tuple[np.ndarray, np.ndarray]] = {}
        self._lock = Lock()

    def replace(self, tenant_id: int, vectors: dict[int, list[float]]) -> None:
        ids = np.fromiter(vectors.keys(), dtype=np.int64, count=len(vectors))
        if vectors:
            matrix = np.asarray(list(vectors.values()), dtype=np.float32)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            matrix = matrix / norms
        else:
            matrix = np.empty((0, 0), dtype=np.float32)
        with self._lock:
            self._matrices[tenant_id] = (ids, matrix)

    def item_ids(self, tenant_id: int) -> set[int]:
        with self._lock:
            ids, _ = self._matrices.get(tenant_id, (np.empty(0, dtype=np.int64), None))
        return {int(item_id) for item_id in ids}

    def search(self, tenant_id: int, vector: list[float], top_k: int) -> list[SimilarItem]:
        with self._lock:
            entry = self._matrices.get(tenant_id)
        if entry is None or entry[0].size == 0 or top_k <= 0:
            return []
        ids, matrix = entry
        query = np.asarray(vector, dtype=np.float32)
        if query.shape != (matrix.shape[1],):
            return []
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []
        scores = matrix @ (query / query_norm)
        best = np.argsort(-scores, kind="stable")[:top_k]
        return [SimilarItem(item_id=int(ids[index]), score=float(scores[index])) for index in best]


class OpenAIEmbeddingProvider:
    name = "openai"

    def __init__(self, client: OpenAI | None = None, index: InMemoryVectorIndex | None = None) -> None:
        self._client = client or OpenAI(api_key=OPENAI_API_KEY, timeout=EXTRACTION_TIMEOUT_SECONDS)
        self._index = index or InMemoryVectorIndex()

    def embed(self, text: str) -> list[float]:
        response = self._client.embeddings.create(
            model=OPENAI_EMBEDDING_MODEL,
            input=text,
            dimensions=OPENAI_EMBEDDING_DIMENSIONS,
        )
        return list(response.data[0].embedding)

    def index_menu(self, menu: PublishedMenu) -> None:
        items = menu.items()
        if not items:
            self._index.replace(menu.tenant_id, {})
            return
        response = self._client.embeddings.create(
            model=OPENAI_EMBEDDING_MODEL,
            input=[item_embedding_text(item) for item in items],
            dimensions=OPENAI_EMBEDDING_DIMENSIONS,
        )
        vectors = {item.id: list(entry.embedding) for item, entry in zip(items, response.data)}
        self._index.replace(menu.tenant_id, vectors)
        logger.info("Menu embeddings indexed: tenant=%s items=%s", menu.tenant_id, len(vectors))

    def search_similar(self, tenant_id: int, vector: list[float], top_k: int = 10) -> list[SimilarItem]:
        return self._index.search(tenant_id, vector, top_k)

    def ensure_indexed(self, menu: PublishedMenu) -> None:
        # reindexa quando o cardapio publicado muda
        if self._index.item_ids(menu.tenant_id) != {item.id for item in menu.items()}:
            self.index_menu(menu)


_provider: OpenAIEmbeddingProvider | None = None
_provider_lock = Lock()


def get_embedding_provider() -> OpenAIEmbeddingProvider | None:
    global _provider
    if not EMBEDDINGS_ENABLED or not OPENAI_API_KEY:
        return None
    with _provider_lock:
        if _provider is None:
            _provider = OpenAIEmbeddingProvider()
        return _provider
