import logging
from collections.abc import Hashable
from typing import Generic, TypeVar

import numpy as np

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SearchIndex(Generic[T]):
    """In-memory cosine-similarity index over embedded records."""

    def __init__(self) -> None:
        self.embeddings: np.ndarray | None = None  # (N, dim)
        self.items: list[T] = []
        self.keys: list[Hashable] = []

    @property
    def size(self) -> int:
        return len(self.items)

    @property
    def dim(self) -> int:
        if self.embeddings is not None:
            return self.embeddings.shape[1]
        return 0

    def build(self, rows: list[tuple[T, bytes, Hashable]]) -> None:
        """Load (item, embedding bytes, filter key) rows into memory."""
        self.items = []
        self.keys = []
        self.embeddings = None
        if not rows:
            logger.debug("No embedded rows to index")
            return

        emb_list: list[np.ndarray] = []
        for item, emb_bytes, key in rows:
            arr = np.frombuffer(emb_bytes, dtype=np.float32)
            if emb_list and arr.shape != emb_list[0].shape:
                logger.warning("Skipping embedding with mismatched dim %d", arr.size)
                continue
            self.items.append(item)
            self.keys.append(key)
            emb_list.append(arr)

        matrix = np.vstack(emb_list)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        self.embeddings = matrix / np.where(norms > 0, norms, 1.0)
        logger.debug("Built search index: %d rows, dim=%d", self.size, self.dim)

    def search(
        self,
        query_embedding: np.ndarray,
        top_k: int = 5,
        key_filter: set[Hashable] | None = None,
        min_score: float | None = None,
    ) -> list[tuple[T, float]]:
        """Cosine similarity search. Returns (item, score) pairs, best first."""
        if self.embeddings is None or self.size == 0:
            return []
        if query_embedding.shape[0] != self.dim:
            logger.warning(
                "Query dim %d does not match index dim %d",
                query_embedding.shape[0],
                self.dim,
            )
            return []

        query_norm = query_embedding / (np.linalg.norm(query_embedding) + 1e-10)
        scores = self.embeddings @ query_norm

        if key_filter is not None:
            mask = np.array([k in key_filter for k in self.keys], dtype=bool)
            scores = np.where(mask, scores, -np.inf)

        k = min(top_k, self.size)
        top_indices = np.argsort(scores)[::-1][:k]

        results = []
        for idx in top_indices:
            score = float(scores[idx])
            if score <= -np.inf:
                continue
            if min_score is not None and score < min_score:
                continue
            results.append((self.items[idx], score))

        return results
