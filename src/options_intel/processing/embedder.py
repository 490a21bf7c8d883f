import hashlib
import logging
import re
from abc import ABC, abstractmethod

import httpx
import numpy as np

from options_intel.config import EmbeddingConfig

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9_.%$-]+")


class BaseEmbedder(ABC):
    """Abstract base class for embedding providers."""

    model_name: str

    @abstractmethod
    def embed(self, text: str) -> bytes:
        """Embed a single text. Returns numpy array as bytes."""
        ...

    def embed_batch(self, texts: list[str]) -> tuple[list[bytes], float]:
        """Embed a batch of texts. Returns (list of embedding bytes, cost in USD)."""
        return [self.embed(t) for t in texts], 0.0

    def close(self) -> None:
        """Release any client held by the provider."""

    @staticmethod
    def to_bytes(arr: np.ndarray) -> bytes:
        return arr.astype(np.float32).tobytes()

    @staticmethod
    def from_bytes(data: bytes) -> np.ndarray:
        return np.frombuffer(data, dtype=np.float32)


class HashingEmbedder(BaseEmbedder):
    """Offline feature-hashing embeddings over line-level and word tokens.

    Each "Key: value" line contributes its whole text as one feature so that
    contexts sharing exact field values score high under cosine similarity.
    """

    def __init__(self, dim: int = 256) -> None:
        self.dim = dim
        self.model_name = f"hashing-{dim}"

    def _bucket(self, token: str) -> tuple[int, float]:
        digest = hashlib.md5(token.encode("utf-8")).digest()
        idx = int.from_bytes(digest[:4], "little") % self.dim
        sign = 1.0 if digest[4] & 1 else -1.0
        return idx, sign

    def embed(self, text: str) -> bytes:
        vec = np.zeros(self.dim, dtype=np.float32)
        for line in text.lower().splitlines():
            line = line.strip()
            if not line:
                continue
            idx, sign = self._bucket(f"line:{line}")
            vec[idx] += 2.0 * sign
            for tok in _TOKEN_RE.findall(line):
                idx, sign = self._bucket(tok)
                vec[idx] += sign
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec = vec / norm
        return self.to_bytes(vec)


class LocalEmbedder(BaseEmbedder):
    """Local embeddings using sentence-transformers."""

    def __init__(self, model_name: str) -> None:
        self.model_name = model_name
        self._model = None

    @property
    def model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading local model: %s", self.model_name)
            self._model = SentenceTransformer(self.model_name, trust_remote_code=True)
        return self._model

    def embed(self, text: str) -> bytes:
        arr = self.model.encode([text], normalize_embeddings=True)[0]
        return self.to_bytes(arr)

    def embed_batch(self, texts: list[str]) -> tuple[list[bytes], float]:
        if not texts:
            return [], 0.0
        arrs = self.model.encode(texts, normalize_embeddings=True, batch_size=32)
        return [self.to_bytes(a) for a in arrs], 0.0  # local = free


class OllamaEmbedder(BaseEmbedder):
    """Embeddings served by a local Ollama instance."""

    def __init__(self, model_name: str, base_url: str, timeout: float = 30.0) -> None:
        self.model_name = model_name
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(timeout=timeout)

    def embed(self, text: str) -> bytes:
        resp = self._client.post(
            f"{self.base_url}/api/embeddings",
            json={"model": self.model_name, "prompt": text},
        )
        resp.raise_for_status()
        arr = np.array(resp.json()["embedding"], dtype=np.float32)
        norm = np.linalg.norm(arr)
        if norm > 0:
            arr = arr / norm
        return self.to_bytes(arr)

    def close(self) -> None:
        self._client.close()


def get_embedder(config: EmbeddingConfig) -> BaseEmbedder:
    """Factory function to create the appropriate embedder."""
    if config.provider == "local":
        return LocalEmbedder(config.model_local)
    if config.provider == "ollama":
        return OllamaEmbedder(config.model_ollama, config.ollama_url)
    return HashingEmbedder(config.hashing_dim)
