import httpx
import numpy as np

from options_intel.config import EmbeddingConfig
from options_intel.processing.embedder import (
    BaseEmbedder,
    HashingEmbedder,
    LocalEmbedder,
    OllamaEmbedder,
    get_embedder,
)


def _cosine(a: bytes, b: bytes) -> float:
    va = BaseEmbedder.from_bytes(a)
    vb = BaseEmbedder.from_bytes(b)
    return float(va @ vb / (np.linalg.norm(va) * np.linalg.norm(vb)))


class TestBaseEmbedderHelpers:
    def test_to_and_from_bytes_roundtrip(self) -> None:
        arr = np.array([0.1, 0.2, 0.3, 0.4], dtype=np.float32)
        data = BaseEmbedder.to_bytes(arr)
        restored = BaseEmbedder.from_bytes(data)
        np.testing.assert_array_almost_equal(arr, restored)

    def test_to_bytes_dtype_conversion(self) -> None:
        arr = np.array([1.0, 2.0, 3.0], dtype=np.float64)
        restored = BaseEmbedder.from_bytes(BaseEmbedder.to_bytes(arr))
        assert restored.dtype == np.float32


class TestHashingEmbedder:
    def test_dimension_and_norm(self) -> None:
        vec = BaseEmbedder.from_bytes(HashingEmbedder(dim=64).embed("Symbol: AMD"))
        assert vec.shape == (64,)
        assert abs(float(np.linalg.norm(vec)) - 1.0) < 1e-5

    def test_deterministic(self) -> None:
        embedder = HashingEmbedder()
        assert embedder.embed("Strategy: put_credit_spread") == embedder.embed(
            "Strategy: put_credit_spread"
        )

    def test_shared_fields_score_higher(self) -> None:
        embedder = HashingEmbedder()
        base = embedder.embed("Symbol: AMD\nStrategy: put_credit_spread\nDTE: 30")
        near = embedder.embed("Symbol: AMD\nStrategy: put_credit_spread\nDTE: 45")
        far = embedder.embed("Symbol: TSLA\nStrategy: iron_condor\nDTE: 7")
        assert _cosine(base, near) > _cosine(base, far)

    def test_empty_text(self) -> None:
        vec = BaseEmbedder.from_bytes(HashingEmbedder(dim=16).embed(""))
        assert not vec.any()


class TestOllamaEmbedder:
    def test_normalizes_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"embedding": [3.0, 4.0]})

        embedder = OllamaEmbedder("qwen3-embedding", "http://localhost:11434/")
        embedder._client.close()
        embedder._client = httpx.Client(transport=httpx.MockTransport(handler))
        vec = BaseEmbedder.from_bytes(embedder.embed("AMD"))
        embedder.close()
        np.testing.assert_array_almost_equal(vec, [0.6, 0.8])


class TestGetEmbedder:
    def test_default_is_hashing(self) -> None:
        embedder = get_embedder(EmbeddingConfig(hashing_dim=32))
        assert isinstance(embedder, HashingEmbedder)
        assert embedder.model_name == "hashing-32"

    def test_ollama(self) -> None:
        embedder = get_embedder(EmbeddingConfig(provider="ollama"))
        assert isinstance(embedder, OllamaEmbedder)
        assert embedder.base_url == "http://localhost:11434"
        embedder.close()

    def test_local_model_loaded_lazily(self) -> None:
        embedder = get_embedder(EmbeddingConfig(provider="local", model_local="m"))
        assert isinstance(embedder, LocalEmbedder)
        assert embedder._model is None
        assert embedder.embed_batch([]) == ([], 0.0)
