import os

from pydantic import BaseModel, Field

DEFAULT_STRATEGY = "put_credit_spread"

SOURCE_PRIORITY: dict[str, list[str]] = {
    "earnings": ["external_intelligence", "tavily", "internal_rag"],
    "news": ["external_intelligence", "tavily"],
    "historical": ["internal_rag", "external_intelligence"],
    "general": ["internal_rag", "external_intelligence", "tavily"],
}


class EmbeddingConfig(BaseModel):
    provider: str = "hashing"  # "hashing", "local" or "ollama"
    hashing_dim: int = 256
    model_local: str = "nomic-ai/nomic-embed-text-v2-moe"
    model_ollama: str = "qwen3-embedding"
    ollama_url: str = "http://localhost:11434"


class IntelConfig(BaseModel):
    cache_db_path: str = "data/intelligence_cache.db"
    pattern_db_path: str = "data/patterns.db"
    external_db_path: str = "data/market_intelligence.db"

    tavily_api_key: str = ""
    tavily_rpm: int = 100
    tavily_timeout: float = 30.0

    earnings_ttl_days: int = 90
    news_ttl_days: int = 7

    cache_timeout_s: float = 10.0
    internal_rag_timeout_s: float = 10.0
    web_research_timeout_s: float = 45.0

    default_dte: int = 30
    default_delta: float = 0.20

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)

    @classmethod
    def from_env(cls) -> "IntelConfig":
        """Build a config from environment variables; unset ones keep defaults."""
        overrides: dict = {}
        env_map = {
            "INTEL_CACHE_DB": "cache_db_path",
            "INTEL_PATTERN_DB": "pattern_db_path",
            "INTEL_EXTERNAL_DB": "external_db_path",
            "TAVILY_API_KEY": "tavily_api_key",
        }
        for var, field in env_map.items():
            value = os.environ.get(var)
            if value:
                overrides[field] = value

        rpm = os.environ.get("TAVILY_RPM")
        if rpm:
            overrides["tavily_rpm"] = int(rpm)

        embedding = EmbeddingConfig()
        provider = os.environ.get("INTEL_EMBEDDING_PROVIDER")
        if provider:
            embedding.provider = provider
        ollama_url = os.environ.get("OLLAMA_URL")
        if ollama_url:
            embedding.ollama_url = ollama_url
        overrides["embedding"] = embedding

        return cls(**overrides)
