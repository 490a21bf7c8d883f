"""Models for paid web research and the query router."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebSearchResult(BaseModel):
    title: str = ""
    url: str
    snippet: str = ""
    published_at: str | None = None
    score: float | None = None
    raw_content: str | None = None


class WebSearchResponse(BaseModel):
    query: str
    results: list[WebSearchResult] = []
    credits_used: int = 0
    cached: bool = False
    error: str | None = None


class WebResearchFetch(BaseModel):
    """Outcome of one context-driven research pass for a symbol."""

    symbol: str
    context: str
    results: list[WebSearchResult] = []
    credits_used: int = 0
    fetched_at: str | None = None
    error: str | None = None

    @property
    def results_count(self) -> int:
        return len(self.results)


class RouteSource(StrEnum):
    RAG = "rag"
    TAVILY = "tavily"
    HYBRID = "hybrid"


class RouterOptions(BaseModel):
    max_rag_age: float = Field(default=7, gt=0)
    rag_relevance_threshold: float = 0.75
    force_refresh: bool = False
    enable_hybrid: bool = True


class ResearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: RouteSource
    cached: bool
    freshness_score: float
    relevance_score: float
    data: dict[str, Any] | None = None
    credits_used: int = 0
    rag_results_count: int = 0
    tavily_results_count: int = 0


class RouterStats(BaseModel):
    """Immutable snapshot of the router counters."""

    model_config = ConfigDict(frozen=True)

    total_queries: int = 0
    rag_hits: int = 0
    tavily_fetches: int = 0
    hybrid_queries: int = 0
    total_credits_used: int = 0
    cache_hit_rate: float = 0.0
    avg_credits_per_query: float = 0.0
