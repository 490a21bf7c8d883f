"""Models for the multi-source orchestrator."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from options_intel.models.common import Confidence
from options_intel.models.intelligence import EarningsIntelligence, NewsIntelligence
from options_intel.models.patterns import SimilarTrade
from options_intel.models.research import WebSearchResult
from options_intel.timeutil import NO_DATA_AGE_DAYS

SOURCE_ORDER = ("internal_rag", "external_intelligence", "tavily")


class OverallSentiment(StrEnum):
    BULLISH = "bullish"
    NEUTRAL = "neutral"
    BEARISH = "bearish"
    UNKNOWN = "unknown"


class RecommendationStrength(StrEnum):
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"


class MultiSourceQuery(BaseModel):
    symbol: str
    context: str = "general"
    include_internal_rag: bool = True
    include_external_intelligence: bool = True
    include_tavily: bool = False
    max_news_articles: int = Field(default=20, ge=1)
    max_earnings_quarters: int = Field(default=4, ge=1)
    news_max_age_days: int = Field(default=30, ge=1)


class InternalRagBlock(BaseModel):
    has_data: bool = False
    similar_trades_count: int = 0
    win_rate: float | None = None
    avg_roi: float | None = None
    insights: list[SimilarTrade] = []


class ExternalIntelBlock(BaseModel):
    has_data: bool = False
    earnings: EarningsIntelligence | None = None
    news: NewsIntelligence | None = None
    confidence: Confidence = Confidence.LOW
    data_age_days: int = NO_DATA_AGE_DAYS


class WebResearchBlock(BaseModel):
    has_data: bool = False
    results_count: int = 0
    results: list[WebSearchResult] = []
    source: str | None = None


class AggregateInsights(BaseModel):
    overall_sentiment: OverallSentiment = OverallSentiment.UNKNOWN
    sentiment_score: float = 0.0
    data_quality_score: int = 0
    recommendation_strength: RecommendationStrength = RecommendationStrength.WEAK


class MultiSourceResult(BaseModel):
    """Unified per-symbol report; built fresh per call and frozen."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    confidence: Confidence
    data_sources_used: list[str] = []
    total_fetch_time_ms: int = 0
    credits_used: int = 0
    internal_rag: InternalRagBlock = Field(default_factory=InternalRagBlock)
    external_intelligence: ExternalIntelBlock = Field(
        default_factory=ExternalIntelBlock
    )
    tavily: WebResearchBlock = Field(default_factory=WebResearchBlock)
    aggregate: AggregateInsights = Field(default_factory=AggregateInsights)

    def comparable(self) -> dict[str, Any]:
        """Content view without timing, for equivalence checks."""
        return self.model_dump(exclude={"total_fetch_time_ms"})
