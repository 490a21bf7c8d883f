"""Data models for external market intelligence and its cache."""

from pydantic import BaseModel, ConfigDict, Field

from options_intel.models.common import Confidence, SentimentLabel, SourceType
from options_intel.timeutil import NO_DATA_AGE_DAYS


class TranscriptSummary(BaseModel):
    quarter: str
    fiscal_year: int
    fiscal_date_ending: str
    excerpt: str = ""
    full_text: str = ""
    similarity: float | None = None


class LatestQuarter(BaseModel):
    quarter: str
    fiscal_year: int
    summary: str = ""


class EarningsIntelligence(BaseModel):
    symbol: str
    transcripts: list[TranscriptSummary] = []
    latest_quarter: LatestQuarter | None = None


class NewsArticle(BaseModel):
    title: str
    summary: str = ""
    url: str = ""
    time_published: str = ""
    source: str = ""
    sentiment_score: float = Field(default=0.0, ge=-1.0, le=1.0)
    sentiment_label: str = ""
    relevance_score: float = 0.0
    topics: list[str] = []
    similarity: float | None = None


class AggregateSentiment(BaseModel):
    average_score: float = 0.0
    label: SentimentLabel = SentimentLabel.NEUTRAL
    article_count: int = 0

    @classmethod
    def from_articles(cls, articles: list[NewsArticle]) -> "AggregateSentiment":
        if not articles:
            return cls()
        avg = sum(a.sentiment_score for a in articles) / len(articles)
        return cls(
            average_score=avg,
            label=SentimentLabel.from_score(avg),
            article_count=len(articles),
        )


class NewsIntelligence(BaseModel):
    symbol: str
    articles: list[NewsArticle] = []
    aggregate_sentiment: AggregateSentiment = Field(default_factory=AggregateSentiment)


class IntelligenceReport(BaseModel):
    """Per-symbol snapshot; rebuilt on every fetch, never mutated."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    earnings: EarningsIntelligence | None = None
    news: NewsIntelligence | None = None
    confidence: Confidence = Confidence.LOW
    data_age_days: int = NO_DATA_AGE_DAYS
    sources_available: frozenset[str] = frozenset()

    @property
    def has_data(self) -> bool:
        return bool(self.sources_available)


class IntelligenceOptions(BaseModel):
    include_earnings: bool = True
    include_news: bool = True
    max_earnings_quarters: int = Field(default=4, ge=1)
    max_news_articles: int = Field(default=20, ge=1)
    news_max_age_days: int = Field(default=30, ge=1)


class CacheEntry(BaseModel):
    id: int | None = None
    symbol: str
    source_type: SourceType
    data: EarningsIntelligence | NewsIntelligence
    data_date: str | None = None
    cached_at: str
    expires_at: str
    last_accessed_at: str | None = None
    access_count: int = 1


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    avg_fetch_time_ms: float = 0.0
    total_entries: int = 0
    expired_entries: int = 0
