"""Earnings transcripts, news and sentiment from the market-intelligence store."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

import numpy as np

from options_intel.data.external_store import (
    MarketIntelStore,
    NewsArticleRow,
    TickerSentimentRow,
    TranscriptRow,
)
from options_intel.models.common import Confidence
from options_intel.models.intelligence import (
    AggregateSentiment,
    EarningsIntelligence,
    IntelligenceOptions,
    IntelligenceReport,
    LatestQuarter,
    NewsArticle,
    NewsIntelligence,
    TranscriptSummary,
)
from options_intel.search.indexer import SearchIndex
from options_intel.timeutil import (
    NO_DATA_AGE_DAYS,
    parse_timestamp,
    utcnow,
    whole_days_since,
)

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 500
SUMMARY_CHARS = 300


def _clip(text: str, limit: int) -> str:
    return text[:limit] + "..."


def _unique_topics(topics: list[dict]) -> list[str]:
    seen: list[str] = []
    for t in topics:
        name = t.get("topic") if isinstance(t, dict) else t
        if name and name not in seen:
            seen.append(name)
    return seen


def score_confidence(
    earnings: EarningsIntelligence | None,
    news: NewsIntelligence | None,
    data_age_days: int,
) -> Confidence:
    """Points for earnings depth, news depth and recency."""
    score = 0

    quarters = len(earnings.transcripts) if earnings else 0
    if quarters >= 3:
        score += 40
    elif quarters >= 1:
        score += 20

    articles = len(news.articles) if news else 0
    if articles >= 10:
        score += 40
    elif articles >= 5:
        score += 20

    if data_age_days <= 7:
        score += 20
    elif data_age_days <= 30:
        score += 10

    return Confidence.from_score(score)


def compute_data_age(
    earnings: EarningsIntelligence | None,
    news: NewsIntelligence | None,
    now: datetime,
) -> int:
    """Whole days since the most recent earnings or news date."""
    candidates: list[datetime] = []
    if earnings and earnings.transcripts:
        ts = parse_timestamp(earnings.transcripts[0].fiscal_date_ending)
        if ts is not None:
            candidates.append(ts)
    if news and news.articles:
        ts = parse_timestamp(news.articles[0].time_published)
        if ts is not None:
            candidates.append(ts)
    if not candidates:
        return NO_DATA_AGE_DAYS
    return whole_days_since(max(candidates), now)


class MarketIntelligenceService:
    """Builds an :class:`IntelligenceReport` for a symbol.

    Earnings and news are fetched concurrently and fail independently: an
    error in one sub-fetch is logged and that sub-report is left out.
    """

    def __init__(
        self,
        store: MarketIntelStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.clock = clock

    async def get_intelligence(
        self, symbol: str, options: IntelligenceOptions | None = None
    ) -> IntelligenceReport:
        opts = options or IntelligenceOptions()
        symbol = symbol.upper()
        logger.info("Fetching market intelligence for %s", symbol)

        earnings, news = await asyncio.gather(
            self._earnings(symbol, opts.max_earnings_quarters)
            if opts.include_earnings
            else _absent(),
            self._news(symbol, opts.max_news_articles, opts.news_max_age_days)
            if opts.include_news
            else _absent(),
        )

        now = self.clock()
        age = compute_data_age(earnings, news, now)
        sources: set[str] = set()
        if earnings and earnings.transcripts:
            sources.add("earnings_transcripts")
        if news and news.articles:
            sources.add("market_news")

        return IntelligenceReport(
            symbol=symbol,
            earnings=earnings,
            news=news,
            confidence=score_confidence(earnings, news, age),
            data_age_days=age,
            sources_available=frozenset(sources),
        )

    async def _earnings(
        self, symbol: str, max_quarters: int
    ) -> EarningsIntelligence | None:
        try:
            rows = await asyncio.to_thread(
                self.store.fetch_transcripts, symbol, max_quarters
            )
        except Exception:
            logger.exception("Error fetching earnings transcripts for %s", symbol)
            return None

        if not rows:
            logger.debug("No earnings transcripts found for %s", symbol)
            return None

        logger.debug("Found %d earnings transcripts for %s", len(rows), symbol)
        return build_earnings(symbol, rows)

    async def _news(
        self, symbol: str, max_articles: int, max_age_days: int
    ) -> NewsIntelligence | None:
        since = self.clock() - timedelta(days=max_age_days)
        try:
            sentiment = await asyncio.to_thread(
                self.store.fetch_ticker_sentiment, symbol, since, max_articles
            )
            if not sentiment:
                logger.debug(
                    "No news found for %s in last %d days", symbol, max_age_days
                )
                return None
            articles = await asyncio.to_thread(
                self.store.fetch_articles, [s.article_id for s in sentiment]
            )
        except Exception:
            logger.exception("Error fetching news for %s", symbol)
            return None

        if not articles:
            logger.debug("No articles found for %s", symbol)
            return None

        return build_news(symbol, sentiment, articles)

    # --- Similarity search ---

    def search_similar_transcripts(
        self,
        query_embedding: np.ndarray,
        symbol: str | None = None,
        match_threshold: float = 0.75,
        match_count: int = 5,
    ) -> list[TranscriptSummary]:
        try:
            rows = self.store.transcript_embeddings(symbol.upper() if symbol else None)
        except Exception:
            logger.exception("Error searching transcripts")
            return []

        index: SearchIndex[TranscriptRow] = SearchIndex()
        index.build([(row, emb, row.symbol) for row, emb in rows])
        hits = index.search(
            query_embedding, top_k=match_count, min_score=match_threshold
        )
        return [
            TranscriptSummary(
                quarter=row.quarter,
                fiscal_year=row.fiscal_year,
                fiscal_date_ending=row.fiscal_date_ending,
                excerpt=_clip(row.transcript_text, EXCERPT_CHARS),
                full_text=row.transcript_text,
                similarity=score,
            )
            for row, score in hits
        ]

    def search_similar_news(
        self,
        query_embedding: np.ndarray,
        symbol: str | None = None,
        match_threshold: float = 0.75,
        match_count: int = 10,
        max_age_days: int = 30,
    ) -> list[NewsArticle]:
        since = self.clock() - timedelta(days=max_age_days)
        try:
            rows = self.store.news_embeddings(symbol.upper() if symbol else None, since)
        except Exception:
            logger.exception("Error searching news")
            return []

        index: SearchIndex[NewsArticleRow] = SearchIndex()
        index.build([(row, emb, row.id) for row, emb in rows])
        hits = index.search(
            query_embedding, top_k=match_count, min_score=match_threshold
        )
        return [
            NewsArticle(
                title=row.title,
                summary=row.summary,
                url=row.url,
                time_published=row.time_published,
                source=row.source,
                sentiment_score=_bounded(row.overall_sentiment_score),
                sentiment_label=row.overall_sentiment_label,
                topics=_unique_topics(row.topics),
                similarity=score,
            )
            for row, score in hits
        ]

    def health_check(self) -> dict:
        return self.store.health_check()


async def _absent() -> None:
    return None


def _bounded(score: float) -> float:
    return max(-1.0, min(1.0, score))


def build_earnings(symbol: str, rows: list[TranscriptRow]) -> EarningsIntelligence:
    transcripts = [
        TranscriptSummary(
            quarter=r.quarter,
            fiscal_year=r.fiscal_year,
            fiscal_date_ending=r.fiscal_date_ending,
            excerpt=_clip(r.transcript_text, EXCERPT_CHARS),
            full_text=r.transcript_text,
        )
        for r in rows
    ]
    latest = rows[0]
    return EarningsIntelligence(
        symbol=symbol,
        transcripts=transcripts,
        latest_quarter=LatestQuarter(
            quarter=latest.quarter,
            fiscal_year=latest.fiscal_year,
            summary=_clip(latest.transcript_text, SUMMARY_CHARS),
        ),
    )


def build_news(
    symbol: str,
    sentiment: list[TickerSentimentRow],
    articles: list[NewsArticleRow],
) -> NewsIntelligence | None:
    """Join articles with their ticker sentiment rows; articles keep store order."""
    by_article = {s.article_id: s for s in sentiment}
    items: list[NewsArticle] = []
    for a in articles:
        s = by_article.get(a.id)
        if s is None:
            continue
        score = (
            s.ticker_sentiment_score
            if s.ticker_sentiment_score is not None
            else a.overall_sentiment_score
        )
        items.append(
            NewsArticle(
                title=a.title,
                summary=a.summary,
                url=a.url,
                time_published=a.time_published,
                source=a.source,
                sentiment_score=_bounded(score),
                sentiment_label=s.ticker_sentiment_label or a.overall_sentiment_label,
                relevance_score=s.relevance_score,
                topics=_unique_topics(a.topics),
            )
        )
    if not items:
        return None
    return NewsIntelligence(
        symbol=symbol,
        articles=items,
        aggregate_sentiment=AggregateSentiment.from_articles(items),
    )
