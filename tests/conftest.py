"""Shared fixtures: a fixed clock and seeded SQLite stores."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from options_intel.data.external_store import (
    NewsArticleRow,
    SQLiteMarketIntelStore,
    TickerSentimentRow,
    TranscriptRow,
)
from options_intel.data.pattern_store import PatternStore
from options_intel.models.patterns import TradeOutcome
from options_intel.models.research import WebResearchFetch, WebSearchResult
from options_intel.timeutil import to_db

NOW = datetime(2025, 10, 20, 12, 0, tzinfo=UTC)

QUARTERS = [
    ("Q3", 2025),
    ("Q2", 2025),
    ("Q1", 2025),
    ("Q4", 2024),
    ("Q3", 2024),
]


def seed_transcripts(
    store: SQLiteMarketIntelStore,
    symbol: str,
    count: int,
    latest_age_days: int,
) -> None:
    rows = []
    for i, (quarter, year) in enumerate(QUARTERS[:count]):
        ending = (NOW - timedelta(days=latest_age_days + 91 * i)).date()
        rows.append(
            TranscriptRow(
                symbol=symbol,
                quarter=quarter,
                fiscal_year=year,
                fiscal_date_ending=ending.isoformat(),
                transcript_text=f"{symbol} {quarter} {year} earnings call. " * 40,
                created_at=to_db(NOW - timedelta(days=latest_age_days)),
            )
        )
    store.insert_transcripts(rows)


def seed_news(
    store: SQLiteMarketIntelStore,
    symbol: str,
    scores: list[float],
    age_days: int = 12,
) -> None:
    articles = []
    sentiment = []
    for i, score in enumerate(scores):
        published = NOW - timedelta(days=age_days, hours=i)
        article_id = f"{symbol}-news-{i}"
        articles.append(
            NewsArticleRow(
                id=article_id,
                title=f"{symbol} headline {i}",
                summary="summary",
                url=f"https://example.com/{symbol}/{i}",
                time_published=published.strftime("%Y%m%dT%H%M%S"),
                source="Reuters",
                overall_sentiment_score=0.0,
                topics=[{"topic": "Earnings"}, {"topic": "Technology"}],
                created_at=to_db(published),
            )
        )
        sentiment.append(
            TickerSentimentRow(
                article_id=article_id,
                ticker=symbol,
                relevance_score=1.0 - i * 0.01,
                ticker_sentiment_score=score,
                ticker_sentiment_label="Bullish" if score > 0.15 else "Neutral",
                created_at=to_db(published),
            )
        )
    store.insert_articles(articles)
    store.insert_ticker_sentiment(sentiment)


def make_trade(
    trade_id: str,
    symbol: str = "AMD",
    pnl: float = 100.0,
    strategy_type: str = "put_credit_spread",
    dte: int = 30,
    delta: float = 0.20,
) -> TradeOutcome:
    return TradeOutcome(
        trade_id=trade_id,
        symbol=symbol,
        strategy_type=strategy_type,
        dte=dte,
        delta=delta,
        realized_pnl=pnl,
        realized_pnl_percent=pnl / 10,
        entry_date="2025-09-01",
        exit_date="2025-09-15",
    )


class FakeResearcher:
    """Stands in for the Tavily-backed researcher."""

    def __init__(self, results: int = 3, credits: int = 2) -> None:
        self.results = results
        self.credits = credits
        self.calls: list[tuple[str, str]] = []

    async def fetch(self, symbol: str, context: str) -> WebResearchFetch:
        self.calls.append((symbol, context))
        return WebResearchFetch(
            symbol=symbol,
            context=context,
            results=[
                WebSearchResult(
                    title=f"{symbol} story {i}",
                    url=f"https://www.reuters.com/{symbol.lower()}/{i}",
                    snippet="guidance raised",
                    score=0.9,
                )
                for i in range(self.results)
            ],
            credits_used=self.credits,
        )


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def external_store(tmp_path: Path):
    store = SQLiteMarketIntelStore(tmp_path / "market.db")
    yield store
    store.close()


@pytest.fixture
def pattern_store(tmp_path: Path):
    store = PatternStore(tmp_path / "patterns.db")
    yield store
    store.close()
