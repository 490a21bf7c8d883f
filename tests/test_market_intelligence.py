import asyncio
from datetime import timedelta

import numpy as np
import pytest

from conftest import NOW, seed_news, seed_transcripts
from options_intel.data.external_store import (
    NewsArticleRow,
    TickerSentimentRow,
    TranscriptRow,
)
from options_intel.models.common import Confidence, SentimentLabel
from options_intel.models.intelligence import (
    EarningsIntelligence,
    IntelligenceOptions,
    NewsArticle,
    NewsIntelligence,
    TranscriptSummary,
)
from options_intel.processing.embedder import HashingEmbedder
from options_intel.services.market_intelligence import (
    MarketIntelligenceService,
    build_news,
    compute_data_age,
    score_confidence,
)
from options_intel.timeutil import NO_DATA_AGE_DAYS, to_db, whole_days_since


def _earnings(n: int) -> EarningsIntelligence:
    return EarningsIntelligence(
        symbol="X",
        transcripts=[
            TranscriptSummary(quarter="Q1", fiscal_year=2025, fiscal_date_ending="2025-03-31")
            for _ in range(n)
        ],
    )


def _news(n: int) -> NewsIntelligence:
    return NewsIntelligence(
        symbol="X", articles=[NewsArticle(title=f"t{i}") for i in range(n)]
    )


class TestScoreConfidence:
    def test_full_data_is_high(self) -> None:
        assert score_confidence(_earnings(4), _news(12), 10) == Confidence.HIGH

    def test_nothing_is_low(self) -> None:
        assert score_confidence(None, None, NO_DATA_AGE_DAYS) == Confidence.LOW

    def test_single_quarter_recent(self) -> None:
        # 20 + 0 + 20
        assert score_confidence(_earnings(1), None, 3) == Confidence.MEDIUM

    def test_news_only_stale(self) -> None:
        # 0 + 20 + 0
        assert score_confidence(None, _news(5), 60) == Confidence.LOW

    @pytest.mark.parametrize(
        ("quarters", "articles", "age"),
        [(0, 0, 100), (1, 0, 100), (3, 0, 100), (3, 5, 100), (3, 10, 100), (3, 10, 20), (3, 10, 5)],
    )
    def test_more_data_never_lowers_confidence(self, quarters, articles, age) -> None:
        order = [Confidence.LOW, Confidence.MEDIUM, Confidence.HIGH]
        base = score_confidence(_earnings(quarters), _news(articles), age)
        richer = score_confidence(_earnings(quarters + 1), _news(articles + 5), age)
        fresher = score_confidence(_earnings(quarters), _news(articles), max(0, age - 30))
        assert order.index(richer) >= order.index(base)
        assert order.index(fresher) >= order.index(base)


class TestComputeDataAge:
    def test_no_data(self) -> None:
        assert compute_data_age(None, None, NOW) == NO_DATA_AGE_DAYS

    def test_uses_most_recent_source(self) -> None:
        earnings = EarningsIntelligence(
            symbol="X",
            transcripts=[
                TranscriptSummary(
                    quarter="Q3", fiscal_year=2025, fiscal_date_ending="2025-09-30"
                )
            ],
        )
        news = NewsIntelligence(
            symbol="X",
            articles=[NewsArticle(title="a", time_published="20251018T090000")],
        )
        assert compute_data_age(earnings, news, NOW) == 2

    def test_unparseable_dates_ignored(self) -> None:
        news = NewsIntelligence(
            symbol="X", articles=[NewsArticle(title="a", time_published="soon")]
        )
        assert compute_data_age(None, news, NOW) == NO_DATA_AGE_DAYS

    def test_partial_days_round_down(self) -> None:
        assert whole_days_since(NOW - timedelta(days=2, hours=23), NOW) == 2
        assert whole_days_since(to_db(NOW - timedelta(hours=5)), NOW) == 0
        assert whole_days_since("not a date", NOW) == NO_DATA_AGE_DAYS


class TestBuildNews:
    def _article(self, article_id: str, overall: float = 0.3) -> NewsArticleRow:
        return NewsArticleRow(
            id=article_id,
            title=article_id,
            time_published="20251015T100000",
            overall_sentiment_score=overall,
            overall_sentiment_label="Somewhat-Bullish",
            topics=[{"topic": "Earnings"}, {"topic": "Earnings"}, {"topic": "AI"}],
        )

    def test_ticker_score_takes_precedence(self) -> None:
        sentiment = [
            TickerSentimentRow(
                article_id="a", ticker="AMD", ticker_sentiment_score=-0.5,
                ticker_sentiment_label="Bearish",
            )
        ]
        news = build_news("AMD", sentiment, [self._article("a")])
        assert news is not None
        assert news.articles[0].sentiment_score == -0.5
        assert news.articles[0].sentiment_label == "Bearish"
        assert news.articles[0].topics == ["Earnings", "AI"]
        assert news.aggregate_sentiment.label == SentimentLabel.BEARISH

    def test_missing_ticker_score_falls_back_to_article(self) -> None:
        sentiment = [TickerSentimentRow(article_id="a", ticker="AMD")]
        news = build_news("AMD", sentiment, [self._article("a", overall=0.3)])
        assert news is not None
        assert news.articles[0].sentiment_score == 0.3
        assert news.articles[0].sentiment_label == "Somewhat-Bullish"

    def test_articles_without_sentiment_dropped(self) -> None:
        sentiment = [TickerSentimentRow(article_id="a", ticker="AMD")]
        news = build_news("AMD", sentiment, [self._article("a"), self._article("b")])
        assert news is not None
        assert [a.title for a in news.articles] == ["a"]

    def test_no_joined_articles(self) -> None:
        sentiment = [TickerSentimentRow(article_id="a", ticker="AMD")]
        assert build_news("AMD", sentiment, [self._article("z")]) is None


class TestMarketIntelligenceService:
    def test_full_report(self, external_store, clock) -> None:
        seed_transcripts(external_store, "AMD", count=5, latest_age_days=10)
        seed_news(external_store, "AMD", [0.1, 0.4] * 6)
        service = MarketIntelligenceService(external_store, clock=clock)

        report = asyncio.run(service.get_intelligence("amd"))

        assert report.symbol == "AMD"
        assert report.earnings is not None
        assert len(report.earnings.transcripts) == 4
        assert report.earnings.latest_quarter.quarter == "Q3"
        assert report.earnings.latest_quarter.fiscal_year == 2025
        assert report.earnings.transcripts[0].excerpt.endswith("...")
        assert report.news is not None
        assert len(report.news.articles) == 12
        assert report.news.aggregate_sentiment.label == SentimentLabel.BULLISH
        assert report.news.aggregate_sentiment.average_score == pytest.approx(0.25)
        assert report.data_age_days == 10
        assert report.confidence == Confidence.HIGH
        assert report.sources_available == {"earnings_transcripts", "market_news"}

    def test_unknown_symbol(self, external_store, clock) -> None:
        service = MarketIntelligenceService(external_store, clock=clock)
        report = asyncio.run(service.get_intelligence("ZZZZ"))
        assert report.earnings is None
        assert report.news is None
        assert report.confidence == Confidence.LOW
        assert report.data_age_days == NO_DATA_AGE_DAYS
        assert not report.has_data

    def test_news_window_respected(self, external_store, clock) -> None:
        seed_news(external_store, "AMD", [0.2, 0.2], age_days=45)
        service = MarketIntelligenceService(external_store, clock=clock)
        report = asyncio.run(service.get_intelligence("AMD"))
        assert report.news is None

        options = IntelligenceOptions(news_max_age_days=60)
        report = asyncio.run(service.get_intelligence("AMD", options))
        assert report.news is not None

    def test_disabled_parts_not_fetched(self, external_store, clock) -> None:
        seed_transcripts(external_store, "AMD", count=2, latest_age_days=10)
        seed_news(external_store, "AMD", [0.2])
        service = MarketIntelligenceService(external_store, clock=clock)
        report = asyncio.run(
            service.get_intelligence("AMD", IntelligenceOptions(include_news=False))
        )
        assert report.earnings is not None
        assert report.news is None
        assert report.sources_available == {"earnings_transcripts"}

    def test_news_failure_leaves_earnings(self, external_store, clock, caplog) -> None:
        seed_transcripts(external_store, "AMD", count=4, latest_age_days=10)

        class BrokenNewsStore:
            def fetch_transcripts(self, symbol, limit):
                return external_store.fetch_transcripts(symbol, limit)

            def fetch_ticker_sentiment(self, symbol, since, limit):
                raise RuntimeError("connection reset")

        service = MarketIntelligenceService(BrokenNewsStore(), clock=clock)
        report = asyncio.run(service.get_intelligence("AMD"))

        assert report.earnings is not None
        assert report.news is None
        assert report.sources_available == {"earnings_transcripts"}
        assert "Error fetching news for AMD" in caplog.text

    def test_similar_transcripts(self, external_store, clock) -> None:
        embedder = HashingEmbedder()
        rows = [
            TranscriptRow(
                symbol="AMD", quarter="Q3", fiscal_year=2025,
                fiscal_date_ending="2025-09-30",
                transcript_text="data center revenue grew on accelerator demand",
            ),
            TranscriptRow(
                symbol="AMD", quarter="Q2", fiscal_year=2025,
                fiscal_date_ending="2025-06-30",
                transcript_text="client segment softness in notebooks",
            ),
        ]
        external_store.insert_transcripts(rows, [embedder.embed(r.transcript_text) for r in rows])
        service = MarketIntelligenceService(external_store, clock=clock)

        query = np.frombuffer(
            embedder.embed("data center revenue grew on accelerator demand"),
            dtype=np.float32,
        )
        hits = service.search_similar_transcripts(query, symbol="amd")
        assert len(hits) == 1
        assert hits[0].quarter == "Q3"
        assert hits[0].similarity == pytest.approx(1.0, abs=1e-5)

        assert service.search_similar_transcripts(query, symbol="TSLA") == []

    def test_similar_news_age_window(self, external_store, clock) -> None:
        embedder = HashingEmbedder()
        text = "chip export restrictions"
        fresh = NewsArticleRow(
            id="fresh", title=text, time_published="20251018T100000",
            created_at=to_db(NOW - timedelta(days=2)),
        )
        old = NewsArticleRow(
            id="old", title=text, time_published="20250801T100000",
            created_at=to_db(NOW - timedelta(days=80)),
        )
        external_store.insert_articles(
            [fresh, old], [embedder.embed(text), embedder.embed(text)]
        )
        external_store.insert_ticker_sentiment(
            [
                TickerSentimentRow(article_id="fresh", ticker="AMD"),
                TickerSentimentRow(article_id="old", ticker="AMD"),
            ]
        )
        service = MarketIntelligenceService(external_store, clock=clock)
        query = np.frombuffer(embedder.embed(text), dtype=np.float32)

        hits = service.search_similar_news(query, symbol="AMD")
        assert [h.title for h in hits] == [text]
        assert hits[0].time_published == "20251018T100000"

    def test_health_check(self, external_store, clock) -> None:
        seed_transcripts(external_store, "AMD", count=2, latest_age_days=10)
        service = MarketIntelligenceService(external_store, clock=clock)
        health = service.health_check()
        assert health["connected"] is True
        assert health["stats"]["earnings_transcripts"] == 2
