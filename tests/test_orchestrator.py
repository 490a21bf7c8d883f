import asyncio
import time
from datetime import timedelta

import pytest

from conftest import NOW, FakeResearcher, make_trade, seed_news, seed_transcripts
from options_intel.agent.orchestrator import (
    MultiSourceOrchestrator,
    aggregate_insights,
    overall_confidence,
)
from options_intel.agent.router import QueryRouter
from options_intel.data.external_store import SQLiteMarketIntelStore
from options_intel.data.pattern_store import PatternStore
from options_intel.db import CacheDB
from options_intel.models.common import Confidence
from options_intel.models.intelligence import (
    AggregateSentiment,
    IntelligenceReport,
    NewsIntelligence,
)
from options_intel.models.multi_source import (
    ExternalIntelBlock,
    InternalRagBlock,
    MultiSourceQuery,
    OverallSentiment,
    RecommendationStrength,
    WebResearchBlock,
)
from options_intel.services.intelligence_cache import IntelligenceCacheService
from options_intel.services.market_intelligence import MarketIntelligenceService


class BlockingPatterns(PatternStore):
    def analyze_historical_performance(self, criteria):
        time.sleep(0.5)
        return super().analyze_historical_performance(criteria)


class BlockingMarketStore(SQLiteMarketIntelStore):
    def fetch_transcripts(self, symbol, limit):
        time.sleep(0.5)
        return super().fetch_transcripts(symbol, limit)


def _build(tmp_path, external_store, pattern_store, researcher=None, **kwargs):
    clock = lambda: NOW  # noqa: E731
    intelligence = MarketIntelligenceService(external_store, clock=clock)
    cache = IntelligenceCacheService(
        CacheDB(tmp_path / "cache.db"), intelligence, clock=clock
    )
    router = QueryRouter(pattern_store, researcher or FakeResearcher(), clock=clock)
    return MultiSourceOrchestrator(pattern_store, cache, router, **kwargs)


def _seed_amd(external_store, pattern_store, wins: int = 8, losses: int = 2) -> None:
    seed_transcripts(external_store, "AMD", count=5, latest_age_days=10)
    seed_news(external_store, "AMD", [0.1, 0.4] * 6)
    # Outside the router's default seven-day window
    created = NOW - timedelta(days=30)
    for i in range(wins):
        pattern_store.embed_trade_outcome(make_trade(f"w{i}"), created_at=created)
    for i in range(losses):
        pattern_store.embed_trade_outcome(
            make_trade(f"l{i}", pnl=-50.0), created_at=created
        )


def _news_block(score: float) -> ExternalIntelBlock:
    return ExternalIntelBlock(
        has_data=True,
        news=NewsIntelligence(
            symbol="X",
            aggregate_sentiment=AggregateSentiment(average_score=score, article_count=1),
        ),
    )


class TestAggregateInsights:
    def test_no_sources(self) -> None:
        agg = aggregate_insights(None, None)
        assert agg.overall_sentiment == OverallSentiment.UNKNOWN
        assert agg.sentiment_score == 0.0
        assert agg.data_quality_score == 0
        assert agg.recommendation_strength == RecommendationStrength.WEAK

    def test_neutral_win_rate_adds_quality_only(self) -> None:
        internal = InternalRagBlock(has_data=True, similar_trades_count=5, win_rate=0.5)
        agg = aggregate_insights(internal, None)
        assert agg.overall_sentiment == OverallSentiment.UNKNOWN
        assert agg.data_quality_score == 30

    def test_bearish_blend(self) -> None:
        internal = InternalRagBlock(has_data=True, similar_trades_count=5, win_rate=0.2)
        agg = aggregate_insights(internal, _news_block(-0.3))
        assert agg.sentiment_score == pytest.approx(-0.4)
        assert agg.overall_sentiment == OverallSentiment.BEARISH
        assert agg.data_quality_score == 70
        assert agg.recommendation_strength == RecommendationStrength.STRONG

    def test_moderate_needs_quality(self) -> None:
        agg = aggregate_insights(None, _news_block(0.2))
        assert agg.data_quality_score == 40
        assert agg.recommendation_strength == RecommendationStrength.MODERATE

    @pytest.mark.parametrize("win_rate", [0.0, 0.39, 0.5, 0.61, 1.0])
    @pytest.mark.parametrize("news_score", [-1.0, -0.2, 0.0, 0.2, 1.0])
    def test_score_and_quality_bounds(self, win_rate, news_score) -> None:
        internal = InternalRagBlock(
            has_data=True, similar_trades_count=5, win_rate=win_rate
        )
        agg = aggregate_insights(internal, _news_block(news_score))
        assert -1.0 <= agg.sentiment_score <= 1.0
        assert 0 <= agg.data_quality_score <= 100


class TestOverallConfidence:
    def test_web_results_add_points(self) -> None:
        internal = InternalRagBlock(has_data=True, similar_trades_count=10)
        web = WebResearchBlock(has_data=True, results_count=3)
        assert overall_confidence(internal, None, None) == Confidence.LOW
        assert overall_confidence(internal, None, web) == Confidence.MEDIUM

    def test_recent_external_data(self) -> None:
        external = ExternalIntelBlock(
            has_data=True, confidence=Confidence.HIGH, data_age_days=3
        )
        # 40 + 15
        assert overall_confidence(None, external, None) == Confidence.MEDIUM


class TestMultiSourceOrchestrator:
    def test_unknown_symbol(self, tmp_path, external_store, pattern_store) -> None:
        orch = _build(tmp_path, external_store, pattern_store)

        result = asyncio.run(orch.query_multi_source(MultiSourceQuery(symbol="zzzz")))

        assert result.symbol == "ZZZZ"
        assert result.confidence == Confidence.LOW
        assert result.data_sources_used == []
        assert result.credits_used == 0
        assert not result.internal_rag.has_data
        assert not result.external_intelligence.has_data
        assert not result.tavily.has_data
        assert result.aggregate.overall_sentiment == OverallSentiment.UNKNOWN
        assert result.aggregate.data_quality_score == 0

    def test_full_report(self, tmp_path, external_store, pattern_store) -> None:
        _seed_amd(external_store, pattern_store)
        orch = _build(tmp_path, external_store, pattern_store)

        result = asyncio.run(orch.query_multi_source(MultiSourceQuery(symbol="AMD")))

        assert result.data_sources_used == ["internal_rag", "external_intelligence"]
        assert result.internal_rag.similar_trades_count == 10
        assert result.internal_rag.win_rate == pytest.approx(0.8)
        ext = result.external_intelligence
        assert ext.confidence == Confidence.HIGH
        assert ext.data_age_days == 10
        assert len(ext.earnings.transcripts) == 4
        assert len(ext.news.articles) == 12
        # (0.5 + 0.25) / 2
        assert result.aggregate.sentiment_score == pytest.approx(0.375)
        assert result.aggregate.overall_sentiment == OverallSentiment.BULLISH
        assert result.aggregate.data_quality_score == 100
        assert result.aggregate.recommendation_strength == RecommendationStrength.STRONG
        # 30 + 40
        assert result.confidence == Confidence.HIGH
        assert result.credits_used == 0
        assert result.total_fetch_time_ms >= 0

    def test_web_research_included(self, tmp_path, external_store, pattern_store) -> None:
        _seed_amd(external_store, pattern_store)
        researcher = FakeResearcher(results=3, credits=2)
        orch = _build(tmp_path, external_store, pattern_store, researcher)

        async def scenario():
            result = await orch.query_multi_source(
                MultiSourceQuery(symbol="AMD", context="earnings", include_tavily=True)
            )
            await orch.router.drain()
            return result

        result = asyncio.run(scenario())

        assert result.data_sources_used == [
            "internal_rag",
            "external_intelligence",
            "tavily",
        ]
        assert result.tavily.results_count == 3
        assert result.tavily.source == "tavily"
        assert result.tavily.results[0].url.startswith("https://www.reuters.com/")
        assert result.credits_used == 2
        assert researcher.calls == [("AMD", "earnings")]

    def test_credits_counted_without_results(
        self, tmp_path, external_store, pattern_store
    ) -> None:
        orch = _build(
            tmp_path, external_store, pattern_store, FakeResearcher(results=0, credits=4)
        )
        result = asyncio.run(
            orch.query_multi_source(MultiSourceQuery(symbol="AMD", include_tavily=True))
        )
        assert result.credits_used == 4
        assert "tavily" not in result.data_sources_used

    def test_disabled_branches(self, tmp_path, external_store, pattern_store) -> None:
        _seed_amd(external_store, pattern_store)
        orch = _build(tmp_path, external_store, pattern_store)

        result = asyncio.run(
            orch.query_multi_source(
                MultiSourceQuery(symbol="AMD", include_internal_rag=False)
            )
        )

        assert result.data_sources_used == ["external_intelligence"]
        assert result.internal_rag.similar_trades_count == 0
        assert result.aggregate.data_quality_score == 70

    def test_failed_branch_isolated(
        self, tmp_path, external_store, pattern_store, caplog
    ) -> None:
        _seed_amd(external_store, pattern_store)
        orch = _build(tmp_path, external_store, pattern_store)

        def boom(criteria):
            raise RuntimeError("index corrupted")

        orch.patterns.analyze_historical_performance = boom
        result = asyncio.run(orch.query_multi_source(MultiSourceQuery(symbol="AMD")))

        assert result.data_sources_used == ["external_intelligence"]
        assert "Error querying internal patterns for AMD" in caplog.text

    def test_slow_branch_times_out(
        self, tmp_path, external_store, pattern_store, caplog
    ) -> None:
        _seed_amd(external_store, pattern_store)

        class SlowCache:
            async def get(self, symbol, **kwargs):
                await asyncio.sleep(1)
                return IntelligenceReport(symbol=symbol)

        router = QueryRouter(pattern_store, FakeResearcher(), clock=lambda: NOW)
        orch = MultiSourceOrchestrator(
            pattern_store, SlowCache(), router, cache_timeout_s=0.05
        )

        result = asyncio.run(orch.query_multi_source(MultiSourceQuery(symbol="AMD")))

        assert result.data_sources_used == ["internal_rag"]
        assert not result.external_intelligence.has_data
        assert result.total_fetch_time_ms < 1000
        assert "external_intelligence timed out" in caplog.text

    def test_batch_matches_single_queries(
        self, tmp_path, external_store, pattern_store
    ) -> None:
        _seed_amd(external_store, pattern_store)
        seed_transcripts(external_store, "NVDA", count=2, latest_age_days=40)
        queries = [MultiSourceQuery(symbol="AMD"), MultiSourceQuery(symbol="nvda")]

        (tmp_path / "single").mkdir()
        (tmp_path / "batch").mkdir()
        single = _build(tmp_path / "single", external_store, pattern_store)
        batch = _build(tmp_path / "batch", external_store, pattern_store)

        async def run_single():
            return [await single.query_multi_source(q) for q in queries]

        individual = asyncio.run(run_single())
        batched = asyncio.run(batch.batch_query_multi_source(queries))

        assert list(batched) == ["AMD", "NVDA"]
        for r in individual:
            assert batched[r.symbol].comparable() == r.comparable()

    def test_blocking_pattern_store_times_out(
        self, tmp_path, external_store, caplog
    ) -> None:
        patterns = BlockingPatterns(tmp_path / "patterns.db")
        _seed_amd(external_store, patterns)
        orch = _build(tmp_path, external_store, patterns, internal_timeout_s=0.05)

        result = asyncio.run(orch.query_multi_source(MultiSourceQuery(symbol="AMD")))
        patterns.close()

        assert result.data_sources_used == ["external_intelligence"]
        assert result.total_fetch_time_ms < 400
        assert "internal_rag timed out" in caplog.text

    def test_blocking_market_store_times_out(
        self, tmp_path, pattern_store, caplog
    ) -> None:
        store = BlockingMarketStore(tmp_path / "market.db")
        _seed_amd(store, pattern_store)
        orch = _build(tmp_path, store, pattern_store, cache_timeout_s=0.05)

        result = asyncio.run(orch.query_multi_source(MultiSourceQuery(symbol="AMD")))
        store.close()

        assert result.data_sources_used == ["internal_rag"]
        assert not result.external_intelligence.has_data
        assert result.total_fetch_time_ms < 400
        assert "external_intelligence timed out" in caplog.text
