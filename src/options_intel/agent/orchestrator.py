"""Orchestrates internal patterns, market intelligence and web research."""

import asyncio
import logging
import time
from collections.abc import Awaitable
from typing import TypeVar

from options_intel.agent.router import QueryRouter
from options_intel.config import DEFAULT_STRATEGY
from options_intel.data.pattern_store import PatternStore
from options_intel.models.common import Confidence
from options_intel.models.intelligence import IntelligenceOptions, IntelligenceReport
from options_intel.models.multi_source import (
    SOURCE_ORDER,
    AggregateInsights,
    ExternalIntelBlock,
    InternalRagBlock,
    MultiSourceQuery,
    MultiSourceResult,
    OverallSentiment,
    RecommendationStrength,
    WebResearchBlock,
)
from options_intel.models.patterns import TradeCriteria
from options_intel.models.research import ResearchResult, RouterOptions, WebSearchResult
from options_intel.services.intelligence_cache import IntelligenceCacheService

logger = logging.getLogger(__name__)

T = TypeVar("T")


def aggregate_insights(
    internal: InternalRagBlock | None,
    external: ExternalIntelBlock | None,
) -> AggregateInsights:
    """Blend win rate and news sentiment into one signal plus a quality score."""
    total = 0.0
    count = 0
    quality = 0

    if internal is not None and internal.has_data and internal.win_rate is not None:
        if internal.win_rate > 0.6:
            total += 0.5
            count += 1
        elif internal.win_rate < 0.4:
            total -= 0.5
            count += 1
        quality += 30

    if external is not None and external.has_data and external.news is not None:
        total += external.news.aggregate_sentiment.average_score
        count += 1
        quality += 40

    if external is not None and external.has_data and external.earnings is not None:
        quality += 30

    avg = total / count if count else 0.0

    if count == 0:
        sentiment = OverallSentiment.UNKNOWN
    elif avg > 0.15:
        sentiment = OverallSentiment.BULLISH
    elif avg < -0.15:
        sentiment = OverallSentiment.BEARISH
    else:
        sentiment = OverallSentiment.NEUTRAL

    if quality >= 70 and abs(avg) > 0.3:
        strength = RecommendationStrength.STRONG
    elif quality >= 40 and abs(avg) > 0.15:
        strength = RecommendationStrength.MODERATE
    else:
        strength = RecommendationStrength.WEAK

    return AggregateInsights(
        overall_sentiment=sentiment,
        sentiment_score=avg,
        data_quality_score=quality,
        recommendation_strength=strength,
    )


def overall_confidence(
    internal: InternalRagBlock | None,
    external: ExternalIntelBlock | None,
    web: WebResearchBlock | None,
) -> Confidence:
    score = 0

    if internal is not None and internal.has_data:
        if internal.similar_trades_count >= 10:
            score += 30
        elif internal.similar_trades_count >= 3:
            score += 15

    if external is not None and external.has_data:
        if external.confidence == Confidence.HIGH:
            score += 40
        elif external.confidence == Confidence.MEDIUM:
            score += 20

    if web is not None and web.results_count > 0:
        score += 15

    if external is not None and external.data_age_days <= 7:
        score += 15

    return Confidence.from_score(score)


class MultiSourceOrchestrator:
    """Fans a symbol query out to every enabled source and merges the answers.

    Each branch degrades to ``None`` on error or timeout, so a query always
    produces a report; missing sources only lower its confidence.
    """

    def __init__(
        self,
        patterns: PatternStore,
        cache: IntelligenceCacheService,
        router: QueryRouter,
        *,
        internal_timeout_s: float = 10.0,
        cache_timeout_s: float = 10.0,
        web_timeout_s: float = 45.0,
        default_dte: int = 30,
        default_delta: float = 0.20,
    ) -> None:
        self.patterns = patterns
        self.cache = cache
        self.router = router
        self.internal_timeout_s = internal_timeout_s
        self.cache_timeout_s = cache_timeout_s
        self.web_timeout_s = web_timeout_s
        self.default_dte = default_dte
        self.default_delta = default_delta

    async def query_multi_source(self, query: MultiSourceQuery) -> MultiSourceResult:
        start = time.perf_counter()
        symbol = query.symbol.upper()
        logger.info("Orchestrating query for %s (context: %s)", symbol, query.context)

        internal, external, web = await asyncio.gather(
            self._bounded(
                self._internal_rag(symbol),
                self.internal_timeout_s,
                "internal_rag",
                symbol,
            )
            if query.include_internal_rag
            else _none(),
            self._bounded(
                self._external(symbol, query),
                self.cache_timeout_s,
                "external_intelligence",
                symbol,
            )
            if query.include_external_intelligence
            else _none(),
            self._bounded(
                self._web(symbol, query.context), self.web_timeout_s, "tavily", symbol
            )
            if query.include_tavily
            else _none(),
        )

        web_block, credits = web if web is not None else (None, 0)
        used = {
            "internal_rag": internal is not None and internal.has_data,
            "external_intelligence": external is not None and external.has_data,
            "tavily": web_block is not None and web_block.has_data,
        }

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        result = MultiSourceResult(
            symbol=symbol,
            confidence=overall_confidence(internal, external, web_block),
            data_sources_used=[s for s in SOURCE_ORDER if used[s]],
            total_fetch_time_ms=elapsed_ms,
            credits_used=credits,
            internal_rag=internal or InternalRagBlock(),
            external_intelligence=external or ExternalIntelBlock(),
            tavily=web_block or WebResearchBlock(),
            aggregate=aggregate_insights(internal, external),
        )
        logger.info(
            "Complete for %s: %d sources, %dms, %d credits",
            symbol,
            len(result.data_sources_used),
            elapsed_ms,
            credits,
        )
        return result

    async def batch_query_multi_source(
        self, queries: list[MultiSourceQuery]
    ) -> dict[str, MultiSourceResult]:
        logger.info("Batch querying %d symbols", len(queries))
        results = await asyncio.gather(*(self.query_multi_source(q) for q in queries))
        by_symbol = {r.symbol: r for r in results}
        if results:
            logger.info(
                "Batch complete: %d credits, %.0fms avg",
                sum(r.credits_used for r in results),
                sum(r.total_fetch_time_ms for r in results) / len(results),
            )
        return by_symbol

    # --- Branches ---

    async def _bounded(
        self, coro: Awaitable[T], timeout: float, branch: str, symbol: str
    ) -> T | None:
        try:
            return await asyncio.wait_for(coro, timeout)
        except TimeoutError:
            logger.warning("%s timed out after %.0fs for %s", branch, timeout, symbol)
            return None

    async def _internal_rag(self, symbol: str) -> InternalRagBlock:
        criteria = TradeCriteria(
            symbol=symbol,
            strategy_type=DEFAULT_STRATEGY,
            dte=self.default_dte,
            delta=self.default_delta,
        )
        try:
            analysis = await asyncio.to_thread(
                self.patterns.analyze_historical_performance, criteria
            )
        except Exception:
            logger.exception("Error querying internal patterns for %s", symbol)
            return InternalRagBlock()

        if not analysis.has_data:
            logger.debug("No internal pattern data for %s", symbol)
            return InternalRagBlock()

        return InternalRagBlock(
            has_data=True,
            similar_trades_count=analysis.trade_count,
            win_rate=analysis.win_rate,
            avg_roi=analysis.avg_roi,
            insights=analysis.similar_trades,
        )

    async def _external(
        self, symbol: str, query: MultiSourceQuery
    ) -> ExternalIntelBlock:
        options = IntelligenceOptions(
            max_earnings_quarters=query.max_earnings_quarters,
            max_news_articles=query.max_news_articles,
            news_max_age_days=query.news_max_age_days,
        )
        try:
            report = await self.cache.get(symbol, options=options)
        except Exception:
            logger.exception("Error querying market intelligence for %s", symbol)
            return ExternalIntelBlock()
        return _external_block(report)

    async def _web(
        self, symbol: str, context: str
    ) -> tuple[WebResearchBlock, int] | None:
        options = RouterOptions(force_refresh=False, enable_hybrid=False)
        try:
            research = await self.router.intelligent_research(symbol, context, options)
        except Exception:
            logger.exception("Error running web research for %s", symbol)
            return None
        return _web_block(research), research.credits_used


async def _none() -> None:
    return None


def _external_block(report: IntelligenceReport) -> ExternalIntelBlock:
    if not report.has_data:
        logger.debug("No external intelligence for %s", report.symbol)
        return ExternalIntelBlock()
    return ExternalIntelBlock(
        has_data=True,
        earnings=report.earnings,
        news=report.news,
        confidence=report.confidence,
        data_age_days=report.data_age_days,
    )


def _web_block(research: ResearchResult) -> WebResearchBlock:
    raw = (research.data or {}).get("results", [])
    results = [WebSearchResult.model_validate(r) for r in raw]
    return WebResearchBlock(
        has_data=research.tavily_results_count > 0,
        results_count=research.tavily_results_count,
        results=results,
        source=research.source.value,
    )
