"""Routes research queries through stored knowledge first, paid web search second."""

import asyncio
import logging
import math
import threading
from collections.abc import Callable
from datetime import datetime

from options_intel.config import SOURCE_PRIORITY
from options_intel.data.pattern_store import PatternStore
from options_intel.data.tavily_queries import WebResearcher
from options_intel.models.patterns import RagKnowledge
from options_intel.models.research import (
    ResearchResult,
    RouteSource,
    RouterOptions,
    RouterStats,
    WebResearchFetch,
)
from options_intel.timeutil import utcnow

logger = logging.getLogger(__name__)

HYBRID_MIN_AGE_DAYS = 3
HYBRID_FRESHNESS = 0.7
WEB_RELEVANCE = 0.9


def freshness_score(age_days: float) -> float:
    """Exponential decay: about 0.25 at a week, near zero after a month."""
    return max(0.0, math.exp(-age_days / 5))


def rag_relevance(avg_age_days: float, count: int, max_age_days: float) -> float:
    recency = max(0.0, 1 - avg_age_days / max_age_days)
    volume = min(1.0, count / 10)
    return recency * 0.7 + volume * 0.3


def rank_source_priority(query_type: str) -> list[str]:
    """Source order to try for a query type; unknown types use the general order."""
    return list(SOURCE_PRIORITY.get(query_type, SOURCE_PRIORITY["general"]))


class RouterStatsTracker:
    """Lock-guarded router counters handing out immutable snapshots."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._rag_hits = 0
        self._tavily = 0
        self._hybrid = 0
        self._credits = 0

    def record(self, result: ResearchResult) -> None:
        with self._lock:
            self._total += 1
            if result.source == RouteSource.RAG:
                self._rag_hits += 1
            elif result.source == RouteSource.TAVILY:
                self._tavily += 1
            elif result.source == RouteSource.HYBRID:
                self._hybrid += 1
            self._credits += result.credits_used

    def snapshot(self) -> RouterStats:
        with self._lock:
            total = self._total
            return RouterStats(
                total_queries=total,
                rag_hits=self._rag_hits,
                tavily_fetches=self._tavily,
                hybrid_queries=self._hybrid,
                total_credits_used=self._credits,
                cache_hit_rate=self._rag_hits / total * 100 if total else 0.0,
                avg_credits_per_query=self._credits / total if total else 0.0,
            )

    def reset(self) -> None:
        with self._lock:
            self._total = 0
            self._rag_hits = 0
            self._tavily = 0
            self._hybrid = 0
            self._credits = 0


class QueryRouter:
    """Serves research from the pattern store when it is fresh and relevant enough.

    Web results fetched on a miss are written back to the pattern store in a
    background task; a failed write is logged and never reaches the caller.
    """

    def __init__(
        self,
        patterns: PatternStore,
        researcher: WebResearcher,
        stats: RouterStatsTracker | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.patterns = patterns
        self.researcher = researcher
        self.stats_tracker = stats or RouterStatsTracker()
        self.clock = clock
        self._pending: set[asyncio.Task] = set()

    @property
    def stats(self) -> RouterStats:
        return self.stats_tracker.snapshot()

    def reset_stats(self) -> None:
        self.stats_tracker.reset()

    async def intelligent_research(
        self,
        symbol: str,
        context: str = "general",
        options: RouterOptions | None = None,
    ) -> ResearchResult:
        opts = options or RouterOptions()
        symbol = symbol.upper()
        logger.info("Routing research query for %s: %r", symbol, context)

        result: ResearchResult | None = None
        if opts.force_refresh:
            logger.debug("Force refresh, skipping stored knowledge")
        else:
            rag = await asyncio.to_thread(
                self.query_knowledge, symbol, context, opts.max_rag_age
            )
            if rag.has_data and rag.relevance >= opts.rag_relevance_threshold:
                result = await self._from_knowledge(symbol, context, rag, opts)
            else:
                logger.info(
                    "Knowledge miss for %s (relevance %.2f)", symbol, rag.relevance
                )

        if result is None:
            result = await self._from_web(symbol, context)

        self.stats_tracker.record(result)
        return result

    async def _from_knowledge(
        self,
        symbol: str,
        context: str,
        rag: RagKnowledge,
        opts: RouterOptions,
    ) -> ResearchResult:
        logger.info(
            "Knowledge hit for %s (relevance %.2f, age %.1fd)",
            symbol,
            rag.relevance,
            rag.avg_age_days,
        )
        if opts.enable_hybrid and rag.avg_age_days > HYBRID_MIN_AGE_DAYS:
            logger.info("Hybrid: supplementing %s with fresh web research", symbol)
            fetch = await self.researcher.fetch(symbol, context)
            return ResearchResult(
                source=RouteSource.HYBRID,
                cached=True,
                freshness_score=HYBRID_FRESHNESS,
                relevance_score=rag.relevance,
                data={"rag": rag.data, "tavily": _web_payload(fetch)},
                credits_used=fetch.credits_used,
                rag_results_count=rag.results_count,
                tavily_results_count=fetch.results_count,
            )

        return ResearchResult(
            source=RouteSource.RAG,
            cached=True,
            freshness_score=freshness_score(rag.avg_age_days),
            relevance_score=rag.relevance,
            data=rag.data,
            credits_used=0,
            rag_results_count=rag.results_count,
        )

    async def _from_web(self, symbol: str, context: str) -> ResearchResult:
        fetch = await self.researcher.fetch(symbol, context)
        if fetch.results_count > 0:
            self._schedule_write_back(fetch)
        return ResearchResult(
            source=RouteSource.TAVILY,
            cached=False,
            freshness_score=1.0,
            relevance_score=WEB_RELEVANCE,
            data=_web_payload(fetch),
            credits_used=fetch.credits_used,
            tavily_results_count=fetch.results_count,
        )

    def query_knowledge(
        self, symbol: str, context: str, max_age_days: float
    ) -> RagKnowledge:
        """Score the stored knowledge for a symbol by recency and volume."""
        try:
            records = self.patterns.recent_knowledge(
                symbol, context, max_age_days, now=self.clock()
            )
        except Exception:
            logger.exception("Error querying stored knowledge for %s", symbol)
            return RagKnowledge()

        if not records:
            return RagKnowledge()

        avg_age = sum(r.age_days for r in records) / len(records)
        return RagKnowledge(
            has_data=True,
            relevance=rag_relevance(avg_age, len(records), max_age_days),
            avg_age_days=avg_age,
            results_count=len(records),
            data={
                "symbol": symbol,
                "insights": [r.model_dump() for r in records],
                "summary": (
                    f"Found {len(records)} recent insights (avg age: {avg_age:.1f}d)"
                ),
            },
        )

    # --- Write-back ---

    def _schedule_write_back(self, fetch: WebResearchFetch) -> None:
        task = asyncio.create_task(self._write_back(fetch))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write_back(self, fetch: WebResearchFetch) -> None:
        try:
            stored = await asyncio.to_thread(
                self.patterns.store_research,
                fetch.symbol,
                fetch.context,
                fetch.results,
                now=self.clock(),
            )
            logger.debug("Stored %d research notes for %s", stored, fetch.symbol)
        except Exception:
            logger.exception("Failed to store web research for %s", fetch.symbol)

    async def drain(self) -> None:
        """Wait for outstanding write-backs."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    # --- Batch ---

    async def batch_intelligent_research(
        self,
        symbols: list[str],
        context: str,
        options: RouterOptions | None = None,
    ) -> dict[str, ResearchResult]:
        opts = (options or RouterOptions()).model_copy(update={"force_refresh": False})
        logger.info("Batch routing for %d symbols", len(symbols))
        results = await asyncio.gather(
            *(self.intelligent_research(s, context, opts) for s in symbols)
        )
        by_symbol = {s.upper(): r for s, r in zip(symbols, results, strict=True)}

        credits = sum(r.credits_used for r in by_symbol.values())
        hits = sum(1 for r in by_symbol.values() if r.source == RouteSource.RAG)
        logger.info(
            "Batch complete: %d credits, %.0f%% knowledge hit rate",
            credits,
            hits / len(by_symbol) * 100 if by_symbol else 0.0,
        )
        return by_symbol


def _web_payload(fetch: WebResearchFetch) -> dict:
    return fetch.model_dump(exclude_none=True)
