"""Factor-aware Tavily query families used for options trade research."""

import asyncio
import logging

from pydantic import BaseModel

from options_intel.data.tavily_client import SearchOptions, TavilyClient
from options_intel.models.research import (
    WebResearchFetch,
    WebSearchResponse,
    WebSearchResult,
)
from options_intel.timeutil import utcnow

logger = logging.getLogger(__name__)

TRUSTED_FINANCIAL_DOMAINS = [
    "sec.gov",
    "reuters.com",
    "bloomberg.com",
    "wsj.com",
    "marketwatch.com",
    "seekingalpha.com",
    "finance.yahoo.com",
    "barrons.com",
    "cnbc.com",
    "ft.com",
]

EXCLUDE_DOMAINS = ["fool.com", "benzinga.com"]

MIN_SCORE = 0.6
MIN_RISK_SCORE = 0.5


def dedupe_by_url(results: list[WebSearchResult]) -> list[WebSearchResult]:
    """Drop repeated URLs, keeping the last occurrence's content in first-seen order."""
    unique: dict[str, WebSearchResult] = {}
    for r in results:
        unique[r.url] = r
    return list(unique.values())


def filter_by_score(
    results: list[WebSearchResult], threshold: float
) -> list[WebSearchResult]:
    return [r for r in results if (r.score or 0.0) >= threshold]


class QueryBatch(BaseModel):
    """Results of one query family plus the credits it cost."""

    results: list[WebSearchResult] = []
    credits_used: int = 0
    errors: list[str] = []


class WebResearcher:
    """Runs query families against Tavily and picks one by research context."""

    def __init__(self, client: TavilyClient) -> None:
        self.client = client

    async def _run(
        self,
        queries: list[str],
        options: SearchOptions,
        min_score: float | None,
    ) -> QueryBatch:
        responses: list[WebSearchResponse] = await asyncio.gather(
            *(self.client.search(q, options) for q in queries)
        )
        merged = dedupe_by_url([r for resp in responses for r in resp.results])
        if min_score is not None:
            merged = filter_by_score(merged, min_score)
        return QueryBatch(
            results=merged,
            credits_used=sum(resp.credits_used for resp in responses),
            errors=[resp.error for resp in responses if resp.error],
        )

    async def catalysts(self, symbol: str, days_back: int = 7) -> QueryBatch:
        """Earnings, guidance and product-launch news."""
        queries = [
            f"{symbol} earnings guidance",
            f"{symbol} earnings date announcement",
            f"{symbol} product launch event",
        ]
        options = SearchOptions(
            topic="news",
            search_depth="advanced",
            chunks_per_source=3,
            max_results=8,
            days=days_back,
            include_domains=TRUSTED_FINANCIAL_DOMAINS,
        )
        return await self._run(queries, options, MIN_SCORE)

    async def analyst_activity(self, symbol: str, days_back: int = 7) -> QueryBatch:
        """Upgrades, downgrades and price-target changes."""
        queries = [
            f"{symbol} downgrade OR upgrade analyst",
            f"{symbol} price target change",
            f"{symbol} analyst rating",
        ]
        options = SearchOptions(
            topic="news",
            search_depth="advanced",
            chunks_per_source=3,
            max_results=8,
            days=days_back,
            include_domains=TRUSTED_FINANCIAL_DOMAINS,
            exclude_domains=EXCLUDE_DOMAINS,
        )
        return await self._run(queries, options, MIN_SCORE)

    async def sec_filings(self, symbol: str, days_back: int = 90) -> QueryBatch:
        """8-K, 10-Q and 10-K filings. Not score filtered."""
        queries = [
            f"{symbol} 8-K filing",
            f"{symbol} 10-Q quarterly report",
            f"{symbol} 10-K annual report",
        ]
        options = SearchOptions(
            topic="news",
            search_depth="advanced",
            chunks_per_source=3,
            max_results=10,
            days=days_back,
            include_domains=["sec.gov"],
        )
        return await self._run(queries, options, None)

    async def operational_risks(self, symbol: str, days_back: int = 30) -> QueryBatch:
        """Supply chain, margin, competition and regulatory pressure."""
        queries = [
            f"{symbol} supply chain disruption",
            f"{symbol} margin compression pressure",
            f"{symbol} competition competitive threat",
            f"{symbol} regulatory investigation",
        ]
        options = SearchOptions(
            topic="news",
            search_depth="advanced",
            chunks_per_source=3,
            max_results=8,
            days=days_back,
            include_domains=TRUSTED_FINANCIAL_DOMAINS,
        )
        return await self._run(queries, options, MIN_RISK_SCORE)

    async def general_news(self, symbol: str) -> QueryBatch:
        options = SearchOptions(
            topic="news",
            search_depth="advanced",
            days=7,
            max_results=15,
            chunks_per_source=3,
        )
        return await self._run([f"{symbol} stock news analysis"], options, None)

    async def all_factors(self, symbol: str, days_back: int = 7) -> dict:
        """Every query family at once, keyed by family name."""
        catalysts, analysts, sec, risks = await asyncio.gather(
            self.catalysts(symbol, days_back),
            self.analyst_activity(symbol, days_back),
            self.sec_filings(symbol, 90),
            self.operational_risks(symbol, 30),
        )
        batches = {
            "catalysts": catalysts,
            "analysts": analysts,
            "sec": sec,
            "risks": risks,
        }
        return {
            "symbol": symbol,
            **{name: b.results for name, b in batches.items()},
            "total_articles": sum(len(b.results) for b in batches.values()),
            "credits_used": sum(b.credits_used for b in batches.values()),
        }

    async def fetch(self, symbol: str, context: str) -> WebResearchFetch:
        """Pick query families from the research context and run them.

        Never raises; failures come back as an empty fetch with ``error`` set.
        """
        ctx = context.lower()
        try:
            if "news" in ctx or context == "general":
                batch = await self.general_news(symbol)
            elif "catalyst" in ctx or "earnings" in ctx:
                batch = await self.catalysts(symbol, 7)
            elif "analyst" in ctx or "rating" in ctx:
                batch = await self.analyst_activity(symbol, 7)
            elif "risk" in ctx or "operational" in ctx:
                batch = await self.operational_risks(symbol, 30)
            else:
                parts = await asyncio.gather(
                    self.catalysts(symbol, 7),
                    self.analyst_activity(symbol, 7),
                    self.operational_risks(symbol, 30),
                )
                batch = QueryBatch(
                    results=[r for p in parts for r in p.results],
                    credits_used=sum(p.credits_used for p in parts),
                    errors=[e for p in parts for e in p.errors],
                )
        except Exception as e:
            logger.exception("Web research failed for %s (%s)", symbol, context)
            return WebResearchFetch(symbol=symbol, context=context, error=str(e))

        error = None
        if batch.errors and not batch.results:
            error = batch.errors[0]
        logger.info(
            "Web research for %s (%s): %d results, %d credits",
            symbol,
            context,
            len(batch.results),
            batch.credits_used,
        )
        return WebResearchFetch(
            symbol=symbol,
            context=context,
            results=batch.results,
            credits_used=batch.credits_used,
            fetched_at=utcnow().isoformat(),
            error=error,
        )
