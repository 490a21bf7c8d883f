import logging
from dataclasses import dataclass
from pathlib import Path

from options_intel.agent.orchestrator import MultiSourceOrchestrator
from options_intel.agent.router import QueryRouter
from options_intel.config import IntelConfig
from options_intel.data.external_store import SQLiteMarketIntelStore
from options_intel.data.pattern_store import PatternStore
from options_intel.data.tavily_client import TavilyClient
from options_intel.data.tavily_queries import WebResearcher
from options_intel.db import CacheDB
from options_intel.processing.embedder import get_embedder
from options_intel.services.intelligence_cache import IntelligenceCacheService
from options_intel.services.market_intelligence import MarketIntelligenceService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every long-lived component, built once and shared by reference."""

    cache_db: CacheDB
    patterns: PatternStore
    external_store: SQLiteMarketIntelStore
    intelligence: MarketIntelligenceService
    cache: IntelligenceCacheService
    tavily: TavilyClient
    router: QueryRouter
    orchestrator: MultiSourceOrchestrator

    async def aclose(self) -> None:
        await self.router.drain()
        await self.tavily.aclose()
        self.cache_db.close()
        self.patterns.close()
        self.external_store.close()
        self.patterns.embedder.close()


def build_services(config: IntelConfig) -> Services:
    cache_db = CacheDB(Path(config.cache_db_path))
    patterns = PatternStore(
        Path(config.pattern_db_path), embedder=get_embedder(config.embedding)
    )
    external_store = SQLiteMarketIntelStore(Path(config.external_db_path))

    intelligence = MarketIntelligenceService(external_store)
    cache = IntelligenceCacheService(
        cache_db,
        intelligence,
        earnings_ttl_days=config.earnings_ttl_days,
        news_ttl_days=config.news_ttl_days,
    )

    tavily = TavilyClient(
        config.tavily_api_key,
        requests_per_minute=config.tavily_rpm,
        timeout=config.tavily_timeout,
    )
    router = QueryRouter(patterns, WebResearcher(tavily))

    orchestrator = MultiSourceOrchestrator(
        patterns,
        cache,
        router,
        internal_timeout_s=config.internal_rag_timeout_s,
        cache_timeout_s=config.cache_timeout_s,
        web_timeout_s=config.web_research_timeout_s,
        default_dte=config.default_dte,
        default_delta=config.default_delta,
    )
    logger.debug("Services built (cache=%s)", config.cache_db_path)
    return Services(
        cache_db=cache_db,
        patterns=patterns,
        external_store=external_store,
        intelligence=intelligence,
        cache=cache,
        tavily=tavily,
        router=router,
        orchestrator=orchestrator,
    )
