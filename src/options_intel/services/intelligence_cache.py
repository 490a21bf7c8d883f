"""TTL cache in front of the market-intelligence service.

Earnings transcripts change quarterly and are kept for 90 days; news and
sentiment go stale fast and are kept for 7. Rows are keyed by
``(symbol, source_type)`` so a fresh write replaces the old snapshot.
"""

import asyncio
import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from options_intel.db import CacheDB
from options_intel.models.common import Confidence, SourceType
from options_intel.models.intelligence import (
    CacheEntry,
    CacheStats,
    IntelligenceOptions,
    IntelligenceReport,
)
from options_intel.services.market_intelligence import MarketIntelligenceService
from options_intel.timeutil import (
    NO_DATA_AGE_DAYS,
    parse_timestamp,
    utcnow,
    whole_days_since,
)

logger = logging.getLogger(__name__)

EARNINGS_TTL_DAYS = 90
NEWS_TTL_DAYS = 7

# Aggregate usage row written per call
USAGE_SOURCE_TYPE = "combined"


class IntelligenceCacheService:
    def __init__(
        self,
        db: CacheDB,
        intelligence: MarketIntelligenceService,
        *,
        earnings_ttl_days: int = EARNINGS_TTL_DAYS,
        news_ttl_days: int = NEWS_TTL_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.intelligence = intelligence
        self.earnings_ttl = timedelta(days=earnings_ttl_days)
        self.news_ttl = timedelta(days=news_ttl_days)
        self.clock = clock
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._hit_rate = 0.0
        self._avg_fetch_ms = 0.0

    async def get(
        self,
        symbol: str,
        *,
        force_refresh: bool = False,
        track_access: bool = True,
        options: IntelligenceOptions | None = None,
    ) -> IntelligenceReport:
        """Cached report for ``symbol``, fetching and caching on a miss."""
        symbol = symbol.upper()
        start = time.perf_counter()

        if not force_refresh:
            cached = await asyncio.to_thread(self._read_cached, symbol)
            if cached is not None:
                elapsed = (time.perf_counter() - start) * 1000
                self._record(hit=True, fetch_ms=elapsed)
                logger.info("Cache hit for %s (%.1fms)", symbol, elapsed)
                if track_access:
                    await asyncio.to_thread(self._track_access, symbol, hit=True)
                return cached

        logger.info("Cache miss for %s, fetching market intelligence", symbol)
        report = await self.intelligence.get_intelligence(symbol, options)

        elapsed = (time.perf_counter() - start) * 1000
        self._record(hit=False, fetch_ms=elapsed)
        if track_access:
            await asyncio.to_thread(self._track_access, symbol, hit=False)

        await asyncio.to_thread(self._write, symbol, report)
        return report

    # --- Reads ---

    def _read_cached(self, symbol: str) -> IntelligenceReport | None:
        now = self.clock()
        try:
            earnings_row = self.db.get_live_entry(
                symbol, SourceType.EARNINGS_TRANSCRIPT, now
            )
            news_row = self.db.get_live_entry(symbol, SourceType.MARKET_NEWS, now)
        except (sqlite3.Error, ValueError):
            logger.exception("Error reading intelligence cache for %s", symbol)
            return None

        if earnings_row is None and news_row is None:
            return None

        rows = [r for r in (earnings_row, news_row) if r is not None]
        sources: set[str] = set()
        if earnings_row is not None:
            sources.add("earnings_transcripts")
        if news_row is not None:
            sources.add("market_news")

        if len(rows) == 2:
            confidence = Confidence.HIGH
        else:
            confidence = Confidence.MEDIUM

        try:
            self.db.touch_entries(symbol, [r.source_type for r in rows], now)
        except sqlite3.Error as e:
            logger.warning("Failed to update cache access for %s: %s", symbol, e)

        return IntelligenceReport(
            symbol=symbol,
            earnings=earnings_row.data if earnings_row else None,
            news=news_row.data if news_row else None,
            confidence=confidence,
            data_age_days=_cached_data_age(rows, now),
            sources_available=frozenset(sources),
        )

    # --- Writes ---

    def _write(self, symbol: str, report: IntelligenceReport) -> None:
        """Persist each present sub-report. Failures never reach the caller."""
        now = self.clock()
        try:
            if report.earnings is not None:
                transcripts = report.earnings.transcripts
                first = transcripts[0] if transcripts else None
                self.db.upsert_entry(
                    symbol,
                    SourceType.EARNINGS_TRANSCRIPT,
                    report.earnings,
                    data_date=first.fiscal_date_ending if first else now.isoformat(),
                    cached_at=now,
                    ttl=self.earnings_ttl,
                )
                logger.debug(
                    "Cached earnings for %s (TTL %s)", symbol, self.earnings_ttl
                )
            if report.news is not None:
                first = report.news.articles[0] if report.news.articles else None
                self.db.upsert_entry(
                    symbol,
                    SourceType.MARKET_NEWS,
                    report.news,
                    data_date=first.time_published if first else now.isoformat(),
                    cached_at=now,
                    ttl=self.news_ttl,
                )
                logger.debug("Cached news for %s (TTL %s)", symbol, self.news_ttl)
        except (sqlite3.Error, ValueError):
            logger.exception("Failed to cache intelligence for %s", symbol)

    def _track_access(self, symbol: str, *, hit: bool) -> None:
        now = self.clock()
        try:
            self.db.increment_usage(
                symbol,
                USAGE_SOURCE_TYPE,
                now.date(),
                cache_hits=1 if hit else 0,
                cache_misses=0 if hit else 1,
                now=now,
            )
        except sqlite3.Error as e:
            logger.warning("Failed to track access for %s: %s", symbol, e)

    # --- Stats ---

    def _record(self, *, hit: bool, fetch_ms: float) -> None:
        with self._lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1
            total = self._hits + self._misses
            self._hit_rate = self._hits / total * 100
            prev = self._avg_fetch_ms
            self._avg_fetch_ms = (
                fetch_ms if prev == 0 else (prev * (total - 1) + fetch_ms) / total
            )

    def get_stats(self) -> CacheStats:
        with self._lock:
            stats = CacheStats(
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hit_rate,
                avg_fetch_time_ms=self._avg_fetch_ms,
            )
        try:
            return stats.model_copy(
                update={
                    "total_entries": self.db.count_entries(),
                    "expired_entries": self.db.count_expired(self.clock()),
                }
            )
        except sqlite3.Error:
            logger.exception("Error counting cache entries")
            return stats

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._hit_rate = 0.0
            self._avg_fetch_ms = 0.0

    # --- Maintenance ---

    def cleanup(self) -> int:
        """Delete every row whose TTL has passed. Returns the count removed."""
        removed = self.db.delete_expired(self.clock())
        logger.info("Cleaned up %d expired cache entries", removed)
        return removed

    def invalidate(self, symbol: str) -> int:
        removed = self.db.delete_symbol(symbol.upper())
        logger.info("Invalidated %d cache entries for %s", removed, symbol.upper())
        return removed

    async def warm(self, symbols: list[str]) -> dict[str, IntelligenceReport]:
        """Pre-fetch a watchlist so later reads are served from cache."""
        logger.info("Warming cache for %d symbols", len(symbols))
        reports = await asyncio.gather(*(self.get(s) for s in symbols))
        return {r.symbol: r for r in reports}

    def hot_symbols(self, days: int = 7, limit: int = 20) -> list[dict]:
        since = (self.clock() - timedelta(days=days)).date()
        return self.db.hot_symbols(since, limit)

    def health_summary(self) -> dict:
        return self.db.health_summary(self.clock())


def _cached_data_age(rows: list[CacheEntry], now: datetime) -> int:
    dates: list[datetime] = []
    for r in rows:
        ts = parse_timestamp(r.data_date) or parse_timestamp(r.cached_at)
        if ts is not None:
            dates.append(ts)
    if not dates:
        return NO_DATA_AGE_DAYS
    return whole_days_since(max(dates), now)
