import json
import logging
import sqlite3
import threading
from datetime import date, datetime, timedelta
from pathlib import Path

from options_intel.models.common import SourceType
from options_intel.models.intelligence import (
    CacheEntry,
    EarningsIntelligence,
    NewsIntelligence,
)
from options_intel.timeutil import to_db, utcnow

logger = logging.getLogger(__name__)

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS market_intelligence_cache (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL,
    source_type TEXT NOT NULL,
    data TEXT NOT NULL,
    data_date TEXT,
    cached_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    last_accessed_at TEXT,
    access_count INTEGER NOT NULL DEFAULT 1,
    CHECK (expires_at > cached_at),
    UNIQUE(symbol, source_type)
);

CREATE INDEX IF NOT EXISTS idx_intelligence_cache_lookup
    ON market_intelligence_cache(symbol, source_type, expires_at);
CREATE INDEX IF NOT EXISTS idx_intelligence_cache_expires_at
    ON market_intelligence_cache(expires_at);

CREATE TABLE IF NOT EXISTS intelligence_usage_stats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL,
    source_type TEXT NOT NULL,
    stats_date TEXT NOT NULL,
    access_count INTEGER NOT NULL DEFAULT 0,
    cache_hits INTEGER NOT NULL DEFAULT 0,
    cache_misses INTEGER NOT NULL DEFAULT 0,
    last_accessed_at TEXT,
    UNIQUE(symbol, source_type, stats_date)
);
"""

DEFAULT_DB_PATH = Path("data") / "intelligence_cache.db"

_Payload = type[EarningsIntelligence] | type[NewsIntelligence]

_PAYLOAD_TYPES: dict[SourceType, _Payload] = {
    SourceType.EARNINGS_TRANSCRIPT: EarningsIntelligence,
    SourceType.MARKET_NEWS: NewsIntelligence,
    SourceType.NEWS: NewsIntelligence,
    SourceType.SENTIMENT: NewsIntelligence,
}


class CacheDB:
    """SQLite connection manager for the intelligence cache."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.RLock()

    @property
    def conn(self) -> sqlite3.Connection:
        # Shared with worker threads; opened once
        with self._conn_lock:
            if self._conn is None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(
                    str(self.db_path), check_same_thread=False
                )
                self._conn.row_factory = sqlite3.Row
                self._conn.execute("PRAGMA journal_mode=WAL")
                self._init_schema()
            return self._conn

    def _init_schema(self) -> None:
        cursor = self.conn.executescript(SCHEMA_SQL)
        cursor.close()
        self.conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # --- Entries ---

    def upsert_entry(
        self,
        symbol: str,
        source_type: SourceType,
        data: EarningsIntelligence | NewsIntelligence,
        *,
        data_date: str | None,
        cached_at: datetime,
        ttl: timedelta,
    ) -> None:
        """Write the snapshot for (symbol, source_type), replacing any older one."""
        if ttl <= timedelta(0):
            raise ValueError("cache TTL must be positive")
        self.conn.execute(
            """INSERT INTO market_intelligence_cache
            (symbol, source_type, data, data_date, cached_at, expires_at,
             last_accessed_at, access_count)
            VALUES (?, ?, ?, ?, ?, ?, ?, 1)
            ON CONFLICT(symbol, source_type) DO UPDATE SET
                data = excluded.data,
                data_date = excluded.data_date,
                cached_at = excluded.cached_at,
                expires_at = excluded.expires_at,
                last_accessed_at = excluded.last_accessed_at,
                access_count = 1""",
            (
                symbol,
                source_type.value,
                data.model_dump_json(),
                data_date,
                to_db(cached_at),
                to_db(cached_at + ttl),
                to_db(cached_at),
            ),
        )
        self.conn.commit()

    def insert_raw_entry(self, entry: CacheEntry) -> None:
        """Store an entry verbatim; used by maintenance tooling and tests."""
        self.conn.execute(
            """INSERT OR REPLACE INTO market_intelligence_cache
            (symbol, source_type, data, data_date, cached_at, expires_at,
             last_accessed_at, access_count)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                entry.symbol,
                entry.source_type.value,
                entry.data.model_dump_json(),
                entry.data_date,
                entry.cached_at,
                entry.expires_at,
                entry.last_accessed_at,
                entry.access_count,
            ),
        )
        self.conn.commit()

    def get_live_entry(
        self, symbol: str, source_type: SourceType, now: datetime | None = None
    ) -> CacheEntry | None:
        """Return the unexpired entry for the key, if any."""
        row = self.conn.execute(
            """SELECT * FROM market_intelligence_cache
            WHERE symbol = ? AND source_type = ? AND expires_at > ?
            ORDER BY cached_at DESC LIMIT 1""",
            (symbol, source_type.value, to_db(now or utcnow())),
        ).fetchone()
        return self._row_to_entry(row) if row else None

    def get_entries(self, symbol: str) -> list[CacheEntry]:
        rows = self.conn.execute(
            "SELECT * FROM market_intelligence_cache WHERE symbol = ? "
            "ORDER BY source_type",
            (symbol,),
        ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def touch_entries(
        self, symbol: str, source_types: list[SourceType], now: datetime
    ) -> None:
        """Bump access bookkeeping on a cache hit without touching content."""
        if not source_types:
            return
        placeholders = ", ".join("?" for _ in source_types)
        self.conn.execute(
            f"""UPDATE market_intelligence_cache SET
                access_count = access_count + 1,
                last_accessed_at = ?
            WHERE symbol = ? AND source_type IN ({placeholders})""",
            (to_db(now), symbol, *(s.value for s in source_types)),
        )
        self.conn.commit()

    def delete_expired(self, now: datetime | None = None) -> int:
        cursor = self.conn.execute(
            "DELETE FROM market_intelligence_cache WHERE expires_at <= ?",
            (to_db(now or utcnow()),),
        )
        self.conn.commit()
        return cursor.rowcount

    def delete_symbol(self, symbol: str) -> int:
        cursor = self.conn.execute(
            "DELETE FROM market_intelligence_cache WHERE symbol = ?", (symbol,)
        )
        self.conn.commit()
        return cursor.rowcount

    def count_entries(self) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM market_intelligence_cache"
        ).fetchone()[0]

    def count_expired(self, now: datetime | None = None) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM market_intelligence_cache WHERE expires_at <= ?",
            (to_db(now or utcnow()),),
        ).fetchone()[0]

    # --- Usage stats ---

    def increment_usage(
        self,
        symbol: str,
        source_type: str,
        stats_date: date,
        *,
        cache_hits: int = 0,
        cache_misses: int = 0,
        now: datetime | None = None,
    ) -> None:
        self.conn.execute(
            """INSERT INTO intelligence_usage_stats
            (symbol, source_type, stats_date, access_count, cache_hits,
             cache_misses, last_accessed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(symbol, source_type, stats_date) DO UPDATE SET
                access_count = access_count + excluded.access_count,
                cache_hits = cache_hits + excluded.cache_hits,
                cache_misses = cache_misses + excluded.cache_misses,
                last_accessed_at = excluded.last_accessed_at""",
            (
                symbol,
                source_type,
                stats_date.isoformat(),
                cache_hits + cache_misses,
                cache_hits,
                cache_misses,
                to_db(now or utcnow()),
            ),
        )
        self.conn.commit()

    def get_usage(self, symbol: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM intelligence_usage_stats WHERE symbol = ? "
            "ORDER BY stats_date DESC",
            (symbol,),
        ).fetchall()
        return [dict(r) for r in rows]

    def hot_symbols(self, since: date, limit: int = 20) -> list[dict]:
        """Most accessed symbols since ``since`` with their cache hit rate (%)."""
        rows = self.conn.execute(
            """SELECT symbol,
                SUM(access_count) AS total_accesses,
                ROUND(
                    SUM(cache_hits) * 100.0
                    / NULLIF(SUM(cache_hits + cache_misses), 0), 2
                ) AS cache_hit_rate,
                MAX(last_accessed_at) AS last_accessed
            FROM intelligence_usage_stats
            WHERE stats_date >= ?
            GROUP BY symbol
            ORDER BY total_accesses DESC
            LIMIT ?""",
            (since.isoformat(), limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def health_summary(self, now: datetime | None = None) -> dict:
        now_s = to_db(now or utcnow())
        row = self.conn.execute(
            """SELECT
                COUNT(*) AS total_cached_entries,
                COALESCE(SUM(CASE WHEN expires_at > ? THEN 1 ELSE 0 END), 0)
                    AS valid_entries,
                COALESCE(SUM(CASE WHEN expires_at <= ? THEN 1 ELSE 0 END), 0)
                    AS expired_entries,
                COUNT(DISTINCT symbol) AS total_symbols
            FROM market_intelligence_cache""",
            (now_s, now_s),
        ).fetchone()
        by_type = {}
        for r in self.conn.execute(
            "SELECT source_type, COUNT(*) AS cnt "
            "FROM market_intelligence_cache GROUP BY source_type"
        ).fetchall():
            by_type[r["source_type"]] = r["cnt"]

        summary = dict(row)
        summary["by_source_type"] = by_type
        return summary

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> CacheEntry:
        d = dict(row)
        source_type = SourceType(d["source_type"])
        payload_type = _PAYLOAD_TYPES[source_type]
        d["source_type"] = source_type
        d["data"] = payload_type.model_validate(json.loads(d["data"]))
        return CacheEntry(**d)
