"""Remote market-intelligence store: earnings transcripts, news and ticker sentiment."""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

from options_intel.timeutil import to_db, utcnow

logger = logging.getLogger(__name__)

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS earnings_transcript_embeddings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL,
    quarter TEXT NOT NULL,
    fiscal_year INTEGER NOT NULL,
    fiscal_date_ending TEXT NOT NULL,
    transcript_text TEXT NOT NULL,
    embedding BLOB,
    created_at TEXT NOT NULL,
    UNIQUE(symbol, fiscal_year, quarter)
);

CREATE TABLE IF NOT EXISTS market_news_embeddings (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    summary TEXT NOT NULL DEFAULT '',
    url TEXT NOT NULL DEFAULT '',
    time_published TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT '',
    overall_sentiment_score REAL NOT NULL DEFAULT 0,
    overall_sentiment_label TEXT NOT NULL DEFAULT 'Neutral',
    topics TEXT NOT NULL DEFAULT '[]',
    embedding BLOB,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS market_news_ticker_sentiment (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    article_id TEXT NOT NULL,
    ticker TEXT NOT NULL,
    relevance_score REAL NOT NULL DEFAULT 0,
    ticker_sentiment_score REAL,
    ticker_sentiment_label TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(article_id, ticker)
);

CREATE INDEX IF NOT EXISTS idx_ticker_sentiment_lookup
    ON market_news_ticker_sentiment(ticker, created_at, relevance_score DESC);
CREATE INDEX IF NOT EXISTS idx_transcripts_symbol
    ON earnings_transcript_embeddings(symbol, fiscal_year DESC, quarter DESC);
"""

DEFAULT_DB_PATH = Path("data") / "market_intelligence.db"


class TranscriptRow(BaseModel):
    id: int | None = None
    symbol: str
    quarter: str
    fiscal_year: int
    fiscal_date_ending: str
    transcript_text: str
    created_at: str | None = None


class NewsArticleRow(BaseModel):
    id: str
    title: str
    summary: str = ""
    url: str = ""
    time_published: str
    source: str = ""
    overall_sentiment_score: float = 0.0
    overall_sentiment_label: str = "Neutral"
    topics: list[dict] = []
    created_at: str | None = None


class TickerSentimentRow(BaseModel):
    article_id: str
    ticker: str
    relevance_score: float = 0.0
    ticker_sentiment_score: float | None = None
    ticker_sentiment_label: str | None = None
    created_at: str | None = None


class MarketIntelStore(Protocol):
    """Read contract the intelligence service depends on."""

    def fetch_transcripts(self, symbol: str, limit: int) -> list[TranscriptRow]:
        """Most recent transcripts, ordered (fiscal_year desc, quarter desc)."""
        ...

    def fetch_ticker_sentiment(
        self, symbol: str, since: datetime, limit: int
    ) -> list[TickerSentimentRow]:
        """Sentiment rows created since ``since``, ordered relevance desc."""
        ...

    def fetch_articles(self, article_ids: list[str]) -> list[NewsArticleRow]:
        """Full articles for the ids, ordered time_published desc."""
        ...

    def transcript_embeddings(
        self, symbol: str | None
    ) -> list[tuple[TranscriptRow, bytes]]: ...

    def news_embeddings(
        self, symbol: str | None, since: datetime
    ) -> list[tuple[NewsArticleRow, bytes]]: ...

    def health_check(self) -> dict: ...


class SQLiteMarketIntelStore:
    """SQLite implementation of :class:`MarketIntelStore`."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.Lock()

    @property
    def conn(self) -> sqlite3.Connection:
        with self._conn_lock:
            if self._conn is None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(
                    str(self.db_path), check_same_thread=False
                )
                self._conn.row_factory = sqlite3.Row
                self._conn.execute("PRAGMA journal_mode=WAL")
                cursor = self._conn.executescript(SCHEMA_SQL)
                cursor.close()
                self._conn.commit()
                logger.info(
                    "Connected to market intelligence database %s", self.db_path
                )
            return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # --- Reads ---

    def fetch_transcripts(self, symbol: str, limit: int) -> list[TranscriptRow]:
        rows = self.conn.execute(
            """SELECT id, symbol, quarter, fiscal_year, fiscal_date_ending,
                transcript_text, created_at
            FROM earnings_transcript_embeddings
            WHERE symbol = ?
            ORDER BY fiscal_year DESC, quarter DESC
            LIMIT ?""",
            (symbol, limit),
        ).fetchall()
        return [TranscriptRow(**dict(r)) for r in rows]

    def fetch_ticker_sentiment(
        self, symbol: str, since: datetime, limit: int
    ) -> list[TickerSentimentRow]:
        rows = self.conn.execute(
            """SELECT article_id, ticker, relevance_score, ticker_sentiment_score,
                ticker_sentiment_label, created_at
            FROM market_news_ticker_sentiment
            WHERE ticker = ? AND created_at >= ?
            ORDER BY relevance_score DESC
            LIMIT ?""",
            (symbol, to_db(since), limit),
        ).fetchall()
        return [TickerSentimentRow(**dict(r)) for r in rows]

    def fetch_articles(self, article_ids: list[str]) -> list[NewsArticleRow]:
        if not article_ids:
            return []
        placeholders = ", ".join("?" for _ in article_ids)
        rows = self.conn.execute(
            f"""SELECT id, title, summary, url, time_published, source,
                overall_sentiment_score, overall_sentiment_label, topics, created_at
            FROM market_news_embeddings
            WHERE id IN ({placeholders})
            ORDER BY time_published DESC""",
            article_ids,
        ).fetchall()
        return [self._article(r) for r in rows]

    def transcript_embeddings(
        self, symbol: str | None
    ) -> list[tuple[TranscriptRow, bytes]]:
        query = (
            "SELECT id, symbol, quarter, fiscal_year, fiscal_date_ending, "
            "transcript_text, created_at, embedding "
            "FROM earnings_transcript_embeddings WHERE embedding IS NOT NULL"
        )
        params: list = []
        if symbol:
            query += " AND symbol = ?"
            params.append(symbol)
        results = []
        for r in self.conn.execute(query, params).fetchall():
            d = dict(r)
            emb = d.pop("embedding")
            results.append((TranscriptRow(**d), emb))
        return results

    def news_embeddings(
        self, symbol: str | None, since: datetime
    ) -> list[tuple[NewsArticleRow, bytes]]:
        query = (
            "SELECT DISTINCT n.* FROM market_news_embeddings n "
            "LEFT JOIN market_news_ticker_sentiment s ON s.article_id = n.id "
            "WHERE n.embedding IS NOT NULL AND n.created_at >= ?"
        )
        params: list = [to_db(since)]
        if symbol:
            query += " AND s.ticker = ?"
            params.append(symbol)
        results = []
        for r in self.conn.execute(query, params).fetchall():
            emb = r["embedding"]
            results.append((self._article(r), emb))
        return results

    def health_check(self) -> dict:
        """Connection status plus row counts for each table."""
        try:
            stats = {
                "earnings_transcripts": self._count("earnings_transcript_embeddings"),
                "market_news": self._count("market_news_embeddings"),
                "ticker_sentiment": self._count("market_news_ticker_sentiment"),
            }
        except sqlite3.Error as e:
            logger.error("Market intelligence health check failed: %s", e)
            return {"connected": False, "error": str(e)}
        return {"connected": True, "stats": stats}

    def _count(self, table: str) -> int:
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    @staticmethod
    def _article(row: sqlite3.Row) -> NewsArticleRow:
        d = dict(row)
        d.pop("embedding", None)
        d["topics"] = json.loads(d.get("topics") or "[]")
        return NewsArticleRow(**d)

    # --- Ingest ---

    def insert_transcripts(
        self,
        rows: list[TranscriptRow],
        embeddings: list[bytes | None] | None = None,
    ) -> None:
        embeddings = embeddings or [None] * len(rows)
        now = to_db(utcnow())
        self.conn.executemany(
            """INSERT OR REPLACE INTO earnings_transcript_embeddings
            (symbol, quarter, fiscal_year, fiscal_date_ending, transcript_text,
             embedding, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    t.symbol,
                    t.quarter,
                    t.fiscal_year,
                    t.fiscal_date_ending,
                    t.transcript_text,
                    emb,
                    t.created_at or now,
                )
                for t, emb in zip(rows, embeddings, strict=True)
            ],
        )
        self.conn.commit()

    def insert_articles(
        self,
        rows: list[NewsArticleRow],
        embeddings: list[bytes | None] | None = None,
    ) -> None:
        embeddings = embeddings or [None] * len(rows)
        now = to_db(utcnow())
        self.conn.executemany(
            """INSERT OR REPLACE INTO market_news_embeddings
            (id, title, summary, url, time_published, source,
             overall_sentiment_score, overall_sentiment_label, topics,
             embedding, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    a.id,
                    a.title,
                    a.summary,
                    a.url,
                    a.time_published,
                    a.source,
                    a.overall_sentiment_score,
                    a.overall_sentiment_label,
                    json.dumps(a.topics),
                    emb,
                    a.created_at or now,
                )
                for a, emb in zip(rows, embeddings, strict=True)
            ],
        )
        self.conn.commit()

    def insert_ticker_sentiment(self, rows: list[TickerSentimentRow]) -> None:
        now = to_db(utcnow())
        self.conn.executemany(
            """INSERT OR REPLACE INTO market_news_ticker_sentiment
            (article_id, ticker, relevance_score, ticker_sentiment_score,
             ticker_sentiment_label, created_at)
            VALUES (?, ?, ?, ?, ?, ?)""",
            [
                (
                    s.article_id,
                    s.ticker,
                    s.relevance_score,
                    s.ticker_sentiment_score,
                    s.ticker_sentiment_label,
                    s.created_at or now,
                )
                for s in rows
            ],
        )
        self.conn.commit()
