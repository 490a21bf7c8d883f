"""Local store of embedded historical trade outcomes and research notes."""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from options_intel.models.common import Confidence
from options_intel.models.patterns import (
    HistoricalAnalysis,
    KnowledgeRecord,
    SimilarTrade,
    TradeCriteria,
    TradeOutcome,
)
from options_intel.models.research import WebSearchResult
from options_intel.processing.embedder import BaseEmbedder, HashingEmbedder
from options_intel.search.indexer import SearchIndex
from options_intel.timeutil import age_days, parse_timestamp, to_db, utcnow

logger = logging.getLogger(__name__)

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS trade_embeddings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    trade_id TEXT NOT NULL UNIQUE,
    symbol TEXT NOT NULL,
    strategy_type TEXT NOT NULL,
    embedding BLOB NOT NULL,
    embedding_model TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_trade_embeddings_symbol
    ON trade_embeddings(symbol, created_at DESC);

CREATE TABLE IF NOT EXISTS research_notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL,
    context TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    url TEXT NOT NULL,
    snippet TEXT NOT NULL DEFAULT '',
    score REAL,
    published_at TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(symbol, context, url)
);

CREATE INDEX IF NOT EXISTS idx_research_notes_symbol
    ON research_notes(symbol, context, created_at DESC);
"""

DEFAULT_DB_PATH = Path("data") / "patterns.db"

MATCH_THRESHOLD = 0.75
MATCH_COUNT = 20
KNOWLEDGE_LIMIT = 20


def build_trade_context(
    symbol: str,
    strategy_type: str,
    dte: int | None = None,
    delta: float | None = None,
) -> str:
    """Context text shared by stored outcomes and candidate queries."""
    lines = [f"Symbol: {symbol.upper()}", f"Strategy: {strategy_type}"]
    if dte is not None:
        lines.append(f"DTE: {dte}")
    if delta is not None:
        lines.append(f"Delta: {abs(delta):.2f}")
    return "\n".join(lines)


def _hold_days(metadata: dict) -> float | None:
    entry = parse_timestamp(metadata.get("entry_date"))
    exit_ = parse_timestamp(metadata.get("exit_date"))
    if entry is None or exit_ is None:
        return None
    return max(0.0, (exit_ - entry).total_seconds() / 86400)


class PatternStore:
    """SQLite-backed pattern retrieval over embedded trade outcomes."""

    def __init__(
        self,
        db_path: Path | None = None,
        embedder: BaseEmbedder | None = None,
    ) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self.embedder = embedder or HashingEmbedder()
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
            return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # --- Trade outcomes ---

    def embed_trade_outcome(
        self, trade: TradeOutcome, created_at: datetime | None = None
    ) -> None:
        """Embed a closed trade and store it with its outcome metadata."""
        context = build_trade_context(
            trade.symbol, trade.strategy_type, trade.dte, trade.delta
        )
        embedding = self.embedder.embed(context)
        metadata = trade.model_dump(exclude={"trade_id"})
        metadata["symbol"] = trade.symbol.upper()
        metadata["win"] = trade.win

        self.conn.execute(
            """INSERT INTO trade_embeddings
            (trade_id, symbol, strategy_type, embedding, embedding_model,
             metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(trade_id) DO UPDATE SET
                symbol = excluded.symbol,
                strategy_type = excluded.strategy_type,
                embedding = excluded.embedding,
                embedding_model = excluded.embedding_model,
                metadata = excluded.metadata""",
            (
                trade.trade_id,
                trade.symbol.upper(),
                trade.strategy_type,
                embedding,
                self.embedder.model_name,
                json.dumps(metadata),
                to_db(created_at or utcnow()),
            ),
        )
        self.conn.commit()
        logger.debug("Embedded trade %s (%s)", trade.trade_id, trade.symbol)

    def find_similar_trades(
        self,
        criteria: TradeCriteria,
        match_threshold: float = MATCH_THRESHOLD,
        match_count: int = MATCH_COUNT,
    ) -> list[SimilarTrade]:
        rows = self.conn.execute(
            "SELECT trade_id, embedding, metadata FROM trade_embeddings "
            "WHERE symbol = ?",
            (criteria.symbol.upper(),),
        ).fetchall()
        if not rows:
            return []

        index: SearchIndex[tuple[str, dict]] = SearchIndex()
        index.build(
            [
                ((r["trade_id"], json.loads(r["metadata"])), r["embedding"], None)
                for r in rows
            ]
        )

        query_text = build_trade_context(
            criteria.symbol, criteria.strategy_type, criteria.dte, criteria.delta
        )
        query_vec = BaseEmbedder.from_bytes(self.embedder.embed(query_text))
        hits = index.search(query_vec, top_k=match_count, min_score=match_threshold)

        logger.debug(
            "Found %d similar trades for %s (threshold: %.2f)",
            len(hits),
            criteria.symbol,
            match_threshold,
        )
        return [
            SimilarTrade(trade_id=trade_id, similarity=round(score, 6), metadata=meta)
            for (trade_id, meta), score in hits
        ]

    def analyze_historical_performance(
        self, criteria: TradeCriteria
    ) -> HistoricalAnalysis:
        """Win rate, ROI and hold time across trades similar to ``criteria``."""
        similar = self.find_similar_trades(criteria)
        if not similar:
            return HistoricalAnalysis()

        wins = sum(1 for t in similar if t.metadata.get("win") is True)
        win_rate = wins / len(similar)

        rois = [
            t.metadata["realized_pnl_percent"]
            for t in similar
            if t.metadata.get("realized_pnl_percent") is not None
        ]
        avg_roi = sum(rois) / len(rois) if rois else 0.0

        holds = [h for t in similar if (h := _hold_days(t.metadata)) is not None]
        avg_hold = sum(holds) / len(holds) if holds else 0.0

        avg_similarity = sum(t.similarity for t in similar) / len(similar)
        if len(similar) >= 10 and avg_similarity >= 0.85:
            confidence = Confidence.HIGH
        elif len(similar) >= 5 and avg_similarity >= 0.75:
            confidence = Confidence.MEDIUM
        else:
            confidence = Confidence.LOW

        return HistoricalAnalysis(
            has_data=True,
            trade_count=len(similar),
            win_rate=win_rate,
            avg_roi=avg_roi,
            avg_hold_days=round(avg_hold, 2),
            similar_trades=similar,
            confidence=confidence,
        )

    # --- Knowledge reads for routing ---

    def recent_knowledge(
        self,
        symbol: str,
        context: str,
        max_age_days: float,
        limit: int = KNOWLEDGE_LIMIT,
        now: datetime | None = None,
    ) -> list[KnowledgeRecord]:
        """Newest trade outcomes and research notes for the symbol within the window."""
        now = now or utcnow()
        rows = self.conn.execute(
            """SELECT 'trade' AS kind, trade_id AS ref_id, symbol,
                    '' AS context, metadata, created_at
                FROM trade_embeddings WHERE symbol = ?
            UNION ALL
            SELECT 'research' AS kind, url AS ref_id, symbol, context,
                    json_object('title', title, 'score', score,
                                'published_at', published_at) AS metadata,
                    created_at
                FROM research_notes WHERE symbol = ? AND context = ?
            ORDER BY created_at DESC
            LIMIT ?""",
            (symbol.upper(), symbol.upper(), context, limit),
        ).fetchall()

        records: list[KnowledgeRecord] = []
        for r in rows:
            age = age_days(r["created_at"], now)
            if age is None or age > max_age_days:
                continue
            records.append(
                KnowledgeRecord(
                    kind=r["kind"],
                    ref_id=r["ref_id"],
                    symbol=r["symbol"],
                    context=r["context"],
                    created_at=r["created_at"],
                    age_days=max(0.0, age),
                    metadata=json.loads(r["metadata"]),
                )
            )
        return records

    def store_research(
        self,
        symbol: str,
        context: str,
        results: list[WebSearchResult],
        now: datetime | None = None,
    ) -> int:
        """Persist web-research hits so later queries can be served locally."""
        if not results:
            return 0
        created = to_db(now or utcnow())
        self.conn.executemany(
            """INSERT INTO research_notes
            (symbol, context, title, url, snippet, score, published_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(symbol, context, url) DO UPDATE SET
                title = excluded.title,
                snippet = excluded.snippet,
                score = excluded.score,
                published_at = excluded.published_at,
                created_at = excluded.created_at""",
            [
                (
                    symbol.upper(),
                    context,
                    r.title,
                    r.url,
                    r.snippet,
                    r.score,
                    r.published_at,
                    created,
                )
                for r in results
            ],
        )
        self.conn.commit()
        return len(results)

    def get_status_summary(self) -> dict:
        trades = self.conn.execute(
            "SELECT COUNT(*) FROM trade_embeddings"
        ).fetchone()[0]
        notes = self.conn.execute("SELECT COUNT(*) FROM research_notes").fetchone()[0]
        return {"trade_embeddings": trades, "research_notes": notes}
