"""
SQLite persistence gateway for Trend Terminal.

Stores normalized content (one row per natural key), search sessions and the
links between them. Vector search loads stored embeddings and ranks them by
L2 distance with numpy.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from adapter.models import (
    ContentItem,
    Platform,
    TrendQuery,
    TIMEFRAME_DELTAS,
)

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

DEFAULT_TRENDING_WINDOW = "7d"


class StoreError(Exception):
    """Raised when a persistence operation fails."""
    def __init__(self, message: str, operation: str = None):
        super().__init__(message)
        self.operation = operation


# Fixed-width timestamps so that text comparison matches time order
ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def _utcnow_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _casefold(value: Optional[str]) -> Optional[str]:
    # SQLite LIKE only folds ASCII
    return value.casefold() if value is not None else None


class TrendStore:
    """
    Persistence gateway backed by a SQLite file.

    Each operation opens its own connection, so a store can be shared by the
    request path and the background persistence worker.
    """

    def __init__(self, db_path: str = "trends.sqlite3"):
        self.db_path = str(db_path)
        self.init_db()

    def init_db(self, reset: bool = False) -> None:
        """
        Initialize the database with schema.

        Args:
            reset: If True, drops all existing tables and recreates them.
        """
        with sqlite3.connect(self.db_path) as conn:
            if reset:
                conn.execute("DROP TABLE IF EXISTS trend_query_content")
                conn.execute("DROP TABLE IF EXISTS trend_queries")
                conn.execute("DROP TABLE IF EXISTS content_items")

            with open(SCHEMA_PATH) as f:
                conn.executescript(f.read())
            conn.commit()

    @contextmanager
    def get_db(self, operation: str = "query"):
        """Context manager for one connection / transaction."""
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"{operation} failed: {e}", operation=operation) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> ContentItem:
        return ContentItem(
            id=row["id"],
            platform_id=row["platform_id"],
            platform=row["platform"],
            author=row["author"],
            content=row["content"],
            title=row["title"],
            metrics=json.loads(row["metrics"] or "{}"),
            link=row["link"],
            thumbnail=row["thumbnail"],
            published_at=datetime.fromisoformat(row["published_at"]),
            ingested_at=datetime.fromisoformat(row["ingested_at"]),
            momentum_score=row["momentum_score"],
            embedding=json.loads(row["embedding"]) if row["embedding"] else None,
        )

    @staticmethod
    def _row_to_query(row: sqlite3.Row) -> TrendQuery:
        return TrendQuery(
            id=row["id"],
            keyword=row["keyword"],
            platforms=json.loads(row["platforms"]),
            timeframe=row["timeframe"],
            lang=row["lang"],
            region=row["region"],
            user_id=row["user_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # Content

    def vector_search(self, embedding: Sequence[float], candidate_limit: int = 100) -> List[ContentItem]:
        """
        Stored items nearest to the embedding by L2 distance (ascending).

        Rows without an embedding, or with a different dimension, are skipped.
        """
        query = np.asarray(embedding, dtype=np.float32)

        with self.get_db("vector_search") as db:
            rows = db.execute(
                "SELECT * FROM content_items WHERE embedding IS NOT NULL"
            ).fetchall()

        candidates = []
        vectors = []
        for row in rows:
            vector = json.loads(row["embedding"])
            if len(vector) != query.shape[0]:
                continue
            candidates.append(row)
            vectors.append(vector)

        if not candidates:
            return []

        matrix = np.asarray(vectors, dtype=np.float32)
        distances = np.linalg.norm(matrix - query, axis=1)
        order = np.argsort(distances, kind="stable")[:candidate_limit]

        return [self._row_to_item(candidates[i]) for i in order]

    def lexical_search(self, keyword: str, limit: int = 100) -> List[ContentItem]:
        """Case-insensitive substring match on title or content, by momentum."""
        pattern = f"%{_escape_like(keyword.strip().casefold())}%"
        with self.get_db("lexical_search") as db:
            rows = db.execute(
                """SELECT * FROM content_items
                   WHERE casefold(content) LIKE ? ESCAPE '\\'
                      OR casefold(title) LIKE ? ESCAPE '\\'
                   ORDER BY momentum_score DESC
                   LIMIT ?""",
                (pattern, pattern, limit),
            ).fetchall()
        return [self._row_to_item(row) for row in rows]

    def upsert_content(self, item: ContentItem, embedding: Optional[List[float]] = None) -> str:
        """
        Insert a new item or refresh the volatile fields of an existing one.

        On conflict only metrics, momentum_score, embedding (kept when the new
        one is absent) and updated_at change.

        Returns:
            The stored item's id (the existing id on conflict)
        """
        stored = item.truncated()
        vector = embedding if embedding is not None else stored.embedding
        now = _utcnow_iso()

        with self.get_db("upsert_content") as db:
            db.execute(
                """INSERT INTO content_items
                   (id, platform, platform_id, author, content, title, metrics, link,
                    thumbnail, published_at, ingested_at, updated_at, momentum_score, embedding)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(platform, platform_id) DO UPDATE SET
                   metrics = excluded.metrics,
                   momentum_score = excluded.momentum_score,
                   embedding = COALESCE(excluded.embedding, content_items.embedding),
                   updated_at = excluded.updated_at""",
                (
                    stored.id,
                    stored.platform.value,
                    stored.platform_id,
                    stored.author,
                    stored.content,
                    stored.title,
                    json.dumps(stored.metrics),
                    stored.link,
                    stored.thumbnail,
                    _to_iso(stored.published_at),
                    _to_iso(stored.ingested_at),
                    now,
                    stored.momentum_score,
                    json.dumps(vector) if vector is not None else None,
                ),
            )
            row = db.execute(
                "SELECT id FROM content_items WHERE platform = ? AND platform_id = ?",
                (stored.platform.value, stored.platform_id),
            ).fetchone()
            return row["id"]

    def exists_by_key(self, platform: Platform, platform_id: str) -> bool:
        with self.get_db("exists_by_key") as db:
            row = db.execute(
                "SELECT 1 FROM content_items WHERE platform = ? AND platform_id = ?",
                (Platform(platform).value, platform_id),
            ).fetchone()
            return row is not None

    def get_content_by_key(self, platform: Platform, platform_id: str) -> Optional[ContentItem]:
        with self.get_db("get_content_by_key") as db:
            row = db.execute(
                "SELECT * FROM content_items WHERE platform = ? AND platform_id = ?",
                (Platform(platform).value, platform_id),
            ).fetchone()
            return self._row_to_item(row) if row else None

    # Search sessions

    def insert_trend_query(self, record: TrendQuery) -> str:
        """Write a search session record (write-once). Returns its id."""
        with self.get_db("insert_trend_query") as db:
            db.execute(
                """INSERT INTO trend_queries
                   (id, keyword, platforms, timeframe, lang, region, user_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.keyword,
                    json.dumps([p.value for p in record.platforms]),
                    record.timeframe,
                    record.lang,
                    record.region,
                    record.user_id,
                    _to_iso(record.created_at),
                ),
            )
        return record.id

    def link_trend_content(self, trend_id: str, content_id: str, platform: Platform) -> None:
        """Associate a stored item with the search session that surfaced it."""
        with self.get_db("link_trend_content") as db:
            db.execute(
                """INSERT OR IGNORE INTO trend_query_content
                   (trend_id, content_id, platform, created_at)
                   VALUES (?, ?, ?, ?)""",
                (trend_id, content_id, Platform(platform).value, _utcnow_iso()),
            )

    def get_trend_content_ids(self, trend_id: str) -> List[str]:
        with self.get_db("get_trend_content_ids") as db:
            rows = db.execute(
                "SELECT content_id FROM trend_query_content WHERE trend_id = ? ORDER BY created_at",
                (trend_id,),
            ).fetchall()
            return [row["content_id"] for row in rows]

    def trend_history(self, user_id: str, limit: int = 20) -> List[TrendQuery]:
        """A user's past searches, newest first."""
        with self.get_db("trend_history") as db:
            rows = db.execute(
                """SELECT * FROM trend_queries
                   WHERE user_id = ?
                   ORDER BY created_at DESC
                   LIMIT ?""",
                (user_id, limit),
            ).fetchall()
        return [self._row_to_query(row) for row in rows]

    def top_keywords_in_window(self, window: str = DEFAULT_TRENDING_WINDOW, limit: int = 10) -> List[str]:
        """
        Most searched keywords within a window, most frequent first.

        Unknown windows fall back to 7d.
        """
        delta = TIMEFRAME_DELTAS.get(window, TIMEFRAME_DELTAS[DEFAULT_TRENDING_WINDOW])
        cutoff = _to_iso(datetime.now(timezone.utc) - delta)

        with self.get_db("top_keywords_in_window") as db:
            rows = db.execute(
                """SELECT keyword, COUNT(*) AS searches, MAX(created_at) AS last_searched
                   FROM trend_queries
                   WHERE created_at >= ?
                   GROUP BY keyword
                   ORDER BY searches DESC, last_searched DESC
                   LIMIT ?""",
                (cutoff, limit),
            ).fetchall()
        return [row["keyword"] for row in rows]

    def get_stats(self) -> Dict[str, Any]:
        """Row counts per table, for health reporting."""
        with self.get_db("get_stats") as db:
            return {
                "content_items": db.execute("SELECT COUNT(*) FROM content_items").fetchone()[0],
                "trend_queries": db.execute("SELECT COUNT(*) FROM trend_queries").fetchone()[0],
                "trend_links": db.execute("SELECT COUNT(*) FROM trend_query_content").fetchone()[0],
            }


__all__ = ["TrendStore", "StoreError", "DEFAULT_TRENDING_WINDOW"]
