"""SQLite index with an FTS5 full-text table over document text.

The database is a derived cache: delete ``knowledge.db`` and rebuild anytime.
``documents`` holds one row per file keyed by relative path; triggers keep
the self-contained ``documents_fts`` table in step with it.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from knowsys.errors import IndexStoreError
from knowsys.index.base import IndexFilters, SearchHit, search_terms
from knowsys.index.records import IndexRecord

logger = logging.getLogger(__name__)

_COLUMNS = (
    "path", "kind", "id", "title", "status", "date", "author",
    "topics", "category", "search_text", "last_synced_at",
)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS documents (
        path TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        id TEXT NOT NULL,
        title TEXT,
        status TEXT,
        date TEXT,
        author TEXT,
        topics TEXT NOT NULL DEFAULT '[]',   -- JSON string array
        category TEXT,
        search_text TEXT NOT NULL DEFAULT '',
        last_synced_at TEXT
    );

    CREATE INDEX IF NOT EXISTS documents_kind_date ON documents(kind, date);

    CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
        search_text,
        title,
        path UNINDEXED
    );

    CREATE TRIGGER IF NOT EXISTS documents_ai AFTER INSERT ON documents BEGIN
        INSERT INTO documents_fts(rowid, search_text, title, path)
        VALUES (new.rowid, new.search_text, new.title, new.path);
    END;
    CREATE TRIGGER IF NOT EXISTS documents_ad AFTER DELETE ON documents BEGIN
        DELETE FROM documents_fts WHERE rowid = old.rowid;
    END;
    CREATE TRIGGER IF NOT EXISTS documents_au AFTER UPDATE ON documents BEGIN
        DELETE FROM documents_fts WHERE rowid = old.rowid;
        INSERT INTO documents_fts(rowid, search_text, title, path)
        VALUES (new.rowid, new.search_text, new.title, new.path);
    END;
"""


def _connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    if db_path.exists() and db_path.stat().st_size == 0:
        raise IndexStoreError(
            "database file is empty, delete it and rebuild", operation="open_index", path=db_path
        )
    try:
        conn = sqlite3.connect(str(db_path))
    except sqlite3.Error as e:
        raise IndexStoreError(f"cannot open database: {e}", operation="open_index", path=db_path) from e
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.executescript(_SCHEMA)
        conn.commit()
    except sqlite3.Error as e:
        conn.close()
        raise IndexStoreError(f"cannot open database: {e}", operation="open_index", path=db_path) from e
    return conn


def _row_to_record(row: tuple, db_path: Path) -> IndexRecord:
    data = dict(zip(_COLUMNS, row))
    try:
        data["topics"] = json.loads(data["topics"] or "[]")
        return IndexRecord.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise IndexStoreError(
            f"malformed row for {data.get('path')!r}: {e}, rebuild required",
            operation="load_index",
            path=db_path,
        ) from e


def _record_params(record: IndexRecord) -> tuple:
    data = record.to_dict()
    data["topics"] = json.dumps(record.topics, ensure_ascii=False)
    return tuple(data[c] for c in _COLUMNS)


def _fts_query(terms: list[str]) -> str:
    return " OR ".join(f'"{t}"*' for t in terms)


class SqliteIndex:
    """Index persisted to ``.knowsys/knowledge.db``."""

    name = "sqlite"

    def __init__(self, path: Path) -> None:
        self.path = path
        self._conn = _connect(path)

    def _execute(self, operation: str, sql: str, params: tuple = ()) -> list[tuple]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise IndexStoreError(str(e), operation=operation, path=self.path) from e

    # ── Reads ─────────────────────────────────────────────────

    def records(self) -> list[IndexRecord]:
        rows = self._execute("records", f"SELECT {', '.join(_COLUMNS)} FROM documents ORDER BY path")
        return [_row_to_record(r, self.path) for r in rows]

    def get(self, path: str) -> IndexRecord | None:
        rows = self._execute(
            "get", f"SELECT {', '.join(_COLUMNS)} FROM documents WHERE path = ?", (path,)
        )
        return _row_to_record(rows[0], self.path) if rows else None

    def select(self, filters: IndexFilters) -> list[IndexRecord]:
        clauses: list[str] = []
        params: list = []
        for column in ("kind", "status", "author"):
            value = getattr(filters, column)
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        if filters.topic:
            clauses.append(
                "(instr(lower(title), ?) > 0 OR EXISTS ("
                "SELECT 1 FROM json_each(documents.topics) WHERE instr(lower(json_each.value), ?) > 0))"
            )
            needle = filters.topic.lower()
            params.extend([needle, needle])
        if filters.category:
            clauses.append("kind = 'learned' AND category = ?")
            params.append(filters.category)
        if filters.keywords:
            marks = ", ".join("?" for _ in filters.keywords)
            clauses.append(
                "kind = 'learned' AND EXISTS ("
                f"SELECT 1 FROM json_each(documents.topics) WHERE json_each.value IN ({marks}))"
            )
            params.extend(filters.keywords)
        if filters.date_after:
            clauses.append("date >= ?")
            params.append(filters.date_after)
        if filters.date_before:
            clauses.append("date <= ?")
            params.append(filters.date_before)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._execute(
            "select",
            f"SELECT {', '.join(_COLUMNS)} FROM documents {where} ORDER BY date DESC, path ASC",
            tuple(params),
        )
        return [_row_to_record(r, self.path) for r in rows]

    def search(
        self, query: str, *, limit: int = 10, kind: str | None = None, snippet_chars: int = 60
    ) -> list[SearchHit]:
        terms = search_terms(query)
        if not terms:
            return []
        # snippet() counts tokens, not characters
        tokens = max(4, min(64, snippet_chars // 4))
        sql = f"""
            SELECT d.kind, d.id, d.title, d.path,
                   snippet(documents_fts, 0, '[', ']', '...', {tokens}),
                   bm25(documents_fts) AS rank
            FROM documents_fts
            JOIN documents d ON d.rowid = documents_fts.rowid
            WHERE documents_fts MATCH ?
        """
        params: list = [_fts_query(terms)]
        if kind:
            sql += " AND d.kind = ?"
            params.append(kind)
        sql += " ORDER BY rank, d.path LIMIT ?"
        params.append(limit)

        rows = self._execute("search", sql, tuple(params))
        return [
            SearchHit(kind=r[0], id=r[1], title=r[2], path=r[3], snippet=r[4], score=-r[5])
            for r in rows
        ]

    # ── Writes ────────────────────────────────────────────────

    def _upsert_sql(self) -> str:
        updates = ", ".join(f"{c} = excluded.{c}" for c in _COLUMNS if c != "path")
        placeholders = ", ".join("?" for _ in _COLUMNS)
        return (
            f"INSERT INTO documents({', '.join(_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT(path) DO UPDATE SET {updates}"
        )

    def rebuild(self, records: list[IndexRecord]) -> None:
        sql = self._upsert_sql()
        try:
            with self._conn:
                self._conn.execute("DELETE FROM documents")
                self._conn.executemany(sql, [_record_params(r) for r in sorted(records, key=lambda r: r.path)])
        except sqlite3.Error as e:
            raise IndexStoreError(str(e), operation="rebuild", path=self.path) from e
        logger.info("Rebuilt SQLite index with %d records", len(records))

    def upsert(self, record: IndexRecord) -> None:
        try:
            with self._conn:
                self._conn.execute(self._upsert_sql(), _record_params(record))
        except sqlite3.Error as e:
            raise IndexStoreError(str(e), operation="upsert", path=self.path) from e

    def remove(self, path: str) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM documents WHERE path = ?", (path,))
        except sqlite3.Error as e:
            raise IndexStoreError(str(e), operation="remove", path=self.path) from e

    def close(self) -> None:
        self._conn.close()
