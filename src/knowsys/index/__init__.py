"""Secondary index over the document corpus.

Two tiers share one interface:
    JsonIndex    .knowsys/context-index.json   small corpora, diff-friendly
    SqliteIndex  .knowsys/knowledge.db         FTS5 ranked search

Both are rebuildable from the markdown files at any time.
"""

from __future__ import annotations

import logging
from pathlib import Path

from knowsys.config import KnowsysConfig
from knowsys.index.base import IndexBackend, IndexFilters, SearchHit, search_terms
from knowsys.index.json_store import JsonIndex
from knowsys.index.records import IndexRecord, project, sort_records
from knowsys.index.sqlite_store import SqliteIndex

logger = logging.getLogger(__name__)

JSON_INDEX_FILE = "context-index.json"
SQLITE_INDEX_FILE = "knowledge.db"

__all__ = [
    "IndexBackend",
    "IndexFilters",
    "IndexRecord",
    "JsonIndex",
    "SearchHit",
    "SqliteIndex",
    "index_path",
    "open_index",
    "project",
    "resolve_backend",
    "search_terms",
    "sort_records",
]


def resolve_backend(config: KnowsysConfig, doc_count: int) -> str:
    """Pick "json" or "sqlite" for the configured backend and corpus size."""
    backend = config.index.backend
    if backend != "auto":
        return backend
    if (config.data_dir / SQLITE_INDEX_FILE).exists():
        return "sqlite"
    return "sqlite" if doc_count >= config.index.sqlite_threshold else "json"


def index_path(config: KnowsysConfig, name: str) -> Path:
    return config.data_dir / (SQLITE_INDEX_FILE if name == "sqlite" else JSON_INDEX_FILE)


def open_index(config: KnowsysConfig, doc_count: int = 0) -> IndexBackend:
    name = resolve_backend(config, doc_count)
    logger.debug("Opening %s index (%d documents)", name, doc_count)
    if name == "sqlite":
        return SqliteIndex(index_path(config, name))
    return JsonIndex(index_path(config, name))
