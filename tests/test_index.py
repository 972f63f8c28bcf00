"""Tests for the JSON and SQLite index tiers."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

from knowsys.config import IndexConfig, KnowsysConfig
from knowsys.document import Document, DocumentKind
from knowsys.errors import IndexStoreError, ValidationError
from knowsys.index import (
    IndexBackend,
    IndexFilters,
    JsonIndex,
    SqliteIndex,
    open_index,
    project,
    resolve_backend,
    search_terms,
)
from knowsys.index import sqlite_store
from knowsys.store import KnowledgeStore


def _populate(store: KnowledgeStore) -> None:
    store.create_session("Auth work", ["authentication", "cookies"], date="2026-02-10")
    store.create_session("Cache tuning", ["performance"], date="2026-02-12")
    store.create_plan("Auth Flow", author="alice", topics=["authentication"], status="ACTIVE")
    store.create_pattern("Retry flaky HTTP calls", "network", ["retry", "http"], "Wrap requests in exponential backoff.")
    path = store.resolve("session", "2026-02-10")
    store.append(path, "Progress", "Replaced the session cookie with a signed token")


def _open(store: KnowledgeStore) -> IndexBackend:
    return open_index(store.config, len(store.document_paths()))


class TestRebuild:
    def test_rebuild_is_idempotent(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        backend_store.rebuild_index()
        index = _open(backend_store)
        first = index.records()
        index.close()
        json_file = backend_store.data_dir / "context-index.json"
        first_bytes = json_file.read_bytes() if json_file.exists() else None

        backend_store.rebuild_index()
        index = _open(backend_store)
        assert index.records() == first
        index.close()
        if first_bytes is not None:
            assert json_file.read_bytes() == first_bytes

    def test_incremental_matches_rebuild(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        index = _open(backend_store)
        incremental = index.records()
        index.close()

        backend_store.rebuild_index()
        index = _open(backend_store)
        assert index.records() == incremental
        index.close()

    def test_records_project_documents(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        index = _open(backend_store)
        by_kind = {r.kind: r for r in index.records()}
        index.close()

        plan = by_kind["plan"]
        assert plan.id == "auth_flow"
        assert plan.path == ".knowsys/plans/PLAN_auth_flow.md"
        assert plan.author == "alice"
        assert plan.status == "ACTIVE"
        learned = by_kind["learned"]
        assert learned.topics == ["retry", "http"]
        assert learned.category == "network"
        assert "exponential backoff" in learned.search_text

    def test_invalid_documents_are_skipped(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        bad = backend_store.kind_dir("session") / "2026-01-01-session.md"
        bad.write_text("no frontmatter\n", encoding="utf-8")
        result = backend_store.rebuild_index()
        assert result["indexed"] == 4
        assert result["skipped"][0]["path"] == ".knowsys/sessions/2026-01-01-session.md"

    def test_missing_index_is_rebuilt_on_query(self, store: KnowledgeStore):
        _populate(store)
        (store.data_dir / "context-index.json").unlink()
        assert store.query()["count"] == 4


class TestSelect:
    def test_filters(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        index = _open(backend_store)
        try:
            assert len(index.select(IndexFilters(kind="session"))) == 2
            assert sorted(r.kind for r in index.select(IndexFilters(topic="AUTH"))) == ["plan", "session"]
            dated = index.select(IndexFilters(kind="session", date_after="2026-02-11"))
            assert [r.date for r in dated] == ["2026-02-12"]
        finally:
            index.close()

    def test_category_and_keywords(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        backend_store.create_plan("Net plan", author="bob", topics=["retry"])
        index = _open(backend_store)
        try:
            assert [r.id for r in index.select(IndexFilters(category="network"))] == ["retry-flaky-http-calls"]
            assert index.select(IndexFilters(category="storage")) == []
            by_keyword = index.select(IndexFilters(keywords=["retry", "unused"]))
            assert [r.kind for r in by_keyword] == ["learned"]
            assert index.select(IndexFilters(keywords=["RETRY"])) == []
        finally:
            index.close()

    def test_newest_first(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        index = _open(backend_store)
        try:
            dates = [r.date for r in index.select(IndexFilters(kind="session"))]
        finally:
            index.close()
        assert dates == ["2026-02-12", "2026-02-10"]

    def test_remove(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        index = _open(backend_store)
        try:
            index.remove(".knowsys/plans/PLAN_auth_flow.md")
            assert index.get(".knowsys/plans/PLAN_auth_flow.md") is None
            assert len(index.records()) == 3
        finally:
            index.close()


class TestSearch:
    def test_finds_term_case_insensitively(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        hits = backend_store.search("COOKIE")["hits"]
        assert {h["path"] for h in hits} == {".knowsys/sessions/2026-02-10-session.md"}
        assert "[" in hits[0]["snippet"] and "]" in hits[0]["snippet"]
        assert hits[0]["score"] > 0

    def test_prefix_match(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        hits = backend_store.search("expon")["hits"]
        assert [h["kind"] for h in hits] == ["learned"]

    def test_never_returns_whole_documents(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        hit = backend_store.search("backoff")["hits"][0]
        assert set(hit) == {"kind", "id", "title", "path", "snippet", "score"}

    def test_kind_filter_and_limit(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        assert backend_store.search("auth", kind="plan")["count"] == 1
        assert backend_store.search("auth", limit=1)["count"] == 1

    def test_stopwords_only(self, backend_store: KnowledgeStore):
        _populate(backend_store)
        assert backend_store.search("the and of")["hits"] == []

    def test_search_terms(self):
        assert search_terms("How to retry the HTTP call, retry!") == ["retry", "http", "call"]


class TestBackendSelection:
    def test_explicit(self, tmp_path: Path):
        config = KnowsysConfig(root=tmp_path, index=IndexConfig(backend="sqlite"))
        assert resolve_backend(config, 0) == "sqlite"

    def test_auto_threshold(self, tmp_path: Path):
        config = KnowsysConfig(root=tmp_path, index=IndexConfig(backend="auto", sqlite_threshold=3))
        assert resolve_backend(config, 2) == "json"
        assert resolve_backend(config, 3) == "sqlite"

    def test_auto_sticks_with_existing_database(self, tmp_path: Path):
        config = KnowsysConfig(root=tmp_path, index=IndexConfig(backend="auto"))
        SqliteIndex(config.data_dir / "knowledge.db").close()
        assert resolve_backend(config, 0) == "sqlite"

    def test_backends_satisfy_protocol(self, tmp_path: Path):
        json_index = JsonIndex(tmp_path / "i.json")
        sqlite_index = SqliteIndex(tmp_path / "i.db")
        try:
            assert isinstance(json_index, IndexBackend)
            assert isinstance(sqlite_index, IndexBackend)
        finally:
            sqlite_index.close()

    def test_auto_switches_to_sqlite_as_corpus_grows(self, tmp_path: Path):
        config = KnowsysConfig(root=tmp_path, index=IndexConfig(backend="auto", sqlite_threshold=2))
        store = KnowledgeStore(config=config)
        store.init_corpus()
        store.create_session("one", ["a"], date="2026-02-01")
        assert not (store.data_dir / "knowledge.db").exists()
        store.create_session("two", ["b"], date="2026-02-02")
        assert (store.data_dir / "knowledge.db").exists()
        assert store.query()["count"] == 2


@pytest.mark.parametrize("backend", ["json", "sqlite"])
def test_corrupt_index_reports_store_error(tmp_path: Path, backend: str):
    config = KnowsysConfig(root=tmp_path, index=IndexConfig(backend=backend))
    config.data_dir.mkdir(parents=True)
    name = "context-index.json" if backend == "json" else "knowledge.db"
    (config.data_dir / name).write_text("")
    with pytest.raises(IndexStoreError):
        index = open_index(config)
        index.records()


def test_malformed_json_record_reports_store_error(tmp_path: Path):
    path = tmp_path / "context-index.json"
    path.write_text(json.dumps({"version": 1, "records": [{"kind": "session"}]}), encoding="utf-8")
    with pytest.raises(IndexStoreError):
        JsonIndex(path).records()


def test_unsaved_document_cannot_be_projected(tmp_path: Path):
    doc = Document(DocumentKind.SESSION, {"date": "2026-02-14", "topics": [], "status": "complete"})
    with pytest.raises(ValidationError) as exc:
        project(doc, tmp_path)
    assert exc.value.field == "path"


class _BrokenConnection:
    closed = False

    def execute(self, sql, *args):
        raise sqlite3.OperationalError("disk I/O error")

    def close(self):
        self.closed = True


def test_failed_open_closes_connection(tmp_path: Path, monkeypatch):
    conn = _BrokenConnection()
    monkeypatch.setattr(sqlite_store.sqlite3, "connect", lambda *args, **kwargs: conn)
    with pytest.raises(IndexStoreError):
        SqliteIndex(tmp_path / "knowledge.db")
    assert conn.closed
