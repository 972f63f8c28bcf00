"""Tests for progressive-detail queries."""

from __future__ import annotations

import json
from datetime import date

import pytest

from knowsys.errors import AmbiguousTargetError, NotFoundError, ValidationError
from knowsys.query import QueryFilters
from knowsys.store import KnowledgeStore

NOW = date(2026, 2, 14)


@pytest.fixture
def corpus(backend_store: KnowledgeStore) -> KnowledgeStore:
    s = backend_store
    s.create_session("Kickoff", ["planning"], date="2026-02-01", author="alice")
    s.create_session("Auth work", ["authentication"], date="2026-02-10", author="bob")
    s.create_session("Cache tuning", ["performance", "authentication"], date="2026-02-13", author="alice")
    s.append(s.resolve("session", "2026-02-10"), "Progress", "Token refresh done")
    s.set_metadata_field(s.resolve("session", "2026-02-01"), "status", "complete")
    return s


def _size(result: dict) -> int:
    return len(json.dumps(result))


class TestModes:
    def test_metadata_is_default(self, corpus: KnowledgeStore):
        result = corpus.query(QueryFilters(kind="session"))
        assert result["mode"] == "metadata"
        assert result["count"] == 3
        assert all("search_text" not in r for r in result["records"])
        assert all("content" not in r for r in result["records"])

    def test_preview(self, corpus: KnowledgeStore):
        result = corpus.query(QueryFilters(kind="session"), mode="preview")
        assert result == {
            "mode": "preview",
            "count": 3,
            "date_range": {"earliest": "2026-02-01", "latest": "2026-02-13"},
            "status_counts": {"complete": 1, "in-progress": 2},
            "topics": ["authentication", "performance", "planning"],
        }

    def test_preview_without_matches(self, corpus: KnowledgeStore):
        result = corpus.query(QueryFilters(kind="session", author="nobody"), mode="preview")
        assert result == {"mode": "preview", "count": 0}

    def test_preview_caps_topics(self, store: KnowledgeStore):
        store.create_session("Many", [f"t{i:02d}" for i in range(15)], date="2026-02-01")
        assert len(store.query(mode="preview")["topics"]) == 10

    def test_section(self, corpus: KnowledgeStore):
        result = corpus.query(QueryFilters(kind="session", author="bob"), mode="section", section="Progress")
        assert result["record"]["author"] == "bob"
        assert result["section"] == {"heading": "## Progress", "content": "## Progress\nToken refresh done"}

    def test_section_needs_single_document(self, corpus: KnowledgeStore):
        with pytest.raises(AmbiguousTargetError) as exc:
            corpus.query(QueryFilters(author="alice"), mode="section", section="Goal")
        assert len(exc.value.matches) == 2

    def test_section_without_matches(self, corpus: KnowledgeStore):
        with pytest.raises(NotFoundError):
            corpus.query(QueryFilters(author="nobody"), mode="section", section="Goal")

    def test_section_needs_pattern(self, corpus: KnowledgeStore):
        with pytest.raises(ValidationError) as exc:
            corpus.query(QueryFilters(author="bob"), mode="section")
        assert exc.value.field == "section"

    def test_full_reads_document_text(self, corpus: KnowledgeStore):
        result = corpus.query(QueryFilters(author="bob"), mode="full")
        content = result["records"][0]["content"]
        assert content.startswith("---\n")
        assert "Token refresh done" in content

    def test_unknown_mode(self, corpus: KnowledgeStore):
        with pytest.raises(ValidationError):
            corpus.query(mode="everything")

    def test_sizes_grow_with_detail(self, corpus: KnowledgeStore):
        filters = QueryFilters(author="bob")
        sizes = [
            _size(corpus.query(filters, mode="preview")),
            _size(corpus.query(filters, mode="metadata")),
            _size(corpus.query(filters, mode="section", section="Progress")),
            _size(corpus.query(filters, mode="full")),
        ]
        assert sizes == sorted(sizes)

    def test_preview_size_independent_of_corpus(self, store: KnowledgeStore):
        store.create_session("a", ["x"], date="2026-02-01")
        small = _size(store.query(mode="preview"))
        for day in range(2, 10):
            store.create_session("b", ["x"], date=f"2026-02-{day:02d}")
        assert _size(store.query(mode="preview")) == small


class TestFilters:
    def test_when_phrase(self, corpus: KnowledgeStore):
        result = corpus.query(QueryFilters(kind="session", when="last week"), now=NOW)
        assert [r["date"] for r in result["records"]] == ["2026-02-13", "2026-02-10"]

    def test_phrase_wins_over_explicit_dates(self, corpus: KnowledgeStore):
        filters = QueryFilters(kind="session", when="last week", date_after="2026-02-11")
        result = corpus.query(filters, now=NOW)
        assert [r["date"] for r in result["records"]] == ["2026-02-13", "2026-02-10"]

    def test_last_wins_over_explicit_dates(self, corpus: KnowledgeStore):
        filters = QueryFilters(kind="session", last=2, unit="days", date_before="2026-02-01")
        result = corpus.query(filters, now=NOW)
        assert [r["date"] for r in result["records"]] == ["2026-02-13"]

    def test_explicit_dates_without_relative_range(self, corpus: KnowledgeStore):
        result = corpus.query(QueryFilters(kind="session", date_after="2026-02-11"))
        assert [r["date"] for r in result["records"]] == ["2026-02-13"]

    def test_last_months_are_calendar_months(self, corpus: KnowledgeStore):
        result = corpus.query(QueryFilters(kind="session", last=1, unit="months"), now=date(2026, 3, 3))
        assert [r["date"] for r in result["records"]] == ["2026-02-13", "2026-02-10"]

    def test_last_n_units(self, corpus: KnowledgeStore):
        result = corpus.query(QueryFilters(kind="session", last=2, unit="days"), now=NOW)
        assert [r["date"] for r in result["records"]] == ["2026-02-13"]

    def test_inclusive_bounds(self, corpus: KnowledgeStore):
        result = corpus.query(QueryFilters(date_after="2026-02-10", date_before="2026-02-10"))
        assert result["count"] == 1

    def test_status_and_author(self, corpus: KnowledgeStore):
        result = corpus.query(QueryFilters(author="alice", status="in-progress"))
        assert [r["date"] for r in result["records"]] == ["2026-02-13"]

    def test_topic_substring(self, corpus: KnowledgeStore):
        assert corpus.query(QueryFilters(topic="authent"))["count"] == 2

    def test_unrecognised_phrase_is_no_filter(self, corpus: KnowledgeStore):
        assert corpus.query(QueryFilters(kind="session", when="whenever"))["count"] == 3

    def test_bad_date(self, corpus: KnowledgeStore):
        with pytest.raises(ValidationError) as exc:
            corpus.query(QueryFilters(date_after="last tuesday"))
        assert exc.value.field == "date_after"

    def test_bad_unit(self, corpus: KnowledgeStore):
        with pytest.raises(ValidationError) as exc:
            corpus.query(QueryFilters(last=1, unit="fortnight"))
        assert exc.value.field == "unit"


class TestPatternFilters:
    @pytest.fixture
    def patterns(self, backend_store: KnowledgeStore) -> KnowledgeStore:
        s = backend_store
        s.create_pattern("Retry flaky HTTP calls", "network", ["retry", "http"], "Back off")
        s.create_pattern("Vacuum the database", "storage", ["sqlite", "vacuum"], "Run VACUUM")
        s.create_session("Retry work", ["retry"], date="2026-02-10")
        return s

    def test_category(self, patterns: KnowledgeStore):
        result = patterns.query(QueryFilters(category="storage"))
        assert [r["title"] for r in result["records"]] == ["Vacuum the database"]

    def test_keywords_match_any(self, patterns: KnowledgeStore):
        result = patterns.query(QueryFilters(keywords=["vacuum", "http"]))
        assert sorted(r["id"] for r in result["records"]) == ["retry-flaky-http-calls", "vacuum-the-database"]

    def test_keywords_only_match_patterns(self, patterns: KnowledgeStore):
        result = patterns.query(QueryFilters(keywords=["retry"]))
        assert [r["kind"] for r in result["records"]] == ["learned"]

    def test_keywords_must_be_a_list(self, patterns: KnowledgeStore):
        with pytest.raises(ValidationError) as exc:
            patterns.query(QueryFilters(keywords="retry"))
        assert exc.value.field == "keywords"

    def test_about_is_a_topic_phrase(self, patterns: KnowledgeStore):
        assert patterns.query(QueryFilters(about="retry"))["count"] == 2

    def test_about_replaces_topic(self, patterns: KnowledgeStore):
        assert patterns.query(QueryFilters(topic="vacuum", about="retry"))["count"] == 2
