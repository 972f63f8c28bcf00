"""Index backend protocol and shared search types."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Protocol, runtime_checkable

from knowsys.index.records import IndexRecord

_STOPWORDS = frozenset(
    "a an and are as at be by for from how in is it of on or that the this to was what when "
    "where which who why with".split()
)


@dataclass
class IndexFilters:
    """Structured filters understood by every backend.

    `topic` is a case-insensitive substring of the title or any topic.
    `category` and `keywords` only ever match learned patterns; `keywords`
    needs one exact keyword in common.
    """

    kind: str | None = None
    status: str | None = None
    author: str | None = None
    topic: str | None = None
    category: str | None = None
    keywords: list[str] | None = None
    date_after: str | None = None
    date_before: str | None = None

    def matches(self, record: IndexRecord) -> bool:
        if self.kind and record.kind != self.kind:
            return False
        if self.status and record.status != self.status:
            return False
        if self.author and record.author != self.author:
            return False
        if self.topic:
            needle = self.topic.lower()
            haystack = [record.title or "", *record.topics]
            if not any(needle in h.lower() for h in haystack):
                return False
        if self.category and (record.kind != "learned" or record.category != self.category):
            return False
        if self.keywords:
            if record.kind != "learned" or not set(self.keywords) & set(record.topics):
                return False
        if self.date_after and (record.date is None or record.date < self.date_after):
            return False
        if self.date_before and (record.date is None or record.date > self.date_before):
            return False
        return True


@dataclass
class SearchHit:
    kind: str
    id: str
    title: str
    path: str
    snippet: str
    score: float

    def to_dict(self) -> dict:
        return asdict(self)


def search_terms(query: str) -> list[str]:
    """Lowercased words of `query` minus stopwords, in order, deduplicated."""
    terms: list[str] = []
    for word in re.split(r"[\s\W]+", query.lower()):
        if word and word not in _STOPWORDS and word not in terms:
            terms.append(word)
    return terms


@runtime_checkable
class IndexBackend(Protocol):
    """Narrow read/refresh/rebuild surface over one index store."""

    name: str

    def records(self) -> list[IndexRecord]:
        """All records ordered by path."""
        ...

    def select(self, filters: IndexFilters) -> list[IndexRecord]:
        """Records matching `filters`, newest first."""
        ...

    def get(self, path: str) -> IndexRecord | None: ...

    def rebuild(self, records: list[IndexRecord]) -> None:
        """Replace the whole index with `records`."""
        ...

    def upsert(self, record: IndexRecord) -> None: ...

    def remove(self, path: str) -> None: ...

    def search(
        self, query: str, *, limit: int = 10, kind: str | None = None, snippet_chars: int = 60
    ) -> list[SearchHit]:
        """Ranked, case-insensitive full-text search returning snippets."""
        ...

    def close(self) -> None: ...
