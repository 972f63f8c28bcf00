"""JSON index: one deterministic file, rebuilt by scanning the corpus.

Suited to small corpora. The file carries no wall-clock fields, so two
rebuilds from the same documents are byte-identical.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from knowsys.errors import IndexStoreError
from knowsys.fsutil import atomic_write_text
from knowsys.index.base import IndexFilters, SearchHit, search_terms
from knowsys.index.records import IndexRecord, sort_records

logger = logging.getLogger(__name__)

INDEX_VERSION = 1


class JsonIndex:
    """Index persisted to ``.knowsys/context-index.json``."""

    name = "json"

    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> dict[str, IndexRecord]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise IndexStoreError(f"cannot read index: {e}", operation="load_index", path=self.path) from e
        if not isinstance(data, dict) or data.get("version") != INDEX_VERSION:
            raise IndexStoreError(
                "unsupported index format, rebuild required", operation="load_index", path=self.path
            )
        try:
            return {r["path"]: IndexRecord.from_dict(r) for r in data.get("records", [])}
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise IndexStoreError(
                f"malformed index record ({e!r}), rebuild required", operation="load_index", path=self.path
            ) from e

    def _save(self, records: dict[str, IndexRecord]) -> None:
        payload = {
            "version": INDEX_VERSION,
            "records": [records[p].to_dict() for p in sorted(records)],
        }
        text = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
        try:
            atomic_write_text(self.path, text)
        except OSError as e:
            raise IndexStoreError(f"cannot write index: {e}", operation="save_index", path=self.path) from e

    # ── Reads ─────────────────────────────────────────────────

    def records(self) -> list[IndexRecord]:
        loaded = self._load()
        return [loaded[p] for p in sorted(loaded)]

    def get(self, path: str) -> IndexRecord | None:
        return self._load().get(path)

    def select(self, filters: IndexFilters) -> list[IndexRecord]:
        return sort_records([r for r in self._load().values() if filters.matches(r)])

    def search(
        self, query: str, *, limit: int = 10, kind: str | None = None, snippet_chars: int = 60
    ) -> list[SearchHit]:
        terms = search_terms(query)
        if not terms:
            return []
        patterns = [re.compile(rf"\b{re.escape(t)}", re.IGNORECASE) for t in terms]

        hits: list[SearchHit] = []
        for record in self.records():
            if kind and record.kind != kind:
                continue
            text = record.search_text
            counts = [len(p.findall(text)) for p in patterns]
            score = sum(counts)
            if not score:
                continue
            # Prefer the rarest matching term as the snippet anchor
            anchor = min((c, i) for i, c in enumerate(counts) if c)[1]
            match = patterns[anchor].search(text)
            hits.append(
                SearchHit(
                    kind=record.kind,
                    id=record.id,
                    title=record.title,
                    path=record.path,
                    snippet=make_snippet(text, match.start(), match.end(), snippet_chars),
                    score=float(score),
                )
            )
        hits.sort(key=lambda h: (-h.score, h.path))
        return hits[:limit]

    # ── Writes ────────────────────────────────────────────────

    def rebuild(self, records: list[IndexRecord]) -> None:
        self._save({r.path: r for r in records})
        logger.info("Rebuilt JSON index with %d records", len(records))

    def upsert(self, record: IndexRecord) -> None:
        loaded = self._load()
        loaded[record.path] = record
        self._save(loaded)

    def remove(self, path: str) -> None:
        loaded = self._load()
        if loaded.pop(path, None) is not None:
            self._save(loaded)

    def close(self) -> None:
        pass


def make_snippet(text: str, start: int, end: int, context: int) -> str:
    """Cut `context` chars either side of text[start:end], marking the match."""
    lo = max(0, start - context)
    hi = min(len(text), end + context)
    snippet = f"{text[lo:start]}[{text[start:end]}]{text[end:hi]}"
    snippet = " ".join(snippet.split())
    if lo > 0:
        snippet = "..." + snippet
    if hi < len(text):
        snippet += "..."
    return snippet
