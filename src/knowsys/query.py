"""Progressive-detail queries over the secondary index.

Callers pick how much they get back:

    preview   counts, date range, status breakdown, top topics; no rows
    metadata  one row per match, no body text (default)
    section   one document's row plus a single section read from disk
    full      rows plus complete document text read from disk

Each step up returns strictly more for the same filter, so an agent can
start cheap and drill in only when it needs to.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

from knowsys.codec import find_section, load_document
from knowsys.errors import AmbiguousTargetError, DocumentIOError, NotFoundError, ValidationError
from knowsys.index import IndexBackend, IndexFilters, IndexRecord
from knowsys.timeparse import DAYS_PER_UNIT, relative_start, resolve_time_expression

logger = logging.getLogger(__name__)

MODES = ("preview", "metadata", "section", "full")
MAX_PREVIEW_TOPICS = 10


@dataclass
class QueryFilters:
    """What to match. Every field is optional; unset fields match everything.

    Time bounds come from exactly one source, first match wins: `when`, a
    phrase such as "last week" or "3 days ago"; then `last` + `unit`, the
    structured form ("last 2 months"); then explicit `date_after` /
    `date_before`, which are ignored when either relative form is given.

    `about` is a free-text topic and takes the place of `topic` when both
    are set. `category` and `keywords` narrow learned patterns; a pattern
    matches `keywords` when it carries any one of them.
    """

    kind: str | None = None
    status: str | None = None
    author: str | None = None
    topic: str | None = None
    about: str | None = None
    category: str | None = None
    keywords: list[str] | None = None
    date_after: str | None = None
    date_before: str | None = None
    when: str | None = None
    last: int | None = None
    unit: str = "day"

    def resolve(self, now: datetime | date | None = None) -> IndexFilters:
        """Turn relative time fields into absolute inclusive dates."""
        after = before = None
        if self.when:
            span = resolve_time_expression(self.when, now)
            if not span:
                logger.debug("No time phrase recognised in %r", self.when)
            after, before = span.get("date_after"), span.get("date_before")
        elif self.last is not None:
            if self.unit.lower().rstrip("s") not in DAYS_PER_UNIT:
                raise ValidationError(
                    f"unknown unit {self.unit!r}", field="unit", operation="query"
                )
            try:
                after = relative_start(self.last, self.unit, now)
            except ValueError as e:
                raise ValidationError(str(e), field="last", operation="query") from e
        else:
            for name, value in (("date_after", self.date_after), ("date_before", self.date_before)):
                if value is not None:
                    try:
                        date.fromisoformat(value)
                    except ValueError as e:
                        raise ValidationError(
                            f"expected YYYY-MM-DD, got {value!r}", field=name, operation="query"
                        ) from e
            after, before = self.date_after, self.date_before

        if self.keywords is not None and not (
            isinstance(self.keywords, list) and all(isinstance(k, str) for k in self.keywords)
        ):
            raise ValidationError("expected a list of strings", field="keywords", operation="query")

        return IndexFilters(
            kind=self.kind,
            status=self.status,
            author=self.author,
            topic=self.about or self.topic,
            category=self.category,
            keywords=list(self.keywords) if self.keywords else None,
            date_after=after,
            date_before=before,
        )


def _preview(records: list[IndexRecord]) -> dict[str, Any]:
    result: dict[str, Any] = {"mode": "preview", "count": len(records)}
    if not records:
        return result
    dates = sorted(r.date for r in records if r.date)
    topics = Counter(t for r in records for t in r.topics)
    result["date_range"] = {"earliest": dates[0], "latest": dates[-1]} if dates else None
    result["status_counts"] = dict(sorted(Counter(r.status or "unknown" for r in records).items()))
    result["topics"] = [t for t, _ in sorted(topics.items(), key=lambda kv: (-kv[1], kv[0]))][
        :MAX_PREVIEW_TOPICS
    ]
    return result


def _read_text(root: Path, record: IndexRecord) -> str:
    path = root / record.path
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise NotFoundError(
            "indexed document is missing on disk, rebuild the index", operation="query", path=path
        ) from e
    except OSError as e:
        raise DocumentIOError("cannot read document", operation="query", path=path, cause=e) from e


def _section(root: Path, record: IndexRecord, pattern: str) -> dict[str, str]:
    """The matched section together with any deeper-level subsections under it."""
    doc = load_document(root / record.path, record.kind, operation="query")
    start = find_section(doc.sections, pattern, operation="query", path=doc.path)
    level = doc.sections[start].level
    end = start + 1
    while end < len(doc.sections) and doc.sections[end].level > level:
        end += 1
    block = doc.sections[start:end]
    return {
        "heading": block[0].heading,
        "content": "\n\n".join(s.render() for s in block),
    }


def run_query(
    index: IndexBackend,
    root: Path,
    filters: QueryFilters | None = None,
    *,
    mode: str = "metadata",
    section: str | None = None,
    now: datetime | date | None = None,
) -> dict[str, Any]:
    """Filter the index and shape the answer according to `mode`."""
    if mode not in MODES:
        raise ValidationError(
            f"{mode!r} is not one of {', '.join(MODES)}", field="mode", operation="query"
        )
    filters = filters or QueryFilters()
    records = index.select(filters.resolve(now))
    logger.debug("Query matched %d records (mode=%s)", len(records), mode)

    if mode == "preview":
        return _preview(records)
    if mode == "metadata":
        return {"mode": mode, "count": len(records), "records": [r.metadata() for r in records]}
    if mode == "full":
        return {
            "mode": mode,
            "count": len(records),
            "records": [{**r.metadata(), "content": _read_text(root, r)} for r in records],
        }

    # section
    if not section:
        raise ValidationError("section mode needs a section pattern", field="section", operation="query")
    if not records:
        raise NotFoundError("no document matches the filters", operation="query")
    if len(records) > 1:
        paths = [r.path for r in records]
        raise AmbiguousTargetError(
            f"section mode needs exactly one document, {len(records)} match",
            matches=paths,
            operation="query",
        )
    record = records[0]
    return {
        "mode": mode,
        "count": 1,
        "record": record.metadata(),
        "section": _section(root, record, section),
    }


def run_search(
    index: IndexBackend,
    text: str,
    *,
    limit: int = 10,
    kind: str | None = None,
    snippet_chars: int = 60,
) -> dict[str, Any]:
    """Ranked full-text search; hits carry snippets, never whole documents."""
    if limit < 1:
        raise ValidationError(f"limit must be positive, got {limit}", field="limit", operation="search")
    hits = index.search(text, limit=limit, kind=kind, snippet_chars=snippet_chars)
    return {"query": text, "count": len(hits), "hits": [h.to_dict() for h in hits]}
