"""IndexRecord: the denormalised, rebuildable projection of a Document."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from knowsys.document import Document, DocumentKind
from knowsys.errors import ValidationError


@dataclass
class IndexRecord:
    kind: str
    id: str
    path: str
    title: str
    status: str | None = None
    date: str | None = None
    author: str | None = None
    topics: list[str] = field(default_factory=list)
    category: str | None = None
    search_text: str = ""
    last_synced_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> IndexRecord:
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__ if k in data})

    def metadata(self) -> dict:
        """Row for metadata-mode responses: everything except the search text."""
        data = self.to_dict()
        data.pop("search_text")
        return data


def _text(value) -> str | None:
    if value is None:
        return None
    return str(value)


def project(doc: Document, root: Path) -> IndexRecord:
    """Build the index record for `doc`, which must have a path on disk.

    ``last_synced_at`` is the file's modification time, so projecting the
    same file twice gives the same record.
    """
    if doc.path is None:
        raise ValidationError("only documents loaded from disk can be indexed", field="path", operation="index")
    meta = doc.frontmatter
    mtime = datetime.fromtimestamp(doc.path.stat().st_mtime, timezone.utc)

    if doc.kind is DocumentKind.PLAN:
        doc_id = str(meta["id"])
        topics = meta.get("topics") or []
    elif doc.kind is DocumentKind.LEARNED:
        doc_id = doc.path.stem
        topics = meta.get("keywords") or []
    else:
        doc_id = doc.path.stem
        topics = meta.get("topics") or []

    try:
        rel = doc.path.resolve().relative_to(root.resolve())
    except ValueError:
        rel = doc.path

    return IndexRecord(
        kind=doc.kind.value,
        id=doc_id,
        path=rel.as_posix(),
        title=doc.title,
        status=_text(meta.get("status")),
        date=doc.date or mtime.date().isoformat(),
        author=_text(meta.get("author")),
        topics=[str(t) for t in topics] if isinstance(topics, list) else [str(topics)],
        category=_text(meta.get("category")),
        search_text="\n".join(p for p in (doc.title, doc.preamble, doc.section_text()) if p),
        last_synced_at=mtime.isoformat(timespec="seconds"),
    )


def sort_records(records: list[IndexRecord]) -> list[IndexRecord]:
    """Newest first; ties and undated records ordered by path."""
    ordered = sorted(records, key=lambda r: r.path)
    return sorted(ordered, key=lambda r: r.date or "", reverse=True)
