"""Frontmatter codec: markdown text <-> Document.

YAML frontmatter is handled by python-frontmatter. The body is split into
sections at ATX heading lines outside fenced code blocks. Serialization is
canonical, so ``parse(serialize(doc)) == doc`` for any valid document.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import frontmatter
import yaml

from knowsys.document import (
    HEADING_RE,
    Document,
    DocumentKind,
    Section,
    infer_kind,
    validate_frontmatter,
)
from knowsys.errors import (
    AmbiguousTargetError,
    DocumentIOError,
    NotFoundError,
    SectionNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*(```|~~~)")

_HANDLER = frontmatter.YAMLHandler()


def parse(
    text: str,
    kind: DocumentKind | str | None = None,
    path: Path | None = None,
    *,
    operation: str = "parse",
) -> Document:
    """Parse a markdown document and validate its frontmatter."""
    ctx = {"operation": operation, "path": path}
    if not _HANDLER.detect(text.strip()):
        raise ValidationError("no frontmatter block at top of file", field="frontmatter", **ctx)
    try:
        post = frontmatter.loads(text, handler=_HANDLER)
    except yaml.YAMLError as e:
        raise ValidationError(f"malformed YAML: {e}", field="frontmatter", **ctx) from e
    except ValueError as e:
        raise ValidationError(f"unreadable frontmatter: {e}", field="frontmatter", **ctx) from e

    meta = dict(post.metadata)
    if kind is None:
        kind = infer_kind(meta, path)
        if kind is None:
            raise ValidationError("cannot determine document kind", field="kind", **ctx)
    kind = DocumentKind(kind)
    validate_frontmatter(kind, meta, **ctx)

    preamble, sections = split_sections(post.content)
    return Document(kind=kind, frontmatter=meta, sections=sections, preamble=preamble, path=path)


def serialize(doc: Document) -> str:
    """Render a document back to markdown text."""
    body_parts = []
    if doc.preamble:
        body_parts.append(doc.preamble)
    body_parts.extend(s.render() for s in doc.sections)
    post = frontmatter.Post("\n\n".join(body_parts), handler=_HANDLER)
    post.metadata.update(doc.frontmatter)
    try:
        text = frontmatter.dumps(post, handler=_HANDLER, sort_keys=False)
    except yaml.YAMLError as e:
        raise ValidationError(
            f"frontmatter is not representable as YAML: {e}",
            field="frontmatter",
            operation="serialize",
            path=doc.path,
        ) from e
    return text + "\n"


def split_sections(body: str) -> tuple[str, list[Section]]:
    """Split body text into (preamble, sections)."""
    preamble: list[str] = []
    sections: list[tuple[str, list[str]]] = []
    in_fence = False
    for line in body.splitlines():
        if _FENCE_RE.match(line):
            in_fence = not in_fence
        elif not in_fence and HEADING_RE.match(line):
            sections.append((line, []))
            continue
        if sections:
            sections[-1][1].append(line)
        else:
            preamble.append(line)
    return "\n".join(preamble), [Section(h, "\n".join(lines)) for h, lines in sections]


def load_document(
    path: Path, kind: DocumentKind | str | None = None, *, operation: str = "load"
) -> Document:
    """Read and parse a document file."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise NotFoundError("document does not exist", operation=operation, path=path) from e
    except OSError as e:
        raise DocumentIOError("cannot read document", operation=operation, path=path, cause=e) from e
    return parse(text, kind, path, operation=operation)


# ── Section addressing ───────────────────────────────────────


def _normalize(text: str) -> str:
    return " ".join(text.split())


def find_section(
    sections: list[Section],
    pattern: str,
    *,
    operation: str = "find_section",
    path: Path | str | None = None,
) -> int:
    """Resolve `pattern` to the index of exactly one section.

    Exact matches (whole heading line, or heading text without the leading
    hashes) win; otherwise a case-insensitive substring match is used.
    """
    wanted = _normalize(pattern)
    if not wanted:
        raise ValidationError("section pattern is empty", field="pattern", operation=operation, path=path)

    exact = [
        i
        for i, s in enumerate(sections)
        if _normalize(s.heading) == wanted or _normalize(s.title) == wanted
    ]
    candidates = exact or [
        i for i, s in enumerate(sections) if wanted.lower() in _normalize(s.heading).lower()
    ]

    if not candidates:
        raise SectionNotFoundError(
            pattern, available=[s.heading for s in sections], operation=operation, path=path
        )
    if len(candidates) > 1:
        headings = [sections[i].heading for i in candidates]
        raise AmbiguousTargetError(
            f"pattern '{pattern}' matches {len(candidates)} sections: {'; '.join(headings)}",
            pattern=pattern,
            matches=headings,
            operation=operation,
            path=path,
        )
    return candidates[0]
