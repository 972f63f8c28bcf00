"""Document model and per-kind frontmatter schema.

A document is a frontmatter mapping plus a body split into heading-delimited
sections. Each kind has its own required fields; validation fails closed and
never fills in defaults. Fields outside the schema are kept untouched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from knowsys.errors import ValidationError

HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(\S.*?)\s*$")

SESSION_STATUSES = ("in-progress", "complete", "abandoned")
PLAN_STATUSES = ("ACTIVE", "PAUSED", "PLANNED", "COMPLETE", "CANCELLED")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class DocumentKind(str, Enum):
    SESSION = "session"
    PLAN = "plan"
    LEARNED = "learned"

    @property
    def directory(self) -> str:
        return {"session": "sessions", "plan": "plans", "learned": "learned"}[self.value]

    @classmethod
    def from_directory(cls, name: str) -> DocumentKind | None:
        for kind in cls:
            if kind.directory == name:
                return kind
        return None


@dataclass
class Section:
    """One heading line and the text beneath it, up to the next heading."""

    heading: str
    body: str = ""

    def __post_init__(self) -> None:
        self.heading = self.heading.strip()
        self.body = self.body.lstrip("\n").rstrip()

    @property
    def level(self) -> int:
        match = HEADING_RE.match(self.heading)
        return len(match.group(1)) if match else 0

    @property
    def title(self) -> str:
        match = HEADING_RE.match(self.heading)
        return match.group(2) if match else self.heading

    def render(self) -> str:
        return f"{self.heading}\n{self.body}" if self.body else self.heading


@dataclass
class Document:
    kind: DocumentKind
    frontmatter: dict[str, Any]
    sections: list[Section] = field(default_factory=list)
    preamble: str = ""
    path: Path | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        self.preamble = self.preamble.strip()

    @property
    def headings(self) -> list[str]:
        return [s.heading for s in self.sections]

    @property
    def title(self) -> str:
        for key in ("title", "name"):
            value = self.frontmatter.get(key)
            if value:
                return str(value)
        for section in self.sections:
            if section.level == 1:
                return section.title
        return self.path.stem if self.path else ""

    @property
    def date(self) -> str | None:
        """The document's calendar date as YYYY-MM-DD, when it has one."""
        key = "date" if self.kind is DocumentKind.SESSION else "created"
        return normalize_date(self.frontmatter.get(key))

    def section_text(self) -> str:
        return "\n\n".join(s.render() for s in self.sections)


def normalize_date(value: Any) -> str | None:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and len(value) >= 10 and _DATE_RE.match(value[:10]):
        return value[:10]
    return None


# ── Schema ───────────────────────────────────────────────────


def _require(meta: dict, key: str, ctx: dict) -> Any:
    if key not in meta or meta[key] is None:
        raise ValidationError("required field is missing", field=key, **ctx)
    return meta[key]


def _require_text(meta: dict, key: str, ctx: dict) -> str:
    value = _require(meta, key, ctx)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"expected a non-empty string, got {value!r}", field=key, **ctx
        )
    return value


def _require_list(meta: dict, key: str, ctx: dict) -> list:
    value = _require(meta, key, ctx)
    if not isinstance(value, list):
        raise ValidationError(f"expected a list, got {value!r}", field=key, **ctx)
    for item in value:
        if not isinstance(item, (str, int, float)) or isinstance(item, bool):
            raise ValidationError(
                f"list items must be scalars, got {item!r}", field=key, **ctx
            )
    return value


def _require_choice(meta: dict, key: str, choices: tuple[str, ...], ctx: dict) -> str:
    value = _require(meta, key, ctx)
    if value not in choices:
        raise ValidationError(
            f"{value!r} is not one of {', '.join(choices)}", field=key, **ctx
        )
    return value


def _require_date(meta: dict, key: str, ctx: dict) -> str:
    value = _require(meta, key, ctx)
    if isinstance(value, datetime) or not (
        isinstance(value, date) or (isinstance(value, str) and _DATE_RE.match(value))
    ):
        raise ValidationError(f"expected YYYY-MM-DD, got {value!r}", field=key, **ctx)
    if isinstance(value, str):
        try:
            date.fromisoformat(value)
        except ValueError as e:
            raise ValidationError(f"invalid date {value!r}: {e}", field=key, **ctx) from e
    return normalize_date(value)


def validate_frontmatter(
    kind: DocumentKind,
    meta: dict[str, Any],
    *,
    operation: str = "validate",
    path: Path | str | None = None,
) -> None:
    """Raise ValidationError unless `meta` satisfies the schema for `kind`."""
    ctx = {"operation": operation, "path": path}
    if kind is DocumentKind.SESSION:
        _require_date(meta, "date", ctx)
        _require_list(meta, "topics", ctx)
        _require_choice(meta, "status", SESSION_STATUSES, ctx)
    elif kind is DocumentKind.PLAN:
        _require_text(meta, "id", ctx)
        _require_text(meta, "title", ctx)
        _require_choice(meta, "status", PLAN_STATUSES, ctx)
        _require_text(meta, "author", ctx)
    elif kind is DocumentKind.LEARNED:
        _require_text(meta, "title", ctx)
        _require_text(meta, "category", ctx)
        _require_list(meta, "keywords", ctx)


def infer_kind(meta: dict[str, Any], path: Path | None = None) -> DocumentKind | None:
    """Guess the kind from the containing directory, then the field shape."""
    if path is not None:
        for parent in (path.parent, *path.parents):
            kind = DocumentKind.from_directory(parent.name)
            if kind is not None:
                return kind
            if parent.name == ".knowsys":
                break
    if "date" in meta and "topics" in meta:
        return DocumentKind.SESSION
    if "id" in meta and "author" in meta:
        return DocumentKind.PLAN
    if "category" in meta and "keywords" in meta:
        return DocumentKind.LEARNED
    return None
