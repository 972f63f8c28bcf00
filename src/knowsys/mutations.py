"""Section- and field-level edits to documents on disk.

Every operation follows the same path: load and parse the live file, resolve
the target to exactly one section (or fail before touching anything),
transform in memory, re-validate, write atomically, then refresh the index.
A failed index refresh is reported as a warning and never undoes the write.

There is no concurrency control: if two writers edit the same file, the last
write wins.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

from knowsys.codec import find_section, load_document, parse, serialize
from knowsys.document import HEADING_RE, Document, Section, validate_frontmatter
from knowsys.errors import DocumentIOError, IndexDesyncWarning, KnowsysError, ValidationError
from knowsys.fsutil import atomic_write_text

logger = logging.getLogger(__name__)

LIST_FIELDS = ("topics", "files", "keywords")


@dataclass
class MutationResult:
    path: str
    changed: bool
    changes: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _require_content(content: str, operation: str, path: Path) -> str:
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("content is empty", field="content", operation=operation, path=path)
    return content.strip("\n").rstrip()


def _join(*parts: str) -> str:
    return "\n\n".join(p for p in parts if p)


def _same_value(current: Any, value: Any) -> bool:
    """Equal, counting an unquoted YAML date and its ISO string as the same."""
    if current == value:
        return True
    if isinstance(current, (date, datetime)) and isinstance(value, str):
        return value in (current.isoformat(), str(current))
    return False


class MutationEngine:
    """Applies edits and keeps the index in step through `refresh`."""

    def __init__(self, refresh: Callable[[Path], None] | None = None) -> None:
        self._refresh = refresh

    # ── Plumbing ──────────────────────────────────────────────

    def _commit(self, doc: Document, operation: str, changes: list[str]) -> MutationResult:
        path = doc.path
        text = serialize(doc)
        # Validate the serialized form before it reaches disk
        parse(text, doc.kind, path, operation=operation)
        try:
            atomic_write_text(path, text)
        except OSError as e:
            raise DocumentIOError("cannot write document", operation=operation, path=path, cause=e) from e
        logger.info("%s %s: %s", operation, path, "; ".join(changes))

        result = MutationResult(path=str(path), changed=True, changes=changes)
        if self._refresh is not None:
            try:
                self._refresh(path)
            except (KnowsysError, OSError) as e:
                message = f"index refresh failed after {operation} on {path}: {e}"
                logger.warning(message)
                warnings.warn(message, IndexDesyncWarning, stacklevel=3)
                result.warnings.append(message)
        return result

    def _new_section(
        self, target: Section, new_heading: str, content: str, operation: str, path: Path
    ) -> Section:
        heading = new_heading.strip()
        if not heading:
            raise ValidationError(
                "heading is empty", field="new_heading", operation=operation, path=path
            )
        if heading.startswith("#"):
            if not HEADING_RE.match(heading):
                raise ValidationError(
                    f"not a markdown heading: {heading!r}",
                    field="new_heading",
                    operation=operation,
                    path=path,
                )
        else:
            heading = f"{'#' * max(target.level, 1)} {heading}"
        return Section(heading, content)

    @staticmethod
    def _block_end(sections: list[Section], index: int) -> int:
        """Index just past `sections[index]` and its deeper subsections."""
        level = sections[index].level
        end = index + 1
        while end < len(sections) and sections[end].level > level:
            end += 1
        return end

    # ── Section edits ─────────────────────────────────────────

    def append(self, path: Path, pattern: str, content: str) -> MutationResult:
        """Add `content` at the end of the matched section's body."""
        op = "append"
        content = _require_content(content, op, path)
        doc = load_document(path, operation=op)
        i = find_section(doc.sections, pattern, operation=op, path=path)
        target = doc.sections[i]
        doc.sections[i] = Section(target.heading, _join(target.body, content))
        return self._commit(doc, op, [f"appended to {target.heading}"])

    def prepend(self, path: Path, pattern: str, content: str) -> MutationResult:
        """Add `content` at the start of the matched section's body."""
        op = "prepend"
        content = _require_content(content, op, path)
        doc = load_document(path, operation=op)
        i = find_section(doc.sections, pattern, operation=op, path=path)
        target = doc.sections[i]
        doc.sections[i] = Section(target.heading, _join(content, target.body))
        return self._commit(doc, op, [f"prepended to {target.heading}"])

    def insert_after(
        self, path: Path, pattern: str, new_heading: str, content: str = ""
    ) -> MutationResult:
        """Insert a new section after the matched one and its subsections."""
        op = "insert_after"
        doc = load_document(path, operation=op)
        i = find_section(doc.sections, pattern, operation=op, path=path)
        target = doc.sections[i]
        new = self._new_section(target, new_heading, content, op, path)
        doc.sections.insert(self._block_end(doc.sections, i), new)
        return self._commit(doc, op, [f"inserted {new.heading} after {target.heading}"])

    def insert_before(
        self, path: Path, pattern: str, new_heading: str, content: str = ""
    ) -> MutationResult:
        """Insert a new section directly before the matched one."""
        op = "insert_before"
        doc = load_document(path, operation=op)
        i = find_section(doc.sections, pattern, operation=op, path=path)
        target = doc.sections[i]
        new = self._new_section(target, new_heading, content, op, path)
        doc.sections.insert(i, new)
        return self._commit(doc, op, [f"inserted {new.heading} before {target.heading}"])

    # ── Frontmatter edits ─────────────────────────────────────

    def set_metadata_field(self, path: Path, field_name: str, value: Any) -> MutationResult:
        """Set one frontmatter field. Setting the current value writes nothing."""
        op = "set_metadata"
        if not field_name or not isinstance(field_name, str):
            raise ValidationError("field name is empty", field="field", operation=op, path=path)
        doc = load_document(path, operation=op)
        if field_name in doc.frontmatter and _same_value(doc.frontmatter[field_name], value):
            return MutationResult(path=str(path), changed=False)

        old = doc.frontmatter.get(field_name)
        doc.frontmatter[field_name] = value
        validate_frontmatter(doc.kind, doc.frontmatter, operation=op, path=path)
        return self._commit(doc, op, [f"{field_name}: {old!r} -> {value!r}"])

    def add_list_item(self, path: Path, field_name: str, value: str) -> MutationResult:
        """Add `value` to a list field such as topics; no-op when present."""
        op = "add_list_item"
        if field_name not in LIST_FIELDS:
            raise ValidationError(
                f"not a list field, expected one of {', '.join(LIST_FIELDS)}",
                field=field_name,
                operation=op,
                path=path,
            )
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("value is empty", field=field_name, operation=op, path=path)
        doc = load_document(path, operation=op)
        current = doc.frontmatter.get(field_name)
        if current is None:
            current = []
        if not isinstance(current, list):
            raise ValidationError(
                f"expected a list, got {current!r}", field=field_name, operation=op, path=path
            )
        if value in current:
            return MutationResult(path=str(path), changed=False)
        doc.frontmatter[field_name] = [*current, value]
        validate_frontmatter(doc.kind, doc.frontmatter, operation=op, path=path)
        return self._commit(doc, op, [f"added {value!r} to {field_name}"])
