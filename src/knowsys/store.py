"""KnowledgeStore: the corpus on disk plus its secondary index.

Markdown files under ``.knowsys/`` are the source of truth. The index is a
derived cache: it is rebuilt from the files on demand, refreshed after every
write, and recreated automatically when missing.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import re
import subprocess
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from knowsys.codec import load_document, parse, serialize, split_sections
from knowsys.config import KnowsysConfig
from knowsys.document import PLAN_STATUSES, Document, DocumentKind, Section
from knowsys.errors import DocumentIOError, KnowsysError, NotFoundError, ValidationError
from knowsys.fsutil import atomic_write_text
from knowsys.index import (
    IndexBackend,
    IndexRecord,
    index_path,
    open_index,
    project,
    resolve_backend,
)
from knowsys.mutations import MutationEngine, MutationResult
from knowsys.query import QueryFilters, run_query, run_search
from knowsys.timeparse import reference_date
from knowsys.transaction import FileTransaction

logger = logging.getLogger(__name__)

README_TEXT = """\
# Project knowledge

Managed by knowsys. Each file is markdown with a YAML frontmatter header.

- `sessions/` one file per working day (`YYYY-MM-DD-session.md`)
- `plans/` implementation plans (`PLAN_<id>.md`)
- `learned/` reusable patterns
- `archive/` old sessions and finished plans

The index files (`context-index.json`, `knowledge.db`) are caches and can be
deleted; run `python -m knowsys rebuild` to recreate them.
"""

_LEGACY_TITLE_RE = re.compile(r"^#\s+(?:Implementation Plan:\s*)?(.+?)\s*$", re.MULTILINE)
_LEGACY_SESSION_TITLE_RE = re.compile(r"^#\s+(?:Session:\s*)?(.+?)(?:\s+\([^)]*\))?\s*$", re.MULTILINE)
_LEGACY_STATUS_RE = re.compile(r"\*\*Status:\*\*\s+(?:\S+\s+)?([A-Z_]+)")
_LEGACY_CREATED_RE = re.compile(r"\*\*Created:\*\*\s+(\d{4}-\d{2}-\d{2})")
_LEGACY_AUTHOR_RE = re.compile(r"\*\*Author:\*\*\s+(\S+)")
_SESSION_NAME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def normalize_plan_id(title: str) -> str:
    """"Bug Fix: Performance Issue" -> "bug_fix_performance_issue"."""
    return re.sub(r"[^a-z0-9]+", "_", title.lower()).strip("_")


def slugify(title: str) -> str:
    """"Retry flaky HTTP calls" -> "retry-flaky-http-calls"."""
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def detect_author(cwd: Path | None = None) -> str:
    """git user.name as a slug, else $USER, else "unknown"."""
    try:
        out = subprocess.run(
            ["git", "config", "user.name"],
            capture_output=True,
            text=True,
            timeout=5,
            cwd=cwd,
        )
        name = out.stdout.strip()
        if out.returncode == 0 and name:
            return re.sub(r"\s+", "-", name.lower())
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("git user.name unavailable: %s", e)
    return os.getenv("USER") or os.getenv("USERNAME") or "unknown"


def _long_date(day: str) -> str:
    d = date.fromisoformat(day)
    return f"{d.strftime('%b')} {d.day}, {d.year}"


class KnowledgeStore:
    """Create, edit, query and archive knowledge documents under one project root."""

    def __init__(self, root: Path | str | None = None, config: KnowsysConfig | None = None) -> None:
        config = config or KnowsysConfig()
        if root is not None:
            config = dataclasses.replace(config, root=Path(root))
        self.config = config
        self.root = config.root
        self.data_dir = config.data_dir
        self.mutations = MutationEngine(refresh=self.refresh)

    # ── Paths ─────────────────────────────────────────────────

    def kind_dir(self, kind: DocumentKind | str) -> Path:
        return self.data_dir / DocumentKind(kind).directory

    def session_path(self, day: str | date) -> Path:
        day = day.isoformat() if isinstance(day, date) else day
        return self.kind_dir(DocumentKind.SESSION) / f"{day}-session.md"

    def plan_path(self, plan_id: str) -> Path:
        plan_id = plan_id.removeprefix("PLAN_")
        return self.kind_dir(DocumentKind.PLAN) / f"PLAN_{plan_id}.md"

    def pattern_path(self, slug: str) -> Path:
        return self.kind_dir(DocumentKind.LEARNED) / f"{slug}.md"

    def resolve(self, kind: DocumentKind | str, identifier: str) -> Path:
        """Path of an existing document given its kind and id (or relative path)."""
        try:
            kind = DocumentKind(kind)
        except ValueError as e:
            kinds = ", ".join(k.value for k in DocumentKind)
            raise ValidationError(f"{kind!r} is not one of {kinds}", field="kind", operation="resolve") from e
        if identifier.endswith(".md"):
            path = self.root / identifier
        elif kind is DocumentKind.SESSION:
            path = self.session_path(identifier)
        elif kind is DocumentKind.PLAN:
            path = self.plan_path(identifier)
        else:
            path = self.pattern_path(identifier)
        if not path.resolve().is_relative_to(self.data_dir.resolve()):
            raise ValidationError(
                f"{identifier!r} is outside {self.relative(self.data_dir)}/",
                field="id",
                operation="resolve",
            )
        if not path.is_file():
            raise NotFoundError(f"no {kind.value} '{identifier}'", operation="resolve", path=path)
        return path

    def relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return path.as_posix()

    def document_paths(self) -> list[Path]:
        """Every live (not archived) document file, in path order."""
        paths: list[Path] = []
        for kind in DocumentKind:
            directory = self.kind_dir(kind)
            if directory.is_dir():
                paths.extend(p for p in directory.glob("*.md") if p.is_file())
        return sorted(paths)

    # ── Initialization ────────────────────────────────────────

    def init_corpus(self) -> dict[str, Any]:
        """Scaffold ``.knowsys/``. Idempotent; a failure removes what it created."""
        created: list[Path] = []
        with FileTransaction() as tx:
            for directory in [
                self.data_dir,
                self.kind_dir(DocumentKind.SESSION),
                self.kind_dir(DocumentKind.PLAN),
                self.kind_dir(DocumentKind.LEARNED),
                self.data_dir / "archive",
            ]:
                if not directory.exists():
                    directory.mkdir(parents=True)
                    created.append(tx.track(directory))

            readme = self.data_dir / "README.md"
            if not readme.exists():
                created.append(tx.track(readme))
                atomic_write_text(readme, README_TEXT)

            target = index_path(self.config, resolve_backend(self.config, len(self.document_paths())))
            if not target.exists():
                created.append(tx.track(target))
                self.rebuild_index()

        if created:
            logger.info("Initialised %s (%d new paths)", self.data_dir, len(created))
        return {"root": str(self.data_dir), "created": [self.relative(p) for p in created]}

    # ── Index ─────────────────────────────────────────────────

    def _project_all(self) -> tuple[list[IndexRecord], list[dict[str, str]]]:
        records: list[IndexRecord] = []
        skipped: list[dict[str, str]] = []
        for path in self.document_paths():
            try:
                records.append(project(load_document(path, operation="rebuild_index"), self.root))
            except KnowsysError as e:
                logger.warning("Not indexing %s: %s", path, e)
                skipped.append({"path": self.relative(path), "error": str(e)})
        return records, skipped

    @contextmanager
    def _index(self) -> Iterator[IndexBackend]:
        """Open the index for one operation, rebuilding it first if missing."""
        doc_count = len(self.document_paths())
        missing = not index_path(self.config, resolve_backend(self.config, doc_count)).exists()
        backend = open_index(self.config, doc_count)
        try:
            if missing:
                logger.info("Index missing, rebuilding %s index", backend.name)
                backend.rebuild(self._project_all()[0])
            yield backend
        finally:
            backend.close()

    def rebuild_index(self) -> dict[str, Any]:
        """Discard the index and rebuild it from the document files."""
        records, skipped = self._project_all()
        backend = open_index(self.config, len(records) + len(skipped))
        try:
            backend.rebuild(records)
        finally:
            backend.close()
        return {"backend": backend.name, "indexed": len(records), "skipped": skipped}

    def refresh(self, path: Path) -> None:
        """Bring the index entry for one document up to date."""
        with self._index() as index:
            if path.is_file():
                index.upsert(project(load_document(path, operation="refresh"), self.root))
            else:
                index.remove(self.relative(path))

    # ── Queries ───────────────────────────────────────────────

    def query(
        self,
        filters: QueryFilters | None = None,
        *,
        mode: str = "metadata",
        section: str | None = None,
        now: datetime | date | None = None,
    ) -> dict[str, Any]:
        with self._index() as index:
            return run_query(index, self.root, filters, mode=mode, section=section, now=now)

    def search(self, text: str, *, limit: int | None = None, kind: str | None = None) -> dict[str, Any]:
        with self._index() as index:
            return run_search(
                index,
                text,
                limit=limit or self.config.search.limit,
                kind=kind,
                snippet_chars=self.config.search.snippet_chars,
            )

    # ── Creation ──────────────────────────────────────────────

    def _create(self, doc: Document, operation: str) -> dict[str, Any]:
        path = doc.path
        rel = self.relative(path)
        if path.exists():
            logger.info("%s: %s already exists", operation, rel)
            return {"path": rel, "created": False}
        text = serialize(doc)
        parse(text, doc.kind, path, operation=operation)
        try:
            atomic_write_text(path, text)
        except OSError as e:
            raise DocumentIOError("cannot write document", operation=operation, path=path, cause=e) from e
        logger.info("%s: created %s", operation, rel)

        result: dict[str, Any] = {"path": rel, "created": True, "warnings": []}
        try:
            self.refresh(path)
        except (KnowsysError, OSError) as e:
            logger.warning("Index refresh failed after %s on %s: %s", operation, rel, e)
            result["warnings"].append(f"index refresh failed: {e}")
        return result

    def create_session(
        self,
        title: str,
        topics: Sequence[str] = (),
        plan: str | None = None,
        date: str | None = None,
        author: str | None = None,
    ) -> dict[str, Any]:
        """Today's session file (or `date`'s); one per day."""
        day = date or reference_date().isoformat()
        if not isinstance(day, str) or not _DATE_RE.match(day):
            raise ValidationError(f"expected YYYY-MM-DD, got {day!r}", field="date", operation="create_session")
        try:
            _long_date(day)
        except ValueError as e:
            raise ValidationError(f"not a calendar date: {day!r}", field="date", operation="create_session") from e
        meta: dict[str, Any] = {"date": day, "topics": list(topics)}
        if plan:
            meta["plan"] = plan
        meta["author"] = author or detect_author(self.root)
        meta["files"] = []
        meta["status"] = "in-progress"
        doc = Document(
            kind=DocumentKind.SESSION,
            frontmatter=meta,
            sections=[
                Section(f"# Session: {title or 'Work Session'} ({_long_date(day)})"),
                Section("## Goal", "[Describe what you're trying to accomplish this session]"),
                Section("## Progress"),
                Section("## Changes", "[Document changes as you make them]"),
                Section("## Notes for Next Session", "[Important context to remember]"),
            ],
            path=self.session_path(day),
        )
        return self._create(doc, "create_session")

    def create_plan(
        self,
        title: str,
        author: str | None = None,
        plan_id: str | None = None,
        topics: Sequence[str] | None = None,
        status: str = "PLANNED",
    ) -> dict[str, Any]:
        plan_id = (plan_id or normalize_plan_id(title)).removeprefix("PLAN_")
        if not plan_id:
            raise ValidationError("cannot derive a plan id from the title", field="id", operation="create_plan")
        meta: dict[str, Any] = {
            "id": plan_id,
            "title": title,
            "status": status,
            "author": author or detect_author(self.root),
            "created": reference_date().isoformat(),
        }
        if topics:
            meta["topics"] = list(topics)
        doc = Document(
            kind=DocumentKind.PLAN,
            frontmatter=meta,
            sections=[
                Section(f"# Implementation Plan: {title}"),
                Section("## Goal", "[Describe the objective of this plan]"),
                Section("## Requirements", "[List functional and non-functional requirements]"),
                Section("## Implementation Steps"),
                Section("## Testing & Validation", "[How to verify the work is complete]"),
                Section("## Risks", "[Potential issues and mitigation strategies]"),
            ],
            path=self.plan_path(plan_id),
        )
        result = self._create(doc, "create_plan")
        result["id"] = plan_id
        return result

    def create_pattern(
        self, title: str, category: str, keywords: Sequence[str], resolution: str = ""
    ) -> dict[str, Any]:
        """A learned pattern: a reusable fix keyed by trigger words."""
        slug = slugify(title)
        if not slug:
            raise ValidationError("cannot derive a file name from the title", field="title", operation="create_pattern")
        doc = Document(
            kind=DocumentKind.LEARNED,
            frontmatter={
                "title": title,
                "category": category,
                "keywords": list(keywords),
                "created": reference_date().isoformat(),
            },
            sections=[
                Section(f"# {title}"),
                Section("## Trigger Words", ", ".join(keywords)),
                Section("## Resolution", resolution or "[How to resolve it]"),
            ],
            path=self.pattern_path(slug),
        )
        return self._create(doc, "create_pattern")

    # ── Mutations ─────────────────────────────────────────────

    def append(self, path: Path, pattern: str, content: str) -> MutationResult:
        return self.mutations.append(path, pattern, content)

    def prepend(self, path: Path, pattern: str, content: str) -> MutationResult:
        return self.mutations.prepend(path, pattern, content)

    def insert_after(self, path: Path, pattern: str, new_heading: str, content: str = "") -> MutationResult:
        return self.mutations.insert_after(path, pattern, new_heading, content)

    def insert_before(self, path: Path, pattern: str, new_heading: str, content: str = "") -> MutationResult:
        return self.mutations.insert_before(path, pattern, new_heading, content)

    def set_metadata_field(self, path: Path, field: str, value: Any) -> MutationResult:
        return self.mutations.set_metadata_field(path, field, value)

    def add_list_item(self, path: Path, field: str, value: str) -> MutationResult:
        return self.mutations.add_list_item(path, field, value)

    # ── Archiving ─────────────────────────────────────────────

    def _move(self, path: Path, dest: Path, operation: str) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(path, dest)
        except OSError as e:
            raise DocumentIOError("cannot move document", operation=operation, path=path, cause=e) from e
        try:
            self.refresh(path)
        except (KnowsysError, OSError) as e:
            logger.warning("Index refresh failed after archiving %s: %s", path, e)

    def archive_sessions(
        self,
        threshold_days: int | None = None,
        dry_run: bool = False,
        now: datetime | date | None = None,
    ) -> dict[str, Any]:
        """Move sessions dated before the threshold to archive/sessions/YYYY/MM/."""
        op = "archive_sessions"
        days = self.config.archive.session_days if threshold_days is None else threshold_days
        cutoff = (reference_date(now) - timedelta(days=days)).isoformat()
        archived: list[str] = []
        kept = 0
        skipped: list[dict[str, str]] = []

        for path in self.document_paths():
            if path.parent != self.kind_dir(DocumentKind.SESSION):
                continue
            try:
                doc = load_document(path, DocumentKind.SESSION, operation=op)
            except KnowsysError as e:
                logger.warning("Skipping %s: %s", path, e)
                skipped.append({"path": self.relative(path), "error": str(e)})
                continue
            if doc.date is None or doc.date >= cutoff:
                kept += 1
                continue
            year, month = doc.date[:4], doc.date[5:7]
            dest = self.data_dir / "archive" / "sessions" / year / month / path.name
            if dest.exists():
                skipped.append({"path": self.relative(path), "error": f"{self.relative(dest)} exists"})
                continue
            archived.append(self.relative(dest))
            if not dry_run:
                self._move(path, dest, op)

        logger.info("%s: %d archived, %d kept (dry_run=%s)", op, len(archived), kept, dry_run)
        return {"archived": archived, "kept": kept, "skipped": skipped, "dry_run": dry_run}

    def archive_plans(
        self,
        statuses: Sequence[str] | None = None,
        threshold_days: int | None = None,
        dry_run: bool = False,
        now: datetime | date | None = None,
    ) -> dict[str, Any]:
        """Move finished plans untouched for `threshold_days` to archive/plans/."""
        op = "archive_plans"
        statuses = tuple(statuses or self.config.archive.plan_statuses)
        for s in statuses:
            if s not in PLAN_STATUSES:
                raise ValidationError(f"{s!r} is not one of {', '.join(PLAN_STATUSES)}", field="statuses", operation=op)
        days = self.config.archive.plan_days if threshold_days is None else threshold_days
        cutoff = reference_date(now) - timedelta(days=days)
        archived: list[str] = []
        kept = 0
        skipped: list[dict[str, str]] = []

        for path in self.document_paths():
            if path.parent != self.kind_dir(DocumentKind.PLAN):
                continue
            try:
                doc = load_document(path, DocumentKind.PLAN, operation=op)
            except KnowsysError as e:
                logger.warning("Skipping %s: %s", path, e)
                skipped.append({"path": self.relative(path), "error": str(e)})
                continue
            modified = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc).date()
            if doc.frontmatter.get("status") not in statuses or modified >= cutoff:
                kept += 1
                continue
            dest = self.data_dir / "archive" / "plans" / path.name
            if dest.exists():
                skipped.append({"path": self.relative(path), "error": f"{self.relative(dest)} exists"})
                continue
            archived.append(self.relative(dest))
            if not dry_run:
                self._move(path, dest, op)

        logger.info("%s: %d archived, %d kept (dry_run=%s)", op, len(archived), kept, dry_run)
        return {"archived": archived, "kept": kept, "skipped": skipped, "dry_run": dry_run}

    # ── Legacy migration ──────────────────────────────────────

    def _legacy_plan(self, path: Path, text: str) -> Document:
        title = _LEGACY_TITLE_RE.search(text)
        status = _LEGACY_STATUS_RE.search(text)
        created = _LEGACY_CREATED_RE.search(text)
        author = _LEGACY_AUTHOR_RE.search(text)
        plan_id = path.stem.removeprefix("PLAN_")
        meta: dict[str, Any] = {
            "id": plan_id,
            "title": title.group(1) if title else plan_id.replace("_", " "),
            "status": status.group(1) if status and status.group(1) in PLAN_STATUSES else "PLANNED",
            "author": author.group(1) if author else "unknown",
        }
        if created:
            meta["created"] = created.group(1)
        preamble, sections = split_sections(text)
        return Document(DocumentKind.PLAN, meta, sections, preamble, path=self.plan_path(plan_id))

    def _legacy_session(self, path: Path, text: str) -> Document:
        day = _SESSION_NAME_RE.match(path.name).group(1)
        title = _LEGACY_SESSION_TITLE_RE.search(text)
        meta: dict[str, Any] = {"date": day, "topics": [], "status": "complete"}
        if title:
            meta["title"] = title.group(1)
        preamble, sections = split_sections(text)
        return Document(DocumentKind.SESSION, meta, sections, preamble, path=path)

    def _is_legacy(self, path: Path) -> str | None:
        """The file's text if it has no frontmatter block, else None."""
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise DocumentIOError("cannot read document", operation="migrate_legacy", path=path, cause=e) from e
        return None if text.lstrip().startswith("---") else text

    def migrate_legacy(self) -> dict[str, Any]:
        """Give frontmatter-less plans and sessions a frontmatter header.

        Top-level ``PLAN_*.md`` files move to ``plans/``; old session files are
        converted in place. Every new file is written inside one transaction,
        and the legacy files are replaced or removed only after it commits.
        """
        op = "migrate_legacy"
        plans: list[tuple[Path, Document]] = []
        sessions: list[tuple[Path, Document]] = []
        if self.data_dir.is_dir():
            for path in sorted(self.data_dir.glob("PLAN_*.md")):
                text = self._is_legacy(path)
                if text is not None:
                    plans.append((path, self._legacy_plan(path, text)))
        session_dir = self.kind_dir(DocumentKind.SESSION)
        if session_dir.is_dir():
            for path in sorted(session_dir.glob("*.md")):
                if not _SESSION_NAME_RE.match(path.name):
                    continue
                text = self._is_legacy(path)
                if text is not None:
                    sessions.append((path, self._legacy_session(path, text)))

        for _, doc in plans:
            if doc.path.exists():
                raise ValidationError(
                    "migrated plan would overwrite an existing file", field="id", operation=op, path=doc.path
                )

        staged: list[tuple[Path, Path]] = []
        with FileTransaction() as tx:
            plans_dir = self.kind_dir(DocumentKind.PLAN)
            if plans and not plans_dir.exists():
                plans_dir.mkdir(parents=True)
                tx.track(plans_dir)
            for _, doc in plans:
                tx.track(doc.path)
                atomic_write_text(doc.path, serialize(doc))
            for path, doc in sessions:
                tmp = tx.track(path.with_name(f".{path.name}.migrated"))
                atomic_write_text(tmp, serialize(doc))
                staged.append((tmp, path))

        for legacy, _ in plans:
            legacy.unlink()
        for tmp, target in staged:
            os.replace(tmp, target)

        migrated = [self.relative(doc.path) for _, doc in plans] + [self.relative(p) for _, p in staged]
        if migrated:
            logger.info("Migrated %d legacy documents", len(migrated))
            self.rebuild_index()
        return {"migrated": migrated}
