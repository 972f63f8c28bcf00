"""Tool functions over a KnowledgeStore.

Designed to be exposed to an agent as tools (see knowsys.server) or called
directly. Every tool returns a JSON-safe dict: ``{"ok": True, ...}`` on
success, ``{"ok": False, "error": {...}}`` when the store refuses the call.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from datetime import date
from typing import TYPE_CHECKING, Any

from knowsys.errors import KnowsysError, ValidationError
from knowsys.query import QueryFilters
from knowsys.timeparse import resolve_time_expression

if TYPE_CHECKING:
    from knowsys.store import KnowledgeStore

logger = logging.getLogger(__name__)


def error_payload(error: KnowsysError) -> dict[str, Any]:
    return {"ok": False, "error": {"field": None, **error.to_dict()}}


def _tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> dict:
        try:
            return {"ok": True, **fn(*args, **kwargs)}
        except KnowsysError as e:
            logger.info("Tool %s failed: %s", fn.__name__, e)
            return error_payload(e)

    return wrapper


def _now(now: str | None) -> date | None:
    if not now:
        return None
    try:
        return date.fromisoformat(now)
    except ValueError as e:
        raise ValidationError(f"expected YYYY-MM-DD, got {now!r}", field="now", operation="time_range") from e


def get_tools(store: KnowledgeStore) -> dict[str, Callable[..., dict]]:
    """Return a dict of tool_name -> callable for knowledge-store operations."""

    @_tool
    def create_session(
        title: str = "Work Session",
        topics: list[str] | None = None,
        plan: str | None = None,
        date: str | None = None,
    ) -> dict:
        """Create the session file for today (or `date`). One per day."""
        return store.create_session(title, topics or [], plan=plan, date=date)

    @_tool
    def create_plan(
        title: str,
        author: str | None = None,
        plan_id: str | None = None,
        topics: list[str] | None = None,
        status: str = "PLANNED",
    ) -> dict:
        """Create an implementation plan."""
        return store.create_plan(title, author=author, plan_id=plan_id, topics=topics, status=status)

    @_tool
    def create_pattern(title: str, category: str, keywords: list[str], resolution: str = "") -> dict:
        """Record a learned pattern."""
        return store.create_pattern(title, category, keywords, resolution)

    @_tool
    def append_section(kind: str, id: str, section: str, content: str) -> dict:
        """Append content to the end of a section."""
        return store.append(store.resolve(kind, id), section, content).to_dict()

    @_tool
    def prepend_section(kind: str, id: str, section: str, content: str) -> dict:
        """Insert content at the start of a section."""
        return store.prepend(store.resolve(kind, id), section, content).to_dict()

    @_tool
    def insert_section_after(kind: str, id: str, section: str, heading: str, content: str = "") -> dict:
        """Add a new section after an existing one."""
        return store.insert_after(store.resolve(kind, id), section, heading, content).to_dict()

    @_tool
    def insert_section_before(kind: str, id: str, section: str, heading: str, content: str = "") -> dict:
        """Add a new section before an existing one."""
        return store.insert_before(store.resolve(kind, id), section, heading, content).to_dict()

    @_tool
    def set_metadata(kind: str, id: str, field: str, value: Any) -> dict:
        """Set a frontmatter field (e.g. status)."""
        return store.set_metadata_field(store.resolve(kind, id), field, value).to_dict()

    @_tool
    def add_list_item(kind: str, id: str, field: str, value: str) -> dict:
        """Add a topic, file or keyword to a document's list field."""
        return store.add_list_item(store.resolve(kind, id), field, value).to_dict()

    @_tool
    def query_documents(
        kind: str | None = None,
        status: str | None = None,
        author: str | None = None,
        topic: str | None = None,
        about: str | None = None,
        category: str | None = None,
        keywords: list[str] | None = None,
        date_after: str | None = None,
        date_before: str | None = None,
        when: str | None = None,
        last: int | None = None,
        unit: str = "day",
        mode: str = "metadata",
        section: str | None = None,
    ) -> dict:
        """Filter documents; `mode` picks preview/metadata/section/full detail."""
        filters = QueryFilters(
            kind=kind,
            status=status,
            author=author,
            topic=topic,
            about=about,
            category=category,
            keywords=keywords,
            date_after=date_after,
            date_before=date_before,
            when=when,
            last=last,
            unit=unit,
        )
        return store.query(filters, mode=mode, section=section)

    @_tool
    def search_documents(query: str, limit: int | None = None, kind: str | None = None) -> dict:
        """Ranked full-text search returning snippets."""
        return store.search(query, limit=limit, kind=kind)

    @_tool
    def rebuild_index() -> dict:
        """Rebuild the index from the document files."""
        return store.rebuild_index()

    @_tool
    def archive_sessions(threshold_days: int | None = None, dry_run: bool = False) -> dict:
        """Move old sessions into archive/sessions/YYYY/MM/."""
        return store.archive_sessions(threshold_days=threshold_days, dry_run=dry_run)

    @_tool
    def archive_plans(
        statuses: list[str] | None = None, threshold_days: int | None = None, dry_run: bool = False
    ) -> dict:
        """Move finished plans into archive/plans/."""
        return store.archive_plans(statuses=statuses, threshold_days=threshold_days, dry_run=dry_run)

    @_tool
    def time_range(text: str, now: str | None = None) -> dict:
        """Resolve a phrase like "last week" to date_after/date_before."""
        return dict(resolve_time_expression(text, _now(now)))

    return {
        "create_session": create_session,
        "create_plan": create_plan,
        "create_pattern": create_pattern,
        "append_section": append_section,
        "prepend_section": prepend_section,
        "insert_section_after": insert_section_after,
        "insert_section_before": insert_section_before,
        "set_metadata": set_metadata,
        "add_list_item": add_list_item,
        "query_documents": query_documents,
        "search_documents": search_documents,
        "rebuild_index": rebuild_index,
        "archive_sessions": archive_sessions,
        "archive_plans": archive_plans,
        "time_range": time_range,
    }
