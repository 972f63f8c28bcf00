"""Tool server: knowsys tools over JSON-RPC 2.0 on stdio (NDJSON).

Speaks the MCP subset tool-call clients need: ``initialize``,
``tools/list`` and ``tools/call``. Each call runs in a worker thread so the
event loop keeps reading requests. Logs go to stderr; stdout carries only
protocol messages.

Usage:
  python -m knowsys serve
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import sys
from collections.abc import Callable
from typing import Any

from knowsys import __version__
from knowsys.query import MODES

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────

SERVER_NAME = "knowsys"
PROTOCOL_VERSION = "2024-11-05"

# ── Tool definitions ─────────────────────────────────────────

_STR = {"type": "string"}
_INT = {"type": "integer"}
_BOOL = {"type": "boolean"}
_STR_LIST = {"type": "array", "items": {"type": "string"}}
_KIND = {"type": "string", "enum": ["session", "plan", "learned"]}

_TARGET = {
    "kind": _KIND,
    "id": {"type": "string", "description": "Session date, plan id, pattern slug, or a path ending in .md"},
}


def _tool(name: str, description: str, properties: dict, required: list[str] | None = None) -> dict:
    return {
        "name": name,
        "description": description,
        "inputSchema": {"type": "object", "properties": properties, "required": required or []},
    }


TOOLS = [
    _tool(
        "create_session",
        "Create the session file for today (or the given date). One file per day.",
        {"title": _STR, "topics": _STR_LIST, "plan": _STR, "date": {"type": "string", "format": "date"}},
    ),
    _tool(
        "create_plan",
        "Create an implementation plan.",
        {"title": _STR, "author": _STR, "plan_id": _STR, "topics": _STR_LIST, "status": _STR},
        ["title"],
    ),
    _tool(
        "create_pattern",
        "Record a learned pattern (a reusable resolution keyed by trigger words).",
        {"title": _STR, "category": _STR, "keywords": _STR_LIST, "resolution": _STR},
        ["title", "category", "keywords"],
    ),
    _tool(
        "append_section",
        "Append content to the end of the section matching `section`.",
        {**_TARGET, "section": _STR, "content": _STR},
        ["kind", "id", "section", "content"],
    ),
    _tool(
        "prepend_section",
        "Insert content at the start of the section matching `section`.",
        {**_TARGET, "section": _STR, "content": _STR},
        ["kind", "id", "section", "content"],
    ),
    _tool(
        "insert_section_after",
        "Add a new section after the one matching `section`. A heading without '#' takes the target's level.",
        {**_TARGET, "section": _STR, "heading": _STR, "content": _STR},
        ["kind", "id", "section", "heading"],
    ),
    _tool(
        "insert_section_before",
        "Add a new section before the one matching `section`. A heading without '#' takes the target's level.",
        {**_TARGET, "section": _STR, "heading": _STR, "content": _STR},
        ["kind", "id", "section", "heading"],
    ),
    _tool(
        "set_metadata",
        "Set one frontmatter field. Setting the current value changes nothing.",
        {**_TARGET, "field": _STR, "value": {}},
        ["kind", "id", "field", "value"],
    ),
    _tool(
        "add_list_item",
        "Add a value to the topics, files or keywords list.",
        {**_TARGET, "field": {"type": "string", "enum": ["topics", "files", "keywords"]}, "value": _STR},
        ["kind", "id", "field", "value"],
    ),
    _tool(
        "query_documents",
        "Filter documents by metadata and time. mode=preview is cheapest; metadata, section "
        "and full return progressively more.",
        {
            "kind": _KIND,
            "status": _STR,
            "author": _STR,
            "topic": _STR,
            "about": {"type": "string", "description": "Free-text topic; replaces `topic` when both are given"},
            "category": {"type": "string", "description": "Learned-pattern category"},
            "keywords": {**_STR_LIST, "description": "Learned patterns carrying any of these keywords"},
            "date_after": {"type": "string", "format": "date"},
            "date_before": {"type": "string", "format": "date"},
            "when": {"type": "string", "description": "e.g. 'last week', '3 days ago'; takes precedence over last/unit and explicit dates"},
            "last": _INT,
            "unit": {"type": "string", "enum": ["day", "week", "month"]},
            "mode": {"type": "string", "enum": list(MODES)},
            "section": _STR,
        },
    ),
    _tool(
        "search_documents",
        "Ranked full-text search. Returns snippets, never whole documents.",
        {"query": _STR, "limit": _INT, "kind": _KIND},
        ["query"],
    ),
    _tool("rebuild_index", "Rebuild the index from the document files.", {}),
    _tool(
        "archive_sessions",
        "Move sessions older than threshold_days into archive/sessions/YYYY/MM/.",
        {"threshold_days": _INT, "dry_run": _BOOL},
    ),
    _tool(
        "archive_plans",
        "Move finished plans untouched for threshold_days into archive/plans/.",
        {"statuses": _STR_LIST, "threshold_days": _INT, "dry_run": _BOOL},
    ),
    _tool(
        "time_range",
        "Resolve a phrase like 'yesterday' or '2 weeks ago' to date filters.",
        {"text": _STR, "now": {"type": "string", "format": "date"}},
        ["text"],
    ),
]

# ── JSON-RPC 2.0 helpers ─────────────────────────────────────


def jsonrpc_result(req_id, result):
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def jsonrpc_error(req_id, code, message):
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


def _text_content(payload: dict, is_error: bool = False) -> dict:
    result: dict[str, Any] = {
        "content": [{"type": "text", "text": json.dumps(payload, ensure_ascii=False, default=str)}],
    }
    if is_error:
        result["isError"] = True
    return result


# ── Request handler ──────────────────────────────────────────


async def call_tool(tools: dict[str, Callable[..., dict]], name: str, args: dict) -> dict:
    fn = tools.get(name)
    if fn is None:
        return _text_content({"ok": False, "error": {"type": "UnknownTool", "message": f"Unknown tool: {name}"}}, True)
    try:
        inspect.signature(fn).bind(**args)
    except TypeError as e:
        return _text_content({"ok": False, "error": {"type": "InvalidArguments", "message": str(e)}}, True)
    payload = await asyncio.to_thread(fn, **args)
    return _text_content(payload, not payload.get("ok", False))


async def handle_request(req: dict, tools: dict[str, Callable[..., dict]]) -> dict | None:
    req_id = req.get("id")
    method = req.get("method", "")

    # Notifications (no id) get no response
    if req_id is None:
        if method == "notifications/initialized":
            logger.info("Client initialized")
        return None

    if method == "initialize":
        return jsonrpc_result(req_id, {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        })

    if method == "tools/list":
        return jsonrpc_result(req_id, {"tools": [t for t in TOOLS if t["name"] in tools]})

    if method == "tools/call":
        params = req.get("params") or {}
        args = params.get("arguments") or {}
        if not isinstance(args, dict):
            return jsonrpc_error(req_id, -32602, "arguments must be an object")
        return jsonrpc_result(req_id, await call_tool(tools, params.get("name", ""), args))

    return jsonrpc_error(req_id, -32601, f"Method not found: {method}")


# ── Stdio transport (NDJSON) ─────────────────────────────────


async def serve(tools: dict[str, Callable[..., dict]]) -> None:
    logger.info("Starting %s tool server (%d tools)", SERVER_NAME, len(tools))

    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await asyncio.get_running_loop().connect_read_pipe(lambda: protocol, sys.stdin)

    while True:
        line = await reader.readline()
        if not line:
            break
        line = line.decode("utf-8").strip()
        if not line:
            continue

        try:
            req = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Parse error: %s", e)
            response = jsonrpc_error(None, -32700, f"Parse error: {e}")
        else:
            logger.debug("<- %s", req.get("method", "?"))
            try:
                response = await handle_request(req, tools)
            except Exception as e:
                logger.exception("Handler error")
                response = jsonrpc_error(req.get("id"), -32603, f"Internal error: {e}")
        if response:
            sys.stdout.write(json.dumps(response, ensure_ascii=False, default=str) + "\n")
            sys.stdout.flush()

    logger.info("stdin closed, shutting down")
