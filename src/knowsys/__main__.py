"""Entry point: python -m knowsys [serve|rebuild|init|migrate]

- "serve":   Tool server on stdio (default)
- "rebuild": Rebuild the index from the document files
- "init":    Create the .knowsys/ layout
- "migrate": Add frontmatter to legacy plan and session files
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from knowsys.config import KnowsysConfig, load_config


def _setup_logging(level: str) -> None:
    # stdout is reserved for protocol messages and command output
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _store(config: KnowsysConfig):
    from knowsys.store import KnowledgeStore

    return KnowledgeStore(config=config)


def _print(result: dict) -> None:
    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))


def _run_serve() -> None:
    """Tool server mode."""
    config = load_config()
    _setup_logging(config.log_level)

    from knowsys.server import serve
    from knowsys.tools import get_tools

    try:
        asyncio.run(serve(get_tools(_store(config))))
    except KeyboardInterrupt:
        pass


def _run_once(action: str) -> None:
    config = load_config()
    _setup_logging(config.log_level)
    store = _store(config)
    if action == "rebuild":
        _print(store.rebuild_index())
    elif action == "init":
        _print(store.init_corpus())
    elif action == "migrate":
        _print(store.migrate_legacy())


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "serve"

    if cmd == "serve":
        _run_serve()
    elif cmd in ("rebuild", "init", "migrate"):
        _run_once(cmd)
    else:
        print("Usage: python -m knowsys [serve|rebuild|init|migrate]")
        print("  serve    Tool server over stdio (default)")
        print("  rebuild  Rebuild the index from the document files")
        print("  init     Create the .knowsys/ layout")
        print("  migrate  Convert legacy plans and sessions to frontmatter")
        sys.exit(1)


if __name__ == "__main__":
    main()
