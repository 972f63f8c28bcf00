"""knowsys: local knowledge store for sessions, plans and learned patterns.

Layout:
    <project>/.knowsys/
    ├── sessions/
    │   └── 2026-02-14-session.md      # One per working day
    ├── plans/
    │   └── PLAN_<id>.md               # Implementation plans
    ├── learned/
    │   └── <slug>.md                  # Reusable patterns
    ├── archive/                       # Old sessions (YYYY/MM/) and finished plans
    ├── context-index.json             # Index, JSON tier (cache)
    └── knowledge.db                   # Index, SQLite/FTS5 tier (cache)

Markdown files with YAML frontmatter are the source of truth; the index can
be deleted and rebuilt at any time.
"""

__version__ = "0.1.0"
