"""Configuration loading from environment variables and knowsys.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_CONFIG_FILENAME = "knowsys.toml"
_INDEX_BACKENDS = ("auto", "json", "sqlite")


@dataclass
class IndexConfig:
    """Secondary index configuration."""

    backend: str = "auto"
    sqlite_threshold: int = 200


@dataclass
class SearchConfig:
    """Full-text search configuration."""

    limit: int = 10
    snippet_chars: int = 60


@dataclass
class ArchiveConfig:
    """Archiving thresholds."""

    session_days: int = 30
    plan_days: int = 7
    plan_statuses: list[str] = field(default_factory=lambda: ["COMPLETE", "CANCELLED"])


@dataclass
class KnowsysConfig:
    """Top-level knowsys configuration."""

    root: Path = field(default_factory=Path.cwd)
    index: IndexConfig = field(default_factory=IndexConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    log_level: str = "INFO"

    @property
    def data_dir(self) -> Path:
        return self.root / ".knowsys"


def load_config(config_path: Path | None = None) -> KnowsysConfig:
    """Load configuration from environment variables and optional knowsys.toml.

    Priority: environment variables > knowsys.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.knowsys/
        for candidate in [
            Path.cwd() / _CONFIG_FILENAME,
            Path.home() / ".knowsys" / _CONFIG_FILENAME,
        ]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    index_data = file_data.get("index", {})
    search_data = file_data.get("search", {})
    archive_data = file_data.get("archive", {})

    backend = os.getenv("KNOWSYS_INDEX_BACKEND", index_data.get("backend", "auto")).lower()
    if backend not in _INDEX_BACKENDS:
        raise ValueError(
            f"Invalid index backend {backend!r}; expected one of {', '.join(_INDEX_BACKENDS)}"
        )

    config = KnowsysConfig(
        root=Path(os.getenv("KNOWSYS_ROOT", file_data.get("root", str(Path.cwd())))).resolve(),
        index=IndexConfig(
            backend=backend,
            sqlite_threshold=int(index_data.get("sqlite_threshold", 200)),
        ),
        search=SearchConfig(
            limit=int(os.getenv("KNOWSYS_SEARCH_LIMIT", search_data.get("limit", 10))),
            snippet_chars=int(search_data.get("snippet_chars", 60)),
        ),
        archive=ArchiveConfig(
            session_days=int(archive_data.get("session_days", 30)),
            plan_days=int(archive_data.get("plan_days", 7)),
            plan_statuses=list(archive_data.get("plan_statuses", ["COMPLETE", "CANCELLED"])),
        ),
        log_level=os.getenv("KNOWSYS_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
