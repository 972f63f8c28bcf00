"""Shared fixtures: a throwaway project root with a knowsys corpus."""

from __future__ import annotations

from pathlib import Path

import pytest

from knowsys.config import IndexConfig, KnowsysConfig
from knowsys.store import KnowledgeStore

SESSION_TEXT = """\
---
date: '2026-02-14'
topics:
- x
status: in-progress
---

# Session: Test (Feb 14, 2026)

## Goal
Ship it

## Progress

## Notes
Remember the cache
"""

PLAN_TEXT = """\
---
id: auth_flow
title: Auth Flow
status: ACTIVE
author: alice
custom_field: keep me
---

# Implementation Plan: Auth Flow

## Steps

### Step 1
Write the login form

### Step 2
Wire the session cookie

## Risks
None yet
"""


@pytest.fixture(autouse=True)
def _fixed_author(monkeypatch):
    """Keep tests away from the real git config."""
    monkeypatch.setattr("knowsys.store.detect_author", lambda cwd=None: "tester")


def make_config(root: Path, backend: str = "json") -> KnowsysConfig:
    return KnowsysConfig(root=root, index=IndexConfig(backend=backend))


@pytest.fixture
def store(tmp_path: Path) -> KnowledgeStore:
    s = KnowledgeStore(config=make_config(tmp_path))
    s.init_corpus()
    return s


@pytest.fixture(params=["json", "sqlite"])
def backend_store(request, tmp_path: Path) -> KnowledgeStore:
    s = KnowledgeStore(config=make_config(tmp_path, request.param))
    s.init_corpus()
    return s


@pytest.fixture
def session_file(tmp_path: Path) -> Path:
    path = tmp_path / ".knowsys" / "sessions" / "2026-02-14-session.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(SESSION_TEXT, encoding="utf-8")
    return path


@pytest.fixture
def plan_file(tmp_path: Path) -> Path:
    path = tmp_path / ".knowsys" / "plans" / "PLAN_auth_flow.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(PLAN_TEXT, encoding="utf-8")
    return path
