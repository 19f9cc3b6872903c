"""
Shared test fixtures for tracer tests.

All TRACER_* environment variables are cleaned before each test and the
working directory is moved to tmp_path so no .env file or stray database
file leaks between tests.

CHANGELOG:
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest
from tracer.src.store import SampleStore

VALID_LINE = "12.6:18.3:2.1:0.0:14.4:1.0:0.0:25.5:0.0:1.0:9999999"
"""A well-formed device frame (ten fields plus terminator)."""


@pytest.fixture(autouse=True)
def _clean_tracer_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all TRACER_* env vars and isolate from .env files."""
    for var in list(os.environ):
        if var.startswith("TRACER_"):
            monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[SampleStore]:
    """An opened SampleStore backed by a temporary SQLite file."""
    with SampleStore(tmp_path / "samples.db") as s:
        yield s
