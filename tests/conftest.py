"""Shared fixtures for building scope trees on disk."""

from __future__ import annotations

from pathlib import Path

import pytest

from strata.memory.store import MemoryStore


def make_scope(directory: Path, identity: str | None = "# Scope\n\nrules") -> Path:
    """Create ``directory/.strata`` (with info.md unless *identity* is None)."""
    marker = directory / ".strata"
    marker.mkdir(parents=True, exist_ok=True)
    if identity is not None:
        (marker / "info.md").write_text(identity, encoding="utf-8")
    return marker


def entry_block(
    title: str,
    date: str = "2026-01-01",
    type: str = "context",
    topics: str = "misc",
    body: str = "Body text.",
) -> str:
    heading = f"## {date} - {title}" if date else f"## {title}"
    return f"{heading}\n**Type:** {type}\n**Topics:** {topics}\n\n{body}"


def make_log(*blocks: str) -> str:
    header = (
        "---\ncreated: 2026-01-01T00:00:00\nupdated: 2026-01-01T00:00:00\n"
        "type: knowledge\n---\n\n# Knowledge\n"
    )
    return header + "".join(f"\n---\n\n{b}\n" for b in blocks)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()
