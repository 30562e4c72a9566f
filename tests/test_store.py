"""Tests for the memory store: entry writer, context assembly, init."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from conftest import entry_block, make_scope
from strata.config import StrataConfig, WriterConfig
from strata.errors import InvalidInputError, NotInitializedError
from strata.memory.knowledge import parse_log
from strata.memory.store import (
    FileToCreate,
    MemoryStore,
    format_context,
    session_start_payload,
    touch_frontmatter,
)


class TestTouchFrontmatter:
    def test_replaces_updated(self):
        text = "---\ncreated: a\nupdated: b\n---\n\nbody"
        assert touch_frontmatter(text, "NOW") == "---\ncreated: a\nupdated: NOW\n---\n\nbody"

    def test_inserts_when_missing(self):
        text = "---\ncreated: a\n---\n\nbody"
        assert touch_frontmatter(text, "NOW") == "---\nupdated: NOW\ncreated: a\n---\n\nbody"

    def test_bare_file_unchanged(self):
        text = "# Knowledge\n\nupdated: keep me\n"
        assert touch_frontmatter(text, "NOW") == text

    def test_body_field_untouched(self):
        text = "---\nupdated: b\n---\n\nupdated: in body\n"
        assert touch_frontmatter(text, "NOW") == "---\nupdated: NOW\n---\n\nupdated: in body\n"

    def test_unterminated_frontmatter_unchanged(self):
        text = "---\nupdated: b\nno closing"
        assert touch_frontmatter(text, "NOW") == text

    def test_leading_separator_is_not_frontmatter(self):
        text = "---\n" + entry_block("A") + "\n---\n\n" + entry_block("B", date="2026-01-02")
        assert touch_frontmatter(text, "NOW") == text

    def test_list_values_count_as_frontmatter(self):
        text = "---\naliases:\n  - kb\nupdated: b\n---\n\nbody"
        assert touch_frontmatter(text, "NOW") == "---\naliases:\n  - kb\nupdated: NOW\n---\n\nbody"


class TestAppendEntry:
    def test_creates_log_with_header(self, tmp_path: Path, store: MemoryStore):
        make_scope(tmp_path)
        result = store.append_entry(tmp_path, "Use X", "decision", [" Infra ", "CI"], "because Y\n")

        content = result.path.read_text(encoding="utf-8")
        assert result.path == tmp_path.resolve() / ".strata" / "knowledge.md"
        assert content.startswith("---\ncreated: ")
        assert "type: knowledge" in content
        assert "# Knowledge" in content
        assert f"## {date.today().isoformat()} - Use X\n**Type:** decision\n**Topics:** infra, ci\n\nbecause Y\n" in content
        assert result.warning is None

    def test_appends_in_order(self, tmp_path: Path, store: MemoryStore):
        make_scope(tmp_path)
        store.append_entry(tmp_path, "First", "pattern", ["a"], "one")
        result = store.append_entry(tmp_path, "Second", "gotcha", ["b"], "two")

        parsed = parse_log(result.path.read_text(encoding="utf-8"))
        assert [(e.title, e.type, e.topics) for e in parsed.entries] == [
            ("First", "pattern", ["a"]),
            ("Second", "gotcha", ["b"]),
        ]

    def test_writes_to_nearest_scope(self, tmp_path: Path, store: MemoryStore):
        make_scope(tmp_path)
        make_scope(tmp_path / "pkg", identity=None)
        (tmp_path / "pkg" / "deep").mkdir()

        result = store.append_entry(tmp_path / "pkg" / "deep", "T", "context", ["x"], "b")
        assert result.path.parent.parent.name == "pkg"

    def test_existing_bare_file_keeps_no_frontmatter(self, tmp_path: Path, store: MemoryStore):
        marker = make_scope(tmp_path)
        log = marker / "knowledge.md"
        log.write_text("# Notes\n", encoding="utf-8")

        store.append_entry(tmp_path, "T", "context", ["x"], "b")
        content = log.read_text(encoding="utf-8")
        assert content.startswith("# Notes\n\n---\n\n## ")

    def test_bare_log_opening_with_separator_keeps_entries(self, tmp_path: Path, store: MemoryStore):
        marker = make_scope(tmp_path)
        log = marker / "knowledge.md"
        original = "---\n" + entry_block("First") + "\n---\n\n" + entry_block("Second") + "\n"
        log.write_text(original, encoding="utf-8")

        store.append_entry(tmp_path, "Third", "context", ["x"], "b")
        content = log.read_text(encoding="utf-8")
        assert content.startswith(original)
        assert [e.title for e in parse_log(content).entries] == ["First", "Second", "Third"]

    def test_body_rule_line_does_not_split_entry(self, tmp_path: Path, store: MemoryStore):
        make_scope(tmp_path)
        store.append_entry(tmp_path, "First", "pattern", ["a"], "before\n---\nafter")
        result = store.append_entry(tmp_path, "Second", "gotcha", ["b"], "two")

        entries = parse_log(result.path.read_text(encoding="utf-8")).entries
        assert [e.title for e in entries] == ["First", "Second"]
        assert entries[0].body == "before\n***\nafter"

    def test_rejects_multiline_title(self, tmp_path: Path, store: MemoryStore):
        marker = make_scope(tmp_path)
        with pytest.raises(InvalidInputError) as exc:
            store.append_entry(tmp_path, "A\nB", "gotcha", ["x"], "b")
        assert exc.value.field == "title"
        assert not (marker / "knowledge.md").exists()

    def test_rejects_invalid_type_without_writing(self, tmp_path: Path, store: MemoryStore):
        marker = make_scope(tmp_path)
        with pytest.raises(InvalidInputError) as exc:
            store.append_entry(tmp_path, "T", "urgent", ["x"], "b")
        assert exc.value.field == "type"
        assert exc.value.render().startswith("Error (invalid input): type:")
        assert not (marker / "knowledge.md").exists()

    def test_rejects_invalid_type_leaves_content(self, tmp_path: Path, store: MemoryStore):
        marker = make_scope(tmp_path)
        log = marker / "knowledge.md"
        log.write_text("---\nupdated: old\n---\n", encoding="utf-8")
        with pytest.raises(InvalidInputError):
            store.append_entry(tmp_path, "T", "urgent", ["x"], "b")
        assert log.read_text(encoding="utf-8") == "---\nupdated: old\n---\n"

    def test_rejects_empty_topics(self, tmp_path: Path, store: MemoryStore):
        make_scope(tmp_path)
        with pytest.raises(InvalidInputError) as exc:
            store.append_entry(tmp_path, "T", "decision", [" ", ""], "b")
        assert exc.value.field == "topics"

    def test_validation_before_scope_lookup(self, tmp_path: Path, store: MemoryStore):
        with pytest.raises(InvalidInputError):
            store.append_entry(tmp_path, "T", "urgent", ["x"], "b")

    def test_not_initialized(self, tmp_path: Path, store: MemoryStore):
        with pytest.raises(NotInitializedError) as exc:
            store.append_entry(tmp_path, "T", "decision", ["x"], "b")
        assert exc.value.render().startswith("Error (not initialized):")
        assert not (tmp_path / ".strata").exists()

    def test_size_warning(self, tmp_path: Path):
        make_scope(tmp_path)
        store = MemoryStore(StrataConfig(writer=WriterConfig(warn_threshold=20)))
        result = store.append_entry(tmp_path, "T", "decision", ["x"], "b" * 200)

        tokens = (len(result.path.read_text(encoding="utf-8")) + 3) // 4
        assert result.warning == f"Warning: Knowledge is {tokens} tokens. Consider running maintenance soon."

    def test_quick_append(self, tmp_path: Path, store: MemoryStore):
        make_scope(tmp_path)
        long_line = "Remember to pin #Redis versions in #ci " + "x" * 60
        result = store.quick_append(tmp_path, long_line, "gotcha")

        entry = parse_log(result.path.read_text(encoding="utf-8")).entries[0]
        assert entry.title == long_line[:57] + "..."
        assert entry.topics == ["redis", "ci"]
        assert entry.type == "gotcha"

    def test_quick_append_topic_fallback(self, tmp_path: Path, store: MemoryStore):
        make_scope(tmp_path)
        result = store.quick_append(tmp_path, "plain note")
        assert parse_log(result.path.read_text(encoding="utf-8")).entries[0].topics == ["context"]


class TestEndToEnd:
    def test_init_learn_read(self, tmp_path: Path, store: MemoryStore):
        store.init_scope(tmp_path, "# Proj\n\nhello")
        store.append_entry(tmp_path, "Use X", "decision", ["infra"], "because Y")

        full = store.gather_context(tmp_path).knowledge
        assert full.mode == "full"
        assert "Use X" in full.content
        assert "because Y" in full.content

        filtered = store.gather_context(tmp_path, topic="infra").knowledge
        assert filtered.entry_count == 1
        assert "Use X" in filtered.content

        missing = store.gather_context(tmp_path, topic="nope").knowledge
        assert missing.content == 'No entries found for topic: "nope"'


class TestGatherContext:
    def test_chain_navigation_and_format(self, tmp_path: Path, store: MemoryStore):
        store.init_scope(tmp_path, "# Company\n\nroot rules")
        store.init_scope(tmp_path / "client", "# Client A\n\nclient rules")
        make_scope(tmp_path / "other")
        make_scope(tmp_path / "client" / "api")

        result = store.gather_context(tmp_path / "client")
        assert [link.title for link in result.chain] == ["Company", "Client A"]
        assert result.chain[-1].identity == "# Client A\n\nclient rules"
        assert result.knowledge is None
        assert result.siblings == ["other"]
        assert result.children == ["api"]

        text = format_context(result)
        assert "## Domain Chain" in text
        assert "## Current Context: client" in text
        assert "client rules" in text
        assert "## Other Domains\n\n- other" in text
        assert "## Subdomains\n\n- api" in text
        assert "created:" not in text

    def test_includes_live_state(self, tmp_path: Path, store: MemoryStore):
        store.init_scope(tmp_path, "# P")
        store.write_state(tmp_path, "halfway through migration")
        result = store.gather_context(tmp_path)
        assert result.state is not None
        assert "halfway through migration" in format_context(result)

    def test_session_start_payload(self, tmp_path: Path, store: MemoryStore):
        store.init_scope(tmp_path, "# P\n\nx")
        payload = session_start_payload(store.gather_context(tmp_path))
        assert payload["hookSpecificOutput"]["hookEventName"] == "SessionStart"
        assert "# P" in payload["hookSpecificOutput"]["additionalContext"]

    def test_orient_gate(self, tmp_path: Path, store: MemoryStore):
        store.init_scope(tmp_path, "# P\n\nx")
        assert store.orient(tmp_path, already_oriented=True) == ""
        assert "## Domain Chain" in store.orient(tmp_path, already_oriented=False)


class TestInit:
    def test_init_scope_files(self, tmp_path: Path, store: MemoryStore):
        marker = store.init_scope(tmp_path, "# P", knowledge="seed notes")
        info = (marker / "info.md").read_text(encoding="utf-8")
        knowledge = (marker / "knowledge.md").read_text(encoding="utf-8")
        assert "type: context" in info and info.endswith("# P\n")
        assert "type: knowledge" in knowledge and "# Knowledge\n\nseed notes" in knowledge

    def test_init_scope_requires_identity(self, tmp_path: Path, store: MemoryStore):
        with pytest.raises(InvalidInputError):
            store.init_scope(tmp_path, "  ")

    def test_analyze_init(self, tmp_path: Path, store: MemoryStore):
        store.init_scope(tmp_path, "# Parent")
        child = tmp_path / "svc"
        child.mkdir()
        (child / "pyproject.toml").write_text("")

        analysis = store.analyze_init(child)
        assert analysis.status == "needs_input"
        assert analysis.suggested_type == "codebase"
        assert [link.title for link in analysis.parent_chain] == ["Parent"]

        store.init_scope(child, "# Svc")
        assert store.analyze_init(child).status == "already_initialized"

    def test_init_finalize(self, tmp_path: Path, store: MemoryStore):
        result = store.init_finalize(
            tmp_path,
            [
                FileToCreate(".strata/info.md", "# Root"),
                FileToCreate("src/.strata/decisions.md", "# Decisions", "decisions"),
            ],
        )
        assert result.success
        assert (tmp_path / "src" / ".strata" / "decisions.md").exists()

    def test_init_finalize_validation(self, tmp_path: Path, store: MemoryStore):
        result = store.init_finalize(
            tmp_path,
            [
                FileToCreate("src/.strata/info.md", "x"),
                FileToCreate("../.strata/evil.md", "x"),
                FileToCreate("notes/readme.txt", "x"),
            ],
        )
        assert not result.success
        assert result.created == []
        assert any("required" in e for e in result.errors)
        assert any("traversal" in e for e in result.errors)
        assert any(".md" in e for e in result.errors)
        assert not (tmp_path / "src").exists()
