"""Knowledge log parsing and digest helpers.

A knowledge log is an append-only markdown file:

    ---
    created: 2026-01-04T10:12:00
    updated: 2026-02-01T08:30:11
    type: knowledge
    ---

    # Knowledge

    ---

    ## 2026-01-04 - Use uv for installs
    **Type:** decision
    **Topics:** tooling, ci

    Body text...

Parsing is tolerant: a block that does not start with a level-2 heading is
dropped, never raised on. The grammar lives in the constants below.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime

import frontmatter

from strata.memory.tokens import estimate_tokens

logger = logging.getLogger(__name__)

GRAMMAR_VERSION = 1

ENTRY_TYPES = ("decision", "pattern", "gotcha", "context")
DEFAULT_ENTRY_TYPE = "context"

# A line holding only "---" separates blocks.
ENTRY_SEPARATOR = re.compile(r"^---[ \t]*$", re.MULTILINE)
# "## 2026-01-04 - Title", "## 2026-01-04 Title" or "## Title"
HEADING_PATTERN = re.compile(r"^##\s+(?:(\d{4}-\d{2}-\d{2})\s*-?\s*)?(.+)$")
TYPE_PREFIX = "**Type:**"
TOPICS_PREFIX = "**Topics:**"
HEADER_TITLE = "# Knowledge"
RENDER_SEPARATOR = "\n\n---\n\n"

_FRONTMATTER_FIELD = re.compile(r"^(created|type):", re.MULTILINE)

SUMMARY_DECISION_CAP = 10
SUMMARY_PATTERN_CAP = 5
SUMMARY_RECENT_COUNT = 5


@dataclass
class Entry:
    """One dated, typed, topic-tagged note."""

    date: str
    title: str
    type: str
    topics: list[str]
    body: str
    raw_block: str

    @property
    def kind(self) -> str:
        """The entry type, with unrecognized values folded into ``context``."""
        return self.type if self.type in ENTRY_TYPES else DEFAULT_ENTRY_TYPE

    def parsed_date(self) -> date | None:
        if not self.date:
            return None
        try:
            return datetime.strptime(self.date, "%Y-%m-%d").date()
        except ValueError:
            return None


@dataclass
class ParsedLog:
    entries: list[Entry]
    token_count: int
    topic_set: list[str]
    oldest_date: str | None
    newest_date: str | None
    raw: str = ""
    metadata: dict = field(default_factory=dict)


@dataclass
class TopicGroup:
    topic: str
    entries: list[Entry]


# ── Parsing ──────────────────────────────────────────────────


def _is_frontmatter_block(block: str) -> bool:
    fields = {m.group(1) for m in _FRONTMATTER_FIELD.finditer(block)}
    return {"created", "type"} <= fields


def _is_header_block(block: str) -> bool:
    return block.strip() == HEADER_TITLE


def _read_metadata(raw: str) -> dict:
    """Frontmatter mapping, or {} when absent or not valid YAML."""
    if not raw.startswith("---"):
        return {}
    try:
        return dict(frontmatter.loads(raw).metadata)
    except Exception:
        logger.debug("Ignoring malformed knowledge frontmatter")
        return {}


def parse_entry(block: str) -> Entry | None:
    """Parse one separator-delimited block, or None if it is not an entry."""
    text = block.strip()
    if not text:
        return None
    lines = text.splitlines()
    match = HEADING_PATTERN.match(lines[0])
    if not match:
        return None

    entry_type = DEFAULT_ENTRY_TYPE
    topics: list[str] = []
    body_start = len(lines)
    for i, line in enumerate(lines[1:], start=1):
        if line.startswith(TYPE_PREFIX):
            value = line[len(TYPE_PREFIX) :].strip()
            if value:
                entry_type = value.split()[0].lower()
        elif line.startswith(TOPICS_PREFIX):
            value = line[len(TOPICS_PREFIX) :]
            topics = [t.strip().lower() for t in value.split(",") if t.strip()]
        elif line.strip():
            body_start = i
            break

    return Entry(
        date=match.group(1) or "",
        title=match.group(2).strip(),
        type=entry_type,
        topics=topics,
        body="\n".join(lines[body_start:]).strip(),
        raw_block=text,
    )


def parse_log(raw: str) -> ParsedLog:
    """Split a knowledge log into entries and compute aggregate metadata."""
    entries: list[Entry] = []
    for block in ENTRY_SEPARATOR.split(raw or ""):
        if not block.strip() or _is_frontmatter_block(block) or _is_header_block(block):
            continue
        entry = parse_entry(block)
        if entry is not None:
            entries.append(entry)

    topics = sorted({t for e in entries for t in e.topics})
    dates = sorted(e.date for e in entries if e.date)
    return ParsedLog(
        entries=entries,
        token_count=estimate_tokens(raw),
        topic_set=topics,
        oldest_date=dates[0] if dates else None,
        newest_date=dates[-1] if dates else None,
        raw=raw or "",
        metadata=_read_metadata(raw or ""),
    )


def render_entries(entries: list[Entry]) -> str:
    """Join entries back to markdown using their verbatim source blocks."""
    return RENDER_SEPARATOR.join(e.raw_block for e in entries)


# ── Queries ──────────────────────────────────────────────────


def filter_by_topic(entries: list[Entry], topic: str) -> list[Entry]:
    """Entries whose topics, title or body contain *topic* (case-insensitive)."""
    needle = topic.lower()
    return [
        e
        for e in entries
        if any(needle in t for t in e.topics)
        or needle in e.title.lower()
        or needle in e.body.lower()
    ]


def find_duplicate_topics(entries: list[Entry], min_entries: int = 3) -> list[TopicGroup]:
    """Topics shared by at least *min_entries* entries, largest group first."""
    by_topic: dict[str, list[Entry]] = {}
    for entry in entries:
        for topic in entry.topics:
            by_topic.setdefault(topic, []).append(entry)
    groups = [TopicGroup(t, es) for t, es in by_topic.items() if len(es) >= min_entries]
    groups.sort(key=lambda g: len(g.entries), reverse=True)
    return groups


def find_stale_entries(
    entries: list[Entry], staleness_days: int = 90, today: date | None = None
) -> list[Entry]:
    """Entries dated more than *staleness_days* days before *today*."""
    today = today or date.today()
    stale = []
    for entry in entries:
        d = entry.parsed_date()
        if d is not None and (today - d).days > staleness_days:
            stale.append(entry)
    return stale


# ── Summary ──────────────────────────────────────────────────


def _listing(entries: list[Entry], cap: int | None, prefix: str = "") -> list[str]:
    shown = entries if cap is None else entries[:cap]
    lines = [f"- {prefix}{e.title} ({e.date or 'no date'})" for e in shown]
    if cap is not None and len(entries) > cap:
        lines.append(f"- ... and {len(entries) - cap} more")
    return lines


def generate_summary(parsed: ParsedLog) -> str:
    """Digest of a log too large to load in full.

    Decisions are capped at 10 and patterns at 5. Gotchas are always listed in
    full. The last section shows the 5 most recent dated entries.
    """
    by_kind: dict[str, list[Entry]] = {}
    for entry in parsed.entries:
        by_kind.setdefault(entry.kind, []).append(entry)

    lines = [
        "# Knowledge Summary",
        "",
        f"**Status:** {parsed.token_count} tokens, {len(parsed.entries)} entries",
        f"**Topics:** {', '.join(parsed.topic_set)}",
        "",
    ]

    sections = [
        ("decision", "Key Decisions", SUMMARY_DECISION_CAP, ""),
        ("pattern", "Patterns", SUMMARY_PATTERN_CAP, ""),
        ("gotcha", "Gotchas", None, "(!) "),
    ]
    for kind, heading, cap, prefix in sections:
        group = by_kind.get(kind, [])
        if not group:
            continue
        lines.append(f"## {heading} ({len(group)})")
        lines.extend(_listing(group, cap, prefix))
        lines.append("")

    recent = sorted((e for e in parsed.entries if e.date), key=lambda e: e.date, reverse=True)
    recent = recent[:SUMMARY_RECENT_COUNT]
    if recent:
        lines.append("## Recent Activity")
        lines.extend(f"- [{e.date}] {e.title} ({e.type})" for e in recent)
        lines.append("")

    lines.append("*Pass a topic filter to load specific entries in full.*")
    return "\n".join(lines)
