"""Size-gated views of a knowledge log: full, summary or blocked."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from strata.config import ViewThresholds
from strata.memory.knowledge import ParsedLog, filter_by_topic, generate_summary, render_entries
from strata.memory.tokens import estimate_tokens

ViewMode = Literal["full", "summary", "blocked"]

NO_ENTRIES_MESSAGE = 'No entries found for topic: "{topic}"'
BLOCKED_PREFIX = "BLOCKED: "
WARNING_PREFIX = "Warning: "


@dataclass
class KnowledgeView:
    content: str
    mode: ViewMode
    token_count: int
    entry_count: int
    topics: list[str] = field(default_factory=list)
    warning: str | None = None

    @property
    def blocked(self) -> bool:
        return self.mode == "blocked"


def build_view(
    parsed: ParsedLog,
    thresholds: ViewThresholds | None = None,
    topic: str | None = None,
) -> KnowledgeView:
    """Choose how much of *parsed* the caller gets to see.

    A topic filter always yields ``full`` mode, whatever the size. Otherwise
    the whole-file token count picks full (<= ``thresholds.full``), summary
    (<= ``thresholds.summary``) or blocked. A blocked view withholds the
    content entirely and must be resolved by running maintenance.
    """
    thresholds = thresholds or ViewThresholds()
    tokens = parsed.token_count
    count = len(parsed.entries)

    if topic:
        matched = filter_by_topic(parsed.entries, topic)
        content = render_entries(matched) if matched else NO_ENTRIES_MESSAGE.format(topic=topic)
        return KnowledgeView(
            content=content,
            mode="full",
            token_count=estimate_tokens(render_entries(matched)),
            entry_count=len(matched),
            topics=parsed.topic_set,
        )

    if tokens <= thresholds.full:
        return KnowledgeView(
            content=parsed.raw,
            mode="full",
            token_count=tokens,
            entry_count=count,
            topics=parsed.topic_set,
        )

    if tokens <= thresholds.summary:
        return KnowledgeView(
            content=generate_summary(parsed),
            mode="summary",
            token_count=tokens,
            entry_count=count,
            topics=parsed.topic_set,
            warning=(
                f"{WARNING_PREFIX}Knowledge is {tokens} tokens. Showing summary. "
                "Pass a topic filter to load specific entries."
            ),
        )

    return KnowledgeView(
        content=(
            f"{BLOCKED_PREFIX}Knowledge is bloated ({tokens} tokens, {count} entries).\n\n"
            "Run maintenance to consolidate before continuing.\n\n"
            f"Topics available: {', '.join(parsed.topic_set)}"
        ),
        mode="blocked",
        token_count=tokens,
        entry_count=count,
        topics=parsed.topic_set,
        warning=f"Knowledge exceeds {thresholds.summary} tokens. Maintenance required.",
    )
