"""Maintenance report over every scope under a root.

The analyzer only proposes. It flags bloated, stale and duplicate-heavy
knowledge logs and suggests consolidate/archive/summarize actions; applying
them is left to the agent or the user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Literal

from strata.config import MaintenanceConfig
from strata.memory.knowledge import find_duplicate_topics, find_stale_entries, parse_log
from strata.memory.scopes import DEFAULT_LAYOUT, ScopeLayout, find_all_scopes
from strata.memory.tokens import format_token_count

logger = logging.getLogger(__name__)

IssueProblem = Literal["bloated", "stale", "duplicates"]
ActionType = Literal["consolidate", "archive", "summarize"]

CONSOLIDATE_GROUP_LIMIT = 3
DUPLICATE_ENTRY_LIMIT = 5
REPORT_ENTRY_PREVIEW = 3


@dataclass
class MaintenanceIssue:
    """A problem found in one scope."""

    path: Path
    problem: IssueProblem
    details: str
    suggested_action: str


@dataclass
class MaintenanceAction:
    """A single proposed maintenance action."""

    type: ActionType
    target: Path
    preview: str
    entries: list[str] = field(default_factory=list)


@dataclass
class MaintenanceReport:
    scanned: int = 0
    total_tokens: int = 0
    total_entries: int = 0
    issues: list[MaintenanceIssue] = field(default_factory=list)
    actions: list[MaintenanceAction] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.issues


def _analyze_log(
    report: MaintenanceReport,
    scope_path: Path,
    knowledge_path: Path,
    config: MaintenanceConfig,
    today: date,
) -> None:
    parsed = parse_log(knowledge_path.read_text(encoding="utf-8"))
    tokens = parsed.token_count
    entries = parsed.entries
    report.total_tokens += tokens
    report.total_entries += len(entries)

    duplicates = find_duplicate_topics(entries)

    bloated = tokens > config.bloat_token_threshold
    if bloated:
        report.issues.append(
            MaintenanceIssue(
                path=scope_path,
                problem="bloated",
                details=f"{format_token_count(tokens)} tokens, {len(entries)} entries",
                suggested_action="Consolidate similar entries or archive old ones",
            )
        )
        for group in duplicates[:CONSOLIDATE_GROUP_LIMIT]:
            report.actions.append(
                MaintenanceAction(
                    type="consolidate",
                    target=knowledge_path,
                    preview=f'Merge {len(group.entries)} entries about "{group.topic}"',
                    entries=[e.title for e in group.entries],
                )
            )
        if tokens > config.block_token_threshold:
            report.actions.append(
                MaintenanceAction(
                    type="summarize",
                    target=knowledge_path,
                    preview=(
                        f"Summarize from {format_token_count(tokens)} "
                        f"to ~{format_token_count(config.target_tokens)} tokens"
                    ),
                )
            )

    stale = find_stale_entries(entries, config.staleness_days, today)
    if stale:
        report.issues.append(
            MaintenanceIssue(
                path=scope_path,
                problem="stale",
                details=f"{len(stale)} entries older than {config.staleness_days} days",
                suggested_action="Review and archive if no longer relevant",
            )
        )
        report.actions.append(
            MaintenanceAction(
                type="archive",
                target=knowledge_path,
                preview=f"Archive {len(stale)} old entries",
                entries=[f"{e.date} - {e.title}" for e in stale],
            )
        )

    duplicate_entries = sum(len(g.entries) for g in duplicates)
    if duplicates and not bloated and duplicate_entries > DUPLICATE_ENTRY_LIMIT:
        report.issues.append(
            MaintenanceIssue(
                path=scope_path,
                problem="duplicates",
                details=f"{len(duplicates)} topics with 3+ entries each",
                suggested_action="Consider consolidating related entries",
            )
        )


def analyze(
    root: str | Path,
    config: MaintenanceConfig | None = None,
    layout: ScopeLayout = DEFAULT_LAYOUT,
    today: date | None = None,
) -> MaintenanceReport:
    """Scan every scope under *root* and build a report. Never writes."""
    config = config or MaintenanceConfig()
    today = today or date.today()
    scopes = find_all_scopes(root, max_depth=config.max_depth, layout=layout)
    report = MaintenanceReport(scanned=len(scopes))

    for scope in scopes:
        knowledge_path = scope.file("knowledge")
        try:
            if not knowledge_path.is_file():
                continue
            _analyze_log(report, scope.path, knowledge_path, config, today)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Skipping unreadable knowledge log %s: %s", knowledge_path, e)

    logger.info(
        "Maintenance scanned %d scopes: %d issues, %d actions",
        report.scanned,
        len(report.issues),
        len(report.actions),
    )
    return report


def format_report(report: MaintenanceReport) -> str:
    """Render a report as markdown."""
    lines = [
        "# Maintenance Report",
        "",
        "## Overview",
        "",
        f"- **Scanned:** {report.scanned} scopes",
        f"- **Total tokens:** {format_token_count(report.total_tokens)}",
        f"- **Total entries:** {report.total_entries}",
        "",
    ]

    if report.healthy:
        lines.append("**All knowledge files are healthy.**")
        return "\n".join(lines) + "\n"

    lines += ["## Issues Found", ""]
    for issue in report.issues:
        lines += [
            f"### [{issue.problem}] {issue.path.name or issue.path}",
            "",
            f"**Problem:** {issue.problem}",
            f"**Details:** {issue.details}",
            f"**Suggested:** {issue.suggested_action}",
            "",
        ]

    if report.actions:
        lines += ["## Suggested Actions", ""]
        for i, action in enumerate(report.actions, start=1):
            # target is <scope>/<marker>/<log>
            domain = action.target.parent.parent.name
            lines.append(f"{i}. **{action.type}** in {domain}")
            lines.append(f"   {action.preview}")
            for name in action.entries[:REPORT_ENTRY_PREVIEW]:
                lines.append(f"   - {name}")
            if len(action.entries) > REPORT_ENTRY_PREVIEW:
                lines.append(f"   - ... and {len(action.entries) - REPORT_ENTRY_PREVIEW} more")
            lines.append("")

    lines += ["---", "", "*Review issues and apply changes manually or with agent assistance.*"]
    return "\n".join(lines)
