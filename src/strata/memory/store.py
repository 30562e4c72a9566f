"""Memory store: entry writer, context assembly and scope initialization.

Markdown files are the source of truth and there is no in-memory index:
every call walks the directory tree and re-reads the files it needs.

Writes are a plain read-modify-write without locking. Callers are expected to
serialize access; a concurrent external writer can interleave with an append,
including the ``updated`` frontmatter touch.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path

import frontmatter

from strata.config import StrataConfig
from strata.errors import InvalidInputError, NotInitializedError
from strata.memory import state as session_state
from strata.memory.knowledge import ENTRY_SEPARATOR, ENTRY_TYPES, HEADER_TITLE, parse_log
from strata.memory.maintenance import MaintenanceReport, analyze
from strata.memory.scopes import (
    MemoryScope,
    ScopeLayout,
    find_ancestor_chain,
    find_child_scopes,
    find_nearest_scope,
    find_sibling_scopes,
)
from strata.memory.tokens import estimate_tokens
from strata.memory.views import WARNING_PREFIX, KnowledgeView, build_view

logger = logging.getLogger(__name__)

QUICK_TITLE_LIMIT = 60

_UPDATED_FIELD = re.compile(r"^updated:")
_FRONTMATTER_LINE = re.compile(r"^\w[\w-]*:\s?.*$")
_HASHTAG = re.compile(r"#(\w+)")

CODE_MANIFESTS = ("package.json", "Cargo.toml", "go.mod", "pyproject.toml", "setup.py")


@dataclass
class AppendResult:
    path: Path
    warning: str | None = None


@dataclass
class ChainLink:
    """One scope's identity as it appears in a context chain."""

    domain: str
    path: Path
    title: str
    identity: str


@dataclass
class ContextResult:
    chain: list[ChainLink]
    knowledge: KnowledgeView | None
    siblings: list[str]
    children: list[str]
    state: session_state.SessionState | None = None


@dataclass
class InitAnalysis:
    status: str
    parent_chain: list[ChainLink] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)
    suggested_type: str = "domain"
    message: str = ""


@dataclass
class FileToCreate:
    path: str
    content: str
    type: str = "context"


@dataclass
class FinalizeResult:
    created: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def _timestamp() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _strip_frontmatter(text: str) -> str:
    if not text.startswith("---"):
        return text
    try:
        return frontmatter.loads(text).content
    except Exception:
        return text


def _frontmatter_end(lines: list[str]) -> int | None:
    """Index of the closing delimiter of a leading ``key: value`` block, else None."""
    if not lines or lines[0].rstrip() != "---":
        return None
    has_field = False
    for i, line in enumerate(lines[1:], start=1):
        if line.rstrip() == "---":
            return i if has_field else None
        if _FRONTMATTER_LINE.match(line):
            has_field = True
        elif line.strip() and not (has_field and line[0] in " \t-"):
            return None
    return None


def touch_frontmatter(text: str, timestamp: str | None = None) -> str:
    """Set ``updated`` inside the leading frontmatter block.

    The field is inserted when missing. Text whose leading block is not a
    complete ``key: value`` frontmatter (a bare log opening with an entry
    separator, say) is returned unchanged.
    """
    lines = text.split("\n")
    end = _frontmatter_end(lines)
    if end is None:
        return text
    stamp = f"updated: {timestamp or _timestamp()}"
    for i in range(1, end):
        if _UPDATED_FIELD.match(lines[i]):
            lines[i] = stamp
            break
    else:
        lines.insert(1, stamp)
    return "\n".join(lines)


def render_entry(entry_date: str, title: str, type: str, topics: list[str], body: str) -> str:
    """Format an entry for appending, separator included.

    Body lines that would read back as an entry separator become ``***``.
    """
    body = ENTRY_SEPARATOR.sub("***", body.strip())
    return (
        f"\n---\n\n"
        f"## {entry_date} - {title}\n"
        f"**Type:** {type}\n"
        f"**Topics:** {', '.join(topics)}\n\n"
        f"{body}\n"
    )


def validate_entry(title: str, type: str, topics: list[str]) -> tuple[str, str, list[str]]:
    """Normalize entry fields or raise InvalidInputError naming the bad field."""
    entry_type = (type or "").strip().lower()
    if entry_type not in ENTRY_TYPES:
        raise InvalidInputError(
            "type", f'Invalid type "{type}". Must be one of: {", ".join(ENTRY_TYPES)}'
        )
    clean_topics = [t.strip().lower() for t in topics or [] if t and t.strip()]
    if not clean_topics:
        raise InvalidInputError("topics", "At least one topic is required.")
    clean_title = (title or "").strip()
    if not clean_title:
        raise InvalidInputError("title", "Title must not be empty.")
    if "\n" in clean_title or "\r" in clean_title:
        raise InvalidInputError("title", "Title must be a single line.")
    return clean_title, entry_type, clean_topics


def _chain_link(scope: MemoryScope) -> ChainLink | None:
    try:
        identity = scope.read_identity()
    except OSError as e:
        logger.warning("Cannot read identity of %s: %s", scope.path, e)
        return None
    return ChainLink(
        domain=scope.name,
        path=scope.path,
        title=scope.title(),
        identity=_strip_frontmatter(identity).strip(),
    )


class MemoryStore:
    """Read/write access to the memory scopes of a project tree."""

    def __init__(self, config: StrataConfig | None = None) -> None:
        self.config = config or StrataConfig()

    @property
    def layout(self) -> ScopeLayout:
        return self.config.layout

    # ── File creation ─────────────────────────────────────────

    def create_memory_file(self, path: Path, content: str, file_type: str = "memory") -> Path:
        """Write *content* under a fresh frontmatter header."""
        ts = _timestamp()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            f"---\ncreated: {ts}\nupdated: {ts}\ntype: {file_type}\n---\n\n{content}",
            encoding="utf-8",
        )
        logger.info("Created memory file: %s (%s)", path, file_type)
        return path

    # ── Entry writer ──────────────────────────────────────────

    def append_entry(
        self,
        path: str | Path,
        title: str,
        type: str,
        topics: list[str],
        body: str,
    ) -> AppendResult:
        """Append a knowledge entry to the nearest scope at or above *path*."""
        title, type, topics = validate_entry(title, type, topics)

        scope = find_nearest_scope(path, self.layout)
        if scope is None:
            raise NotInitializedError(
                f"No {self.layout.marker_dir} directory found. Run init first."
            )

        knowledge_path = scope.file("knowledge")
        if not knowledge_path.exists():
            self.create_memory_file(knowledge_path, f"{HEADER_TITLE}\n\n", "knowledge")

        content = touch_frontmatter(knowledge_path.read_text(encoding="utf-8"))
        content += render_entry(date.today().isoformat(), title, type, topics, body)
        knowledge_path.write_text(content, encoding="utf-8")
        logger.info("Appended %s entry %r to %s", type, title, knowledge_path)

        tokens = estimate_tokens(content)
        warning = None
        if tokens > self.config.writer.warn_threshold:
            warning = f"{WARNING_PREFIX}Knowledge is {tokens} tokens. Consider running maintenance soon."
            logger.warning("Knowledge log %s is %d tokens", knowledge_path, tokens)
        return AppendResult(path=knowledge_path, warning=warning)

    def quick_append(self, path: str | Path, content: str, type: str = "context") -> AppendResult:
        """Append with title taken from the first line and topics from #hashtags."""
        first_line = content.strip().split("\n")[0].strip()
        title = first_line
        if len(first_line) > QUICK_TITLE_LIMIT:
            title = first_line[: QUICK_TITLE_LIMIT - 3] + "..."
        topics = [t.lower() for t in _HASHTAG.findall(content)] or [type]
        return self.append_entry(path, title, type, topics, content)

    # ── Context assembly ──────────────────────────────────────

    def gather_context(self, path: str | Path, topic: str | None = None) -> ContextResult:
        """Identity chain, knowledge view, navigation and live session state for *path*."""
        chain = [
            link
            for link in (_chain_link(s) for s in find_ancestor_chain(path, self.layout))
            if link is not None
        ]

        knowledge = None
        scope = find_nearest_scope(path, self.layout)
        if scope is not None:
            knowledge_path = scope.file("knowledge")
            if knowledge_path.is_file():
                parsed = parse_log(knowledge_path.read_text(encoding="utf-8"))
                knowledge = build_view(parsed, self.config.views, topic)

        current = self.read_state(path)
        return ContextResult(
            chain=chain,
            knowledge=knowledge,
            siblings=find_sibling_scopes(path, self.layout),
            children=find_child_scopes(path, self.layout),
            state=current if current and not current.expired else None,
        )

    def orient(self, path: str | Path, already_oriented: bool) -> str:
        """Formatted context for a session's first call; empty once oriented."""
        if already_oriented:
            return ""
        return format_context(self.gather_context(path))

    # ── Initialization ────────────────────────────────────────

    def analyze_init(self, root: str | Path) -> InitAnalysis:
        """Report whether *root* needs a scope and what to ask the user."""
        root = Path(root).resolve()
        if MemoryScope(root, self.layout).has_identity:
            return InitAnalysis(
                status="already_initialized",
                message="Memory already initialized. Load it with context.",
            )

        parents = [
            link
            for link in (_chain_link(s) for s in find_ancestor_chain(root.parent, self.layout))
            if link is not None
        ]
        if any((root / name).exists() for name in CODE_MANIFESTS):
            suggested = "codebase"
            questions = [
                "What is this project and what problem does it solve?",
                "Any coding conventions or rules to follow?",
                "Key technical decisions already made?",
            ]
        else:
            suggested = "domain"
            questions = [
                "What is this domain/area about?",
                "Any rules I should always follow here?",
                "Key stakeholders or contacts?",
            ]
        return InitAnalysis(
            status="needs_input",
            parent_chain=parents,
            questions=questions,
            suggested_type=suggested,
        )

    def init_scope(self, root: str | Path, identity: str, knowledge: str | None = None) -> Path:
        """Create a scope at *root* with its identity file and optional log."""
        if not identity or not identity.strip():
            raise InvalidInputError("identity", "Identity content must not be empty.")
        scope = MemoryScope(Path(root).resolve(), self.layout)
        scope.marker.mkdir(parents=True, exist_ok=True)
        self.create_memory_file(scope.file("identity"), f"{identity.rstrip()}\n", "context")
        if knowledge:
            self.create_memory_file(
                scope.file("knowledge"), f"{HEADER_TITLE}\n\n{knowledge.rstrip()}\n", "knowledge"
            )
        return scope.marker

    def _validate_finalize(self, files: list[FileToCreate]) -> list[str]:
        marker = self.layout.marker_dir
        root_identity = f"{marker}/{self.layout.identity_file}"
        errors = []
        if not any(Path(f.path).as_posix() == root_identity for f in files):
            errors.append(f"Root {root_identity} is required but not included in files")
        for f in files:
            parts = Path(f.path).parts
            if marker not in parts:
                errors.append(f'Invalid path "{f.path}": must be inside a {marker}/ directory')
            if ".." in parts or Path(f.path).is_absolute():
                errors.append(f'Invalid path "{f.path}": path traversal not allowed')
            if not f.path.endswith(".md"):
                errors.append(f'Invalid path "{f.path}": must be a markdown file (.md)')
        return errors

    def init_finalize(self, root: str | Path, files: list[FileToCreate]) -> FinalizeResult:
        """Write the approved scope files under *root*. Nothing is written on validation errors."""
        errors = self._validate_finalize(files)
        if errors:
            return FinalizeResult(errors=errors)
        root = Path(root).resolve()
        result = FinalizeResult()
        for f in files:
            try:
                result.created.append(self.create_memory_file(root / f.path, f.content, f.type))
            except OSError as e:
                result.errors.append(f"Failed to create {f.path}: {e}")
        return result

    # ── Delegates ─────────────────────────────────────────────

    def maintain(self, root: str | Path) -> MaintenanceReport:
        return analyze(root, self.config.maintenance, self.layout)

    def read_state(self, path: str | Path) -> session_state.SessionState | None:
        return session_state.read_state(
            path, self.layout, staleness_hours=self.config.writer.state_staleness_hours
        )

    def write_state(self, path: str | Path, content: str):
        return session_state.write_state(
            path, content, self.layout, token_limit=self.config.writer.state_token_limit
        )

    def clear_state(self, path: str | Path) -> str | None:
        return session_state.clear_state(path, self.layout)


# ── Rendering ────────────────────────────────────────────────


def format_context(result: ContextResult) -> str:
    """Human-readable rendering of a context result."""
    out: list[str] = []

    if result.chain:
        out.append("## Domain Chain\n")
        out.extend(f"- **{link.domain}**: {link.title}" for link in result.chain)
        out.append("")
        deepest = result.chain[-1]
        out.append(f"## Current Context: {deepest.domain}\n")
        out.append(deepest.identity)
        out.append("")

    if result.knowledge:
        out.append(f"## Knowledge ({result.knowledge.mode})\n")
        if result.knowledge.warning:
            out.append(f"> {result.knowledge.warning}\n")
        out.append(result.knowledge.content)
        out.append("")

    if result.state:
        out.append(session_state.format_state(result.state))
        out.append("")

    if result.siblings:
        out.append("## Other Domains\n")
        out.extend(f"- {s}" for s in result.siblings)
        out.append("")

    if result.children:
        out.append("## Subdomains\n")
        out.extend(f"- {c}" for c in result.children)
        out.append("")

    return "\n".join(out).strip()


def session_start_payload(result: ContextResult) -> dict:
    """Payload for a SessionStart hook."""
    return {
        "hookSpecificOutput": {
            "hookEventName": "SessionStart",
            "additionalContext": format_context(result),
        }
    }
