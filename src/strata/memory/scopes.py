"""Scope discovery over the project directory tree.

A scope is any directory holding a marker directory (``.strata/``). Nothing is
indexed: every call walks the filesystem again. Traversal is best effort, so a
directory that cannot be listed is treated as "no match there".
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

SKIP_DIRS = frozenset(
    {
        "node_modules",
        ".git",
        "dist",
        "build",
        "__pycache__",
        ".venv",
        "venv",
        ".next",
        ".nuxt",
        "target",
        ".cargo",
        "vendor",
        "coverage",
    }
)

DEFAULT_MAX_DEPTH = 10

CORE_ROLES = ("identity", "knowledge", "state")


@dataclass(frozen=True)
class ScopeLayout:
    """File names that make up a scope inside its marker directory."""

    marker_dir: str = ".strata"
    identity_file: str = "info.md"
    knowledge_file: str = "knowledge.md"
    state_file: str = "state.md"


DEFAULT_LAYOUT = ScopeLayout()


@dataclass
class MemoryScope:
    """A directory that owns memory files, keyed by logical role."""

    path: Path
    layout: ScopeLayout = field(default=DEFAULT_LAYOUT)

    @property
    def marker(self) -> Path:
        return self.path / self.layout.marker_dir

    @property
    def name(self) -> str:
        return self.path.name or str(self.path)

    @property
    def files(self) -> dict[str, Path]:
        """Role -> path. Core roles are always mapped; ``custom:<stem>`` only if present."""
        roles = {role: self.file(role) for role in CORE_ROLES}
        core = {p.name for p in roles.values()}
        try:
            extras = sorted(self.marker.glob("*.md"))
        except OSError:
            extras = []
        for extra in extras:
            if extra.name not in core:
                roles[f"custom:{extra.stem}"] = extra
        return roles

    def file(self, role: str) -> Path:
        core = {
            "identity": self.layout.identity_file,
            "knowledge": self.layout.knowledge_file,
            "state": self.layout.state_file,
        }
        if role in core:
            return self.marker / core[role]
        return self.files[role]

    @property
    def has_identity(self) -> bool:
        return _is_readable_file(self.file("identity"))

    def read_identity(self) -> str:
        return self.file("identity").read_text(encoding="utf-8")

    def title(self) -> str:
        """First markdown heading of the identity file, else the directory name."""
        try:
            text = self.read_identity()
        except OSError:
            return self.name
        for line in text.splitlines():
            if line.startswith("#"):
                return line.lstrip("#").strip() or self.name
        return self.name


# ── Shared traversal ─────────────────────────────────────────


def _is_readable_file(path: Path) -> bool:
    try:
        return path.is_file() and os.access(path, os.R_OK)
    except OSError:
        return False


def _resolve_dir(target: str | Path) -> Path:
    p = Path(target).expanduser().resolve()
    if p.is_file():
        return p.parent
    return p


def has_marker(directory: Path, layout: ScopeLayout = DEFAULT_LAYOUT) -> bool:
    try:
        return (directory / layout.marker_dir).is_dir()
    except OSError as e:
        logger.debug("Cannot stat marker in %s: %s", directory, e)
        return False


def iter_subdirectories(directory: Path, skip: frozenset[str] = frozenset()) -> Iterator[Path]:
    """Yield non-hidden child directories in name order, skipping *skip* names."""
    try:
        children = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as e:
        logger.debug("Cannot list %s: %s", directory, e)
        return
    for child in children:
        if child.name.startswith(".") or child.name in skip:
            continue
        try:
            if child.is_dir():
                yield child
        except OSError as e:
            logger.debug("Cannot stat %s: %s", child, e)


def walk_directories(
    root: Path,
    predicate: Callable[[Path], bool],
    max_depth: int = DEFAULT_MAX_DEPTH,
    skip: frozenset[str] = SKIP_DIRS,
) -> list[Path]:
    """Depth-bounded walk from *root*; return every directory matching *predicate*."""
    found: list[Path] = []

    def visit(directory: Path, depth: int) -> None:
        if depth > max_depth:
            return
        if predicate(directory):
            found.append(directory)
        for child in iter_subdirectories(directory, skip):
            visit(child, depth + 1)

    visit(root, 0)
    return found


def _iter_ancestors(start: Path) -> Iterator[Path]:
    """Yield *start* and each parent up to the filesystem root."""
    p = start
    while True:
        yield p
        if p == p.parent:
            return
        p = p.parent


# ── Discovery operations ─────────────────────────────────────


def find_ancestor_chain(
    target: str | Path, layout: ScopeLayout = DEFAULT_LAYOUT
) -> list[MemoryScope]:
    """Scopes with a readable identity file from the filesystem root down to *target*."""
    chain: list[MemoryScope] = []
    for directory in _iter_ancestors(_resolve_dir(target)):
        scope = MemoryScope(directory, layout)
        if scope.has_identity:
            chain.append(scope)
    chain.reverse()
    return chain


def find_nearest_scope(
    target: str | Path, layout: ScopeLayout = DEFAULT_LAYOUT
) -> MemoryScope | None:
    """Closest directory at or above *target* holding a marker (identity not required)."""
    for directory in _iter_ancestors(_resolve_dir(target)):
        if has_marker(directory, layout):
            return MemoryScope(directory, layout)
    return None


def find_sibling_scopes(target: str | Path, layout: ScopeLayout = DEFAULT_LAYOUT) -> list[str]:
    directory = _resolve_dir(target)
    if directory == directory.parent:
        return []
    return sorted(
        d.name
        for d in iter_subdirectories(directory.parent)
        if d != directory and has_marker(d, layout)
    )


def find_child_scopes(target: str | Path, layout: ScopeLayout = DEFAULT_LAYOUT) -> list[str]:
    directory = _resolve_dir(target)
    return sorted(d.name for d in iter_subdirectories(directory) if has_marker(d, layout))


def find_all_scopes(
    root: str | Path,
    max_depth: int = DEFAULT_MAX_DEPTH,
    layout: ScopeLayout = DEFAULT_LAYOUT,
) -> list[MemoryScope]:
    """Every scope under *root*, ignoring hidden and build/vendor directories."""
    dirs = walk_directories(
        _resolve_dir(root),
        lambda d: has_marker(d, layout),
        max_depth=max_depth,
        skip=SKIP_DIRS,
    )
    return [MemoryScope(d, layout) for d in sorted(dirs)]
