"""Ephemeral session state for cross-session handoff.

Unlike knowledge, state is overwritten on every write, capped at a small token
budget and expires after 48 hours or as soon as it is marked ``done``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Literal

import frontmatter

from strata.errors import MalformedContentError, NotInitializedError
from strata.memory.scopes import DEFAULT_LAYOUT, ScopeLayout, find_nearest_scope
from strata.memory.tokens import CHARS_PER_TOKEN, estimate_tokens

logger = logging.getLogger(__name__)

StateStatus = Literal["active", "done"]

STATE_TOKEN_LIMIT = 2000
STALENESS_HOURS = 48


@dataclass
class ParsedState:
    status: StateStatus
    updated: str
    body: str


@dataclass
class SessionState:
    content: str
    status: StateStatus
    updated: str
    token_count: int
    expired: bool
    path: Path


def _timestamp() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _as_text(value) -> str:
    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds")
    if isinstance(value, date):
        return value.isoformat()
    return "" if value is None else str(value)


def load_state(text: str) -> ParsedState:
    """Split a state file into frontmatter fields and body.

    Raises MalformedContentError when the frontmatter is missing, unterminated
    or not valid YAML.
    """
    if not text.startswith("---"):
        raise MalformedContentError("state file has no frontmatter")
    try:
        post = frontmatter.loads(text)
    except Exception as e:
        raise MalformedContentError(f"invalid state frontmatter: {e}") from e
    if not post.metadata:
        raise MalformedContentError("state frontmatter is unterminated or empty")

    status = post.metadata.get("status")
    return ParsedState(
        status=status if status in ("active", "done") else "active",
        updated=_as_text(post.metadata.get("updated")),
        body=post.content.strip(),
    )


def parse_state(text: str) -> ParsedState | None:
    """Like load_state, but a malformed file reads as absent."""
    try:
        return load_state(text)
    except MalformedContentError as e:
        logger.debug("Ignoring malformed state file: %s", e)
        return None


def is_state_expired(
    updated: str,
    status: StateStatus,
    now: datetime | None = None,
    staleness_hours: int = STALENESS_HOURS,
) -> bool:
    """True when marked done, undated, unparseable or older than the window."""
    if status == "done" or not updated:
        return True
    try:
        stamp = datetime.fromisoformat(updated.replace("Z", "+00:00"))
    except ValueError:
        return True
    now = now or datetime.now(stamp.tzinfo)
    if (now.tzinfo is None) != (stamp.tzinfo is None):
        now = now.replace(tzinfo=stamp.tzinfo)
    return now - stamp > timedelta(hours=staleness_hours)


def render_state(body: str, updated: str, status: StateStatus = "active") -> str:
    return f"---\nupdated: {updated}\nstatus: {status}\n---\n\n{body}"


def truncate_to_limit(text: str, limit: int = STATE_TOKEN_LIMIT) -> tuple[str, bool]:
    """Trim *text* to *limit* tokens, preferring a newline/space boundary.

    The boundary is only used when it keeps more than 80% of the cut.
    """
    if estimate_tokens(text) <= limit:
        return text, False
    char_limit = limit * CHARS_PER_TOKEN
    cut = text[:char_limit]
    break_point = max(cut.rfind("\n"), cut.rfind(" "))
    if break_point > char_limit * 0.8:
        cut = cut[:break_point]
    return cut, True


def read_state(
    target: str | Path,
    layout: ScopeLayout = DEFAULT_LAYOUT,
    staleness_hours: int = STALENESS_HOURS,
) -> SessionState | None:
    """Current state of the nearest scope, or None if absent or malformed."""
    scope = find_nearest_scope(target, layout)
    if scope is None:
        return None
    path = scope.file("state")
    if not path.is_file():
        return None
    parsed = parse_state(path.read_text(encoding="utf-8"))
    if parsed is None:
        return None
    return SessionState(
        content=parsed.body,
        status=parsed.status,
        updated=parsed.updated,
        token_count=estimate_tokens(parsed.body),
        expired=is_state_expired(parsed.updated, parsed.status, staleness_hours=staleness_hours),
        path=path,
    )


def write_state(
    target: str | Path,
    content: str,
    layout: ScopeLayout = DEFAULT_LAYOUT,
    token_limit: int = STATE_TOKEN_LIMIT,
) -> tuple[SessionState, str | None]:
    """Overwrite the nearest scope's state. Returns the state and an optional warning."""
    scope = find_nearest_scope(target, layout)
    if scope is None:
        raise NotInitializedError(f"No {layout.marker_dir} directory found. Run init first.")

    body, truncated = truncate_to_limit(content, token_limit)
    path = scope.file("state")
    updated = _timestamp()
    path.write_text(render_state(body, updated), encoding="utf-8")
    logger.info("Wrote session state %s (%d tokens)", path, estimate_tokens(body))

    state = SessionState(
        content=body,
        status="active",
        updated=updated,
        token_count=estimate_tokens(body),
        expired=False,
        path=path,
    )
    warning = f"Content truncated to fit {token_limit} token limit." if truncated else None
    return state, warning


def clear_state(target: str | Path, layout: ScopeLayout = DEFAULT_LAYOUT) -> str | None:
    """Delete the nearest scope's state file. Returns a warning if there was none."""
    scope = find_nearest_scope(target, layout)
    if scope is None:
        raise NotInitializedError(f"No {layout.marker_dir} directory found.")
    path = scope.file("state")
    if not path.exists():
        return "No state file to clear."
    path.unlink()
    logger.info("Cleared session state %s", path)
    return None


def format_state(state: SessionState | None) -> str:
    if state is None:
        return "No active state."
    if state.expired:
        return "State expired (stale or marked done)."
    return "\n".join(
        [
            "## Session State",
            f"*Updated: {state.updated} ({state.token_count} tokens)*",
            "",
            state.content,
        ]
    )
