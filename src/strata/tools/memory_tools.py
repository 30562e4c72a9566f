"""Agent-facing memory tools.

Each function returns a string so it can be registered as an MCP tool or
called from a hook directly. Failures come back as prefixed text rather than
exceptions, since the caller decides what to do next from the response.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from strata.errors import IO_ERROR_PREFIX, InvalidInputError, StrataError
from strata.memory.maintenance import format_report
from strata.memory.state import format_state
from strata.memory.store import FileToCreate, format_context, session_start_payload

if TYPE_CHECKING:
    from strata.memory.store import MemoryStore


def get_memory_tools(store: MemoryStore) -> dict[str, Callable[..., str]]:
    """Return a dict of tool_name -> callable for memory operations.

    These can be registered as MCP tools or called directly.
    """

    def context(path: str = ".", topic: str | None = None, json_output: bool = False) -> str:
        """Load the identity chain and knowledge for a path, optionally filtered by topic."""
        result = store.gather_context(path, topic)
        if json_output:
            return json.dumps(session_start_payload(result), indent=2, ensure_ascii=False)
        return format_context(result) or "(no memory context available)"

    def learn(title: str, type: str, topics: str, content: str, path: str = ".") -> str:
        """Add a knowledge entry. ``topics`` is a comma-separated list."""
        try:
            result = store.append_entry(path, title, type, topics.split(","), content)
        except StrataError as e:
            return e.render()
        except OSError as e:
            return f"{IO_ERROR_PREFIX}{e}"
        output = f'Added entry "{title.strip()}" to {result.path}'
        if result.warning:
            output += f"\n\n{result.warning}"
        return output

    def maintain(path: str = ".") -> str:
        """Analyze every scope under a path and propose cleanup actions."""
        return format_report(store.maintain(path))

    def state(content: str | None = None, status: str | None = None, path: str = ".") -> str:
        """Read (no args), overwrite (content) or clear (status="done") session state."""
        try:
            if status == "done":
                warning = store.clear_state(path)
                return warning or "State cleared."
            if content:
                written, warning = store.write_state(path, content)
                output = f"State saved to {written.path} ({written.token_count} tokens)"
                return f"{output}\n\n{warning}" if warning else output
            if status:
                return InvalidInputError("status", f'expected "done", got "{status}"').render()
            return format_state(store.read_state(path))
        except StrataError as e:
            return e.render()
        except OSError as e:
            return f"{IO_ERROR_PREFIX}{e}"

    def init(path: str = ".", info: str | None = None, knowledge: str | None = None) -> str:
        """Analyze a directory for initialization, or create the scope when ``info`` is given."""
        try:
            if info:
                marker = store.init_scope(path, info, knowledge)
                return f"Memory initialized in {marker}"
        except StrataError as e:
            return e.render()
        except OSError as e:
            return f"{IO_ERROR_PREFIX}{e}"

        analysis = store.analyze_init(path)
        if analysis.status == "already_initialized":
            return analysis.message
        lines = ["# Init Analysis", ""]
        if analysis.parent_chain:
            lines += ["## Parent Context", "", "This location inherits from:"]
            lines += [f"- {link.domain}" for link in analysis.parent_chain]
            lines.append("")
        lines += [f"**Detected type:** {analysis.suggested_type}", "", "## Questions to Answer", ""]
        lines += [f"- {q}" for q in analysis.questions]
        return "\n".join(lines)

    def init_finalize(files: list[dict], path: str = ".") -> str:
        """Create the approved scope files (``path``/``content``/``type`` dicts)."""
        result = store.init_finalize(
            Path(path), [FileToCreate(f["path"], f["content"], f.get("type", "context")) for f in files]
        )
        if not result.success:
            prefix = InvalidInputError.prefix if not result.created else IO_ERROR_PREFIX
            return prefix + "; ".join(result.errors)
        return "Created:\n" + "\n".join(f"- {p}" for p in result.created)

    return {
        "context": context,
        "learn": learn,
        "maintain": maintain,
        "state": state,
        "init": init,
        "init_finalize": init_finalize,
    }
