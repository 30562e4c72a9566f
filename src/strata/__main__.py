"""Entry point: python -m strata <command> [args]

- context [path] [--topic T] [--json]   Load chain + knowledge (--json: SessionStart hook payload)
- learn TITLE TYPE TOPICS CONTENT [path] Append a knowledge entry
- maintain [path]                       Maintenance report for every scope under path
- state [path] | state set TEXT [path] | state done [path]
- init [path]                           Initialization analysis
"""

from __future__ import annotations

import logging
import sys

from strata.config import load_config

USAGE = """\
Usage: python -m strata <command> [args]
  context [path] [--topic T] [--json]
  learn TITLE TYPE TOPICS CONTENT [path]
  maintain [path]
  state [path] | state set TEXT [path] | state done [path]
  init [path]"""


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _pop_option(args: list[str], name: str) -> str | None:
    if name in args:
        i = args.index(name)
        if i + 1 < len(args):
            value = args[i + 1]
            del args[i : i + 2]
            return value
    return None


def _pop_flag(args: list[str], name: str) -> bool:
    if name in args:
        args.remove(name)
        return True
    return False


def _run(cmd: str, args: list[str]) -> str | None:
    from strata.memory.store import MemoryStore
    from strata.tools.memory_tools import get_memory_tools

    config = load_config()
    _setup_logging(config.log_level)
    tools = get_memory_tools(MemoryStore(config))

    if cmd == "context":
        topic = _pop_option(args, "--topic")
        as_json = _pop_flag(args, "--json")
        return tools["context"](args[0] if args else ".", topic, as_json)
    if cmd == "learn" and len(args) >= 4:
        return tools["learn"](*args[:4], path=args[4] if len(args) > 4 else ".")
    if cmd == "maintain":
        return tools["maintain"](args[0] if args else ".")
    if cmd == "state":
        if args[:1] == ["set"] and len(args) >= 2:
            return tools["state"](content=args[1], path=args[2] if len(args) > 2 else ".")
        if args[:1] == ["done"]:
            return tools["state"](status="done", path=args[1] if len(args) > 1 else ".")
        return tools["state"](path=args[0] if args else ".")
    if cmd == "init":
        return tools["init"](args[0] if args else ".")
    return None


def main() -> None:
    if len(sys.argv) < 2:
        print(USAGE)
        sys.exit(1)

    output = _run(sys.argv[1], sys.argv[2:])
    if output is None:
        print(USAGE)
        sys.exit(1)
    print(output)
    if output.startswith("Error"):
        sys.exit(1)


if __name__ == "__main__":
    main()
