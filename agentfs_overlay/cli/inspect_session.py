#!/usr/bin/env python3
"""CLI tool for inspecting a session store.

Prints the tracked tool calls, per-tool statistics, or key-value entries
of one session's SQLite store as JSON. Safe to run while the session is
live: the store is opened with the same busy retry as the broker.
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from ..services.store import AgentStore

logger = logging.getLogger(__name__)


async def inspect_store(
    store_path: Path,
    command: str,
    name: Optional[str] = None,
    limit: int = 20,
    prefix: str = "",
) -> Any:
    """
    Read one view of a session store.

    Raises:
        FileNotFoundError: store_path does not exist
    """
    if not store_path.exists():
        raise FileNotFoundError(f"Store not found: {store_path}")

    store = await AgentStore.open(store_path.stem, str(store_path))
    try:
        if command == "calls":
            calls = (
                await store.tools.get_by_name(name, limit)
                if name
                else await store.tools.get_recent(0, limit)
            )
            return [call.model_dump(mode="json") for call in calls]
        if command == "stats":
            return [stat.model_dump() for stat in await store.tools.get_stats()]
        if command == "kv":
            return [entry.model_dump(mode="json") for entry in await store.kv.list(prefix)]
        raise ValueError(f"Unknown command: {command}")
    finally:
        await store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentfs-inspect",
        description="Inspect an AgentFS session store (tool calls, stats, key-value entries)",
    )
    parser.add_argument("--store", required=True, type=Path, help="Path to <session>.db")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    calls = subparsers.add_parser("calls", help="List recent tool calls")
    calls.add_argument("--name", help="Only calls of this tool")
    calls.add_argument("--limit", type=int, default=20, help="Maximum calls (default: 20)")

    subparsers.add_parser("stats", help="Per-tool call statistics")

    kv = subparsers.add_parser("kv", help="List key-value entries")
    kv.add_argument("--prefix", default="", help="Key prefix filter")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        result = asyncio.run(
            inspect_store(
                args.store,
                args.command,
                name=getattr(args, "name", None),
                limit=getattr(args, "limit", 20),
                prefix=getattr(args, "prefix", ""),
            )
        )
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        return 130

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
