#!/usr/bin/env python3
"""
Ralph Maintenance CLI - inspect and clear the stop-gate state files.

Usage:
    ralph.py status                              - Show each record with its age
    ralph.py reset [loop|pipeline|pending|all]   - Delete records (default: all)
    ralph.py cleanup                             - Prune stale pending entries, drop stale records
"""

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from hooks.agent_logger import load_pending, pending_store  # noqa: E402
from hooks.config import HookConfig, load_config  # noqa: E402
from hooks.state_store import JsonStateStore, utc_now  # noqa: E402
from hooks.tracker import pipeline_store  # noqa: E402
from ralph_loop.state import loop_store  # noqa: E402

RESET_TARGETS = ("loop", "pipeline", "pending", "all")


def print_usage() -> None:
    print(__doc__.strip())


def _stores(config: HookConfig) -> Dict[str, JsonStateStore]:
    return {
        "loop": loop_store(config),
        "pipeline": pipeline_store(config),
        "pending": pending_store(config),
    }


def _format_age(store: JsonStateStore, data: dict, now: datetime) -> str:
    age = store.age(data, now)
    if age is None:
        return "age unknown"
    minutes = int(age.total_seconds() // 60)
    return f"{minutes} min old"


def cmd_status(config: Optional[HookConfig] = None) -> None:
    """Show every state record with its age and staleness."""
    config = config or load_config()
    now = utc_now()
    print(f"State directory: {config.state_dir}")

    for name, store in _stores(config).items():
        data = store.read_raw()
        if data is None:
            print(f"\n[{name}] none")
            continue

        if name == "pending":
            live = load_pending(store, now)
            print(f"\n[{name}] {len(data)} entries, {len(data) - len(live)} stale")
            for task_id, entry in live.items():
                print(f"  {task_id[:8]}  {entry.get('type', '?'):<20} started {entry.get('startTime', '?')}")
            continue

        stale = " (stale)" if store.is_stale(data, now) else ""
        print(f"\n[{name}] {_format_age(store, data, now)}{stale}")
        print(json.dumps(data, indent=2, ensure_ascii=False))


def cmd_reset(target: str = "all", config: Optional[HookConfig] = None) -> list:
    """Delete the named record(s). Returns the names actually removed."""
    if target not in RESET_TARGETS:
        raise ValueError(f"Unknown reset target: {target}")
    config = config or load_config()

    removed = []
    for name, store in _stores(config).items():
        if target in (name, "all") and store.reset():
            removed.append(name)

    print(f"Reset complete: {', '.join(removed) if removed else 'nothing to remove'}")
    return removed


def cmd_cleanup(config: Optional[HookConfig] = None) -> dict:
    """Prune stale pending entries and delete stale loop/pipeline records."""
    config = config or load_config()
    now = utc_now()
    stats = {"pending_pruned": 0, "records_removed": []}

    stores = _stores(config)
    pending = stores.pop("pending")
    raw_pending = pending.read_raw()
    if raw_pending is not None:
        live = load_pending(pending, now)
        stats["pending_pruned"] = len(raw_pending) - len(live)
        if not live:
            pending.reset()
        elif stats["pending_pruned"]:
            pending.save(live)

    for name, store in stores.items():
        data = store.read_raw()
        if data is not None and store.is_stale(data, now) and store.reset():
            stats["records_removed"].append(name)

    removed = ", ".join(stats["records_removed"]) or "none"
    print(f"Cleanup complete: {stats['pending_pruned']} pending entries pruned, stale records removed: {removed}")
    return stats


def main():
    """Main CLI entry point."""
    if len(sys.argv) < 2:
        print_usage()
        sys.exit(1)

    command = sys.argv[1]

    if command == "status":
        cmd_status()

    elif command == "reset":
        target = sys.argv[2] if len(sys.argv) > 2 else "all"
        if target not in RESET_TARGETS:
            print(f"Unknown reset target: {target} (expected {'|'.join(RESET_TARGETS)})", file=sys.stderr)
            sys.exit(1)
        cmd_reset(target)

    elif command == "cleanup":
        cmd_cleanup()

    else:
        print(f"Unknown command: {command}", file=sys.stderr)
        print_usage()
        sys.exit(1)


if __name__ == "__main__":
    main()
