#!/usr/bin/env python3
"""
Ralph Hook Entry Point - dispatches a hook event to its handler in-process.

Reads stdin (hook input JSON), determines the hook mode from sys.argv[1],
runs the matching handler and exits with its code (0 allow, 1 error, 2 block).

Usage:
    python3 ralph.py stop         # Stop hook (loop -> pipeline -> advisory)
    python3 ralph.py loop         # Stop hook, continuation loop only
    python3 ralph.py verify       # Stop hook, verification pipeline only
    python3 ralph.py track        # PostToolUse hook (Edit|Write|MultiEdit|Task)
    python3 ralph.py agent-log    # PreToolUse + PostToolUse hook (Task)
"""

import logging
import os
import sys
import threading
from pathlib import Path

# Hooks run as plain scripts; make the repo packages importable
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from hooks.agent_logger import handle_agent_log  # noqa: E402
from hooks.config import load_config  # noqa: E402
from hooks.envelope import EXIT_ALLOW, EXIT_ERROR, configure_logging, run_hook  # noqa: E402
from hooks.stop_orchestrator import handle_loop, handle_stop, handle_verify  # noqa: E402
from hooks.tracker import handle_track  # noqa: E402

logger = logging.getLogger("hooks.ralph")

HANDLERS = {
    "stop": handle_stop,
    "loop": handle_loop,
    "verify": handle_verify,
    "track": handle_track,
    "agent-log": handle_agent_log,
}

# ---------------------------------------------------------------------------
# Timeout guard: exit (allow) if stdin or an external command hangs
# ---------------------------------------------------------------------------
_BASE_TIMEOUT = 25  # seconds, plus VERIFY_TIMEOUT per external check
_kill_timer = None


def _setup_timeout(seconds: float = _BASE_TIMEOUT) -> None:
    global _kill_timer

    def timeout_exit():
        logger.warning(f"Hook timed out after {seconds}s, allowing")
        # The host still expects one JSON object on stdout
        sys.stdout.write("{}\n")
        sys.stdout.flush()
        # sys.exit from a timer thread only ends that thread
        os._exit(EXIT_ALLOW)

    _kill_timer = threading.Timer(seconds, timeout_exit)
    _kill_timer.daemon = True
    _kill_timer.start()


def _cancel_timeout() -> None:
    global _kill_timer
    if _kill_timer:
        _kill_timer.cancel()
        _kill_timer = None


def main() -> None:
    if len(sys.argv) < 2:
        print(f"Usage: ralph.py [{'|'.join(HANDLERS)}]", file=sys.stderr)
        sys.exit(EXIT_ERROR)

    mode = sys.argv[1]
    handler = HANDLERS.get(mode)
    if handler is None:
        print(f"Invalid mode: {mode}", file=sys.stderr)
        sys.exit(EXIT_ERROR)

    config = load_config()
    configure_logging(config)
    _setup_timeout(_BASE_TIMEOUT + 2 * config.command_timeout)
    try:
        exit_code = run_hook(handler, config=config)
    finally:
        _cancel_timeout()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
