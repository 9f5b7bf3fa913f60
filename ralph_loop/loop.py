"""
Continuation loop ("Ralph").

Blocks session termination and re-injects the task until a completion signal
appears, capped at ``max_iterations``. States:

    Idle (no record) -> Iterating (record, iterations < max) -> Terminated (record deleted)

Transitions, in order:
    1. Disabled                    -> allow, state untouched
    2. stop_hook_active re-entry   -> reset, allow
    3. Load record (stale = fresh)
    4. Completion detected         -> reset, allow
    5. iterations >= max           -> reset, allow (fail-open)
    6. Otherwise                   -> iterations += 1, save, block
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from hooks.completion import CompletionResult, detect_any
from hooks.config import HookConfig
from hooks.envelope import Decision, HookEvent
from ralph_loop.state import load_loop_record, loop_store, reset_loop_record, save_loop_record

logger = logging.getLogger(__name__)


def read_transcript(transcript_path: Optional[str]) -> str:
    """Raw transcript text, or "" when missing or unreadable."""
    if not transcript_path:
        return ""
    try:
        path = Path(transcript_path).expanduser()
        if path.is_file():
            return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Transcript unreadable ({transcript_path}): {e}")
    return ""


def block_reason(iterations: int, config: HookConfig) -> str:
    reason = (
        f"[Ralph Loop {iterations}/{config.max_iterations}] Completion marker not found. "
        f'Please continue work. Output "{config.completion_marker}" when complete.'
    )
    if config.custom_prompt:
        reason += f"\n\nTask instruction: {config.custom_prompt}"
    return reason


class ContinuationLoop:
    """Stop-event state machine over ralph-state.json."""

    def __init__(self, config: HookConfig):
        self.config = config
        self.store = loop_store(config)

    def check_completion(self, event: HookEvent) -> CompletionResult:
        transcript = read_transcript(event.transcript_path)
        return detect_any(event.content(), transcript, self.config.completion_marker)

    def evaluate(self, event: HookEvent, now: Optional[datetime] = None) -> Decision:
        if not self.config.ralph_enabled:
            return Decision.allow("continuation loop disabled")

        if event.stop_hook_active:
            print(
                "\n⚠️  [RALPH LOOP] stop_hook_active detected - allowing termination to prevent infinite loop\n",
                file=sys.stderr,
            )
            reset_loop_record(self.store)
            return Decision.allow("re-entry guard")

        record = load_loop_record(self.store, now)
        result = self.check_completion(event)

        if result.complete:
            print(
                f"\n✅ [RALPH LOOP] Completion detected: {result.reason} "
                f"({record.iterations} iterations)\n",
                file=sys.stderr,
            )
            logger.info(f"Ralph loop complete after {record.iterations} iterations: {result.reason}")
            reset_loop_record(self.store)
            return Decision.allow(result.reason)

        if record.iterations >= self.config.max_iterations:
            print(
                f"\n⚠️  [RALPH LOOP] Maximum iterations ({self.config.max_iterations}) reached\n"
                "   Completion marker not found, but terminating.\n"
                "   Adjust with RALPH_MAX_ITERATIONS environment variable.\n",
                file=sys.stderr,
            )
            logger.warning(f"Ralph loop exhausted at {record.iterations}/{self.config.max_iterations}")
            reset_loop_record(self.store)
            return Decision.allow("max iterations reached")

        record.iterations += 1
        if not save_loop_record(self.store, record, now):
            # An unsaved counter would restart at 1 on every Stop and never hit the cap
            logger.warning(f"Could not persist ralph loop state to {self.store.path}, allowing termination")
            return Decision.allow("loop state not persisted")

        print(
            f"\n🔄 [RALPH LOOP] Iteration {record.iterations}/{self.config.max_iterations}\n"
            f"   {result.reason}\n"
            "   Continuing work...\n",
            file=sys.stderr,
        )
        logger.info(f"Ralph loop blocked stop, iteration {record.iterations}/{self.config.max_iterations}")
        return Decision.block(block_reason(record.iterations, self.config))
