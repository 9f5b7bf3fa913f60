"""
Self-Verification Pipeline (Stop)

Core principle: every output (code, plans) must be reviewed by another agent
before the session may end. Reads the record maintained by hooks/tracker.py:

1. Nothing modified                    -> allow
2. Record from another directory       -> reset, allow
3. Record older than an hour           -> reset, allow
4. Missing verification steps          -> block, listing them
5. All verified                        -> allow, reset (verification consumed)
"""

import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import PurePath
from typing import List, Optional

from hooks.config import HookConfig
from hooks.envelope import Decision, HookEvent
from hooks.tracker import (
    CODE_VERIFICATION_KEYS,
    PLAN_VERIFICATION_KEYS,
    VERIFICATION_KEYS,
    VerificationRecord,
    current_directory,
    pipeline_store,
    same_directory,
)

logger = logging.getLogger(__name__)

# Identifiers that satisfy each specific review requirement
CODE_REVIEW_KEYS = ("codeReviewer", "heimdall")
PLAN_REVIEW_KEYS = ("planReviewer", "loki")

MAX_LISTED_FILES = 3
BOX_WIDTH = 64


@dataclass(frozen=True)
class MissingStep:
    step: str
    reason: str
    agent: str


CODE_REVIEW_MISSING = MissingStep(
    step="code-reviewer (heimdall)",
    reason="Code was modified - another agent must review for quality, bugs, and security",
    agent="heimdall",
)
PLAN_REVIEW_MISSING = MissingStep(
    step="plan-reviewer (loki)",
    reason="Plan was created - another agent must review for flaws and risks",
    agent="loki",
)
ANY_VERIFICATION_MISSING = MissingStep(
    step="any-verifier",
    reason="Significant changes were made without any verification by another agent",
    agent="heimdall or loki",
)


def catch_all_satisfied(record: VerificationRecord, cross_class: bool) -> bool:
    """Whether some verification covers the record's changes at all.

    With ``cross_class`` any recorded verifier counts. Without it the verifier's
    class has to match a modification that happened.
    """
    if cross_class:
        return record.any_verification or record.verified_by(VERIFICATION_KEYS)
    if record.code_modified and record.verified_by(CODE_VERIFICATION_KEYS):
        return True
    if record.plan_created and record.verified_by(PLAN_VERIFICATION_KEYS):
        return True
    return False


def missing_steps(record: VerificationRecord, cross_class: bool = True) -> List[MissingStep]:
    missing: List[MissingStep] = []

    if record.code_modified and not record.verified_by(CODE_REVIEW_KEYS):
        missing.append(CODE_REVIEW_MISSING)

    if record.plan_created and not record.verified_by(PLAN_REVIEW_KEYS):
        missing.append(PLAN_REVIEW_MISSING)

    # Catch-all only when the specific checks found nothing
    if not missing and record.needs_verification and not catch_all_satisfied(record, cross_class):
        missing.append(ANY_VERIFICATION_MISSING)

    return missing


def modified_files_summary(record: VerificationRecord, limit: int = MAX_LISTED_FILES) -> str:
    """First ``limit`` basenames plus a "+N more" suffix."""
    paths = list(dict.fromkeys(record.files_modified + record.plans_modified))
    if not paths:
        return ""
    names = [PurePath(p.replace("\\", "/")).name for p in paths[:limit]]
    summary = ", ".join(names)
    if len(paths) > limit:
        summary += f" (+{len(paths) - limit} more)"
    return summary


def block_reason(missing: List[MissingStep], record: VerificationRecord) -> str:
    agents = ", ".join(step.agent for step in missing)
    lines = [
        f"Self-verification incomplete. Your work needs to be reviewed by another agent ({agents}). "
        "Use Task tool to delegate verification.",
        "Missing verification:",
    ]
    lines.extend(f"- {step.step}: {step.reason}" for step in missing)
    files = modified_files_summary(record)
    if files:
        lines.append(f"Modified files: {files}")
    return "\n".join(lines)


def _box_line(text: str = "") -> str:
    return f"║  {text[:BOX_WIDTH - 2].ljust(BOX_WIDTH - 2)}║"


def print_block_banner(missing: List[MissingStep], record: VerificationRecord) -> None:
    lines = [
        "╔" + "═" * BOX_WIDTH + "╗",
        _box_line("SELF-VERIFICATION REQUIRED - Session termination blocked"),
        "╠" + "═" * BOX_WIDTH + "╣",
        _box_line(),
        _box_line("Core Principle: All outputs must be verified by another agent"),
        _box_line(),
        _box_line("Missing verification:"),
    ]
    for step in missing:
        lines.append(_box_line(f"  ➤ {step.step}"))
        lines.append(_box_line(f"    {step.reason}"))
    files = modified_files_summary(record)
    if files:
        lines.append(_box_line())
        lines.append(_box_line("Modified files:"))
        lines.append(_box_line(f"  {files}"))
    lines.extend([
        _box_line(),
        _box_line("Required action:"),
        _box_line("  Use Task tool to delegate verification to another agent"),
        _box_line('  Example: Task(subagent_type="heimdall", ...)'),
        _box_line(),
        _box_line("Skip (not recommended): PIPELINE_SKIP=true"),
        "╚" + "═" * BOX_WIDTH + "╝",
    ])
    print("\n" + "\n".join(lines) + "\n", file=sys.stderr)


class VerificationPipeline:
    """Stop-event gate over pipeline-state.json."""

    def __init__(self, config: HookConfig):
        self.config = config
        self.store = pipeline_store(config)

    def evaluate(self, event: HookEvent, now: Optional[datetime] = None) -> Decision:
        data = self.store.read_raw()
        if data is None:
            return Decision.allow("nothing to verify")

        record = VerificationRecord.from_dict(data)
        if not record.needs_verification:
            return Decision.allow("nothing to verify")

        cwd = current_directory(event)
        if record.working_directory and not same_directory(record.working_directory, cwd):
            logger.info(f"Pipeline record belongs to {record.working_directory}, resetting")
            self.store.reset()
            return Decision.allow("record from another working directory")

        if self.store.is_stale(data, now):
            logger.info("Pipeline record is stale, resetting")
            self.store.reset()
            return Decision.allow("stale record")

        missing = missing_steps(record, self.config.cross_class_verification)
        if missing:
            print_block_banner(missing, record)
            logger.info(f"Verification pipeline blocked stop: {', '.join(s.step for s in missing)}")
            return Decision.block(block_reason(missing, record))

        print("[VERIFICATION] All outputs verified by another agent. Session can end.", file=sys.stderr)
        self.store.reset()
        return Decision.allow("all outputs verified")
