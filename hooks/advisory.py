"""
Pre-termination advisory pass.

Warns about unfinished work without ever changing the Stop verdict:
- unchecked checkboxes, TODO:/FIXME: notes and in_progress items in the envelope
- failing test/build commands (opt-in via VERIFY_TESTS / VERIFY_BUILD)
"""

import logging
import re
import subprocess
import sys
from dataclasses import dataclass
from typing import List, Optional

from hooks.config import HookConfig
from hooks.envelope import HookEvent

logger = logging.getLogger(__name__)

UNFINISHED_PATTERNS = [
    ("[ ]", re.compile(r"\[ \]")),
    ("TODO:", re.compile(r"TODO:", re.IGNORECASE)),
    ("FIXME:", re.compile(r"FIXME:", re.IGNORECASE)),
    ("in_progress", re.compile(r"in_progress")),
]


@dataclass
class CommandResult:
    command: str
    success: bool
    error: str = ""


def scan_unfinished(content: str) -> List[str]:
    """Pattern counts for unfinished-work markers, e.g. ``TODO:: 2 found``."""
    issues = []
    for label, pattern in UNFINISHED_PATTERNS:
        count = len(pattern.findall(content))
        if count:
            issues.append(f"{label}: {count} found")
    return issues


def run_command(command: str, timeout: int, cwd: Optional[str] = None) -> CommandResult:
    """Run a check command through the shell. Timeouts and launch failures count as failures."""
    if not command.strip():
        return CommandResult(command, False, "empty command")

    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            shell=True,  # chained commands (&&) and npm.cmd on Windows
        )
    except subprocess.TimeoutExpired:
        return CommandResult(command, False, f"timed out after {timeout}s")
    except (FileNotFoundError, OSError) as e:
        return CommandResult(command, False, str(e))

    if result.returncode != 0:
        tail = (result.stderr or result.stdout or "").strip().splitlines()[-1:]
        return CommandResult(command, False, f"exit {result.returncode}" + (f": {tail[0]}" if tail else ""))
    return CommandResult(command, True)


def collect_warnings(event: HookEvent, config: HookConfig) -> List[str]:
    warnings: List[str] = []

    if config.check_todos:
        issues = scan_unfinished(event.content())
        if issues:
            warnings.append("Incomplete work found:")
            warnings.extend(f"  - {issue}" for issue in issues)

    if config.run_tests:
        result = run_command(config.test_command, config.command_timeout, event.cwd)
        if not result.success:
            warnings.append(f"Tests failed: {config.test_command} ({result.error})")

    if config.run_build:
        result = run_command(config.build_command, config.command_timeout, event.cwd)
        if not result.success:
            warnings.append(f"Build failed: {config.build_command} ({result.error})")

    return warnings


def advise(event: HookEvent, config: HookConfig) -> List[str]:
    """Run the advisory pass and print any warnings to stderr."""
    warnings = collect_warnings(event, config)
    if warnings:
        print("\n=== Pre-session termination verification results ===", file=sys.stderr)
        for warning in warnings:
            print(warning, file=sys.stderr)
        print("=" * 52 + "\n", file=sys.stderr)
        logger.info(f"Advisory pass raised {len(warnings)} warning line(s)")
    return warnings
