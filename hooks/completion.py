"""
Completion detection for the continuation loop.

Decides whether agent output signals that the task is finished. The checks
form an ordered rule table; the first rule that returns a result wins:

1. Todo census      - all todos completed -> complete; any open todo -> incomplete
2. Custom marker    - configured literal (default "COMPLETE")
3. Default patterns - <promise>COMPLETE</promise>, TASK_COMPLETE, [COMPLETE],
                      "task complete", "all tasks ... complete"

An open todo therefore overrides a completion marker elsewhere in the same
content. Content with no signal at all is incomplete ("no signal").
"""

import re
from dataclasses import dataclass
from typing import Optional, Sequence

NO_SIGNAL = "no signal"

# Matches JSON ("status": "x"), escaped JSON inside transcripts (\"status\":\"x\")
# and bare "status: x"
_STATUS_TEMPLATE = r'\\?"?status\\?"?\s*:\s*\\?"?{value}\b'

TODO_STATUS_PATTERNS = {
    "completed": re.compile(_STATUS_TEMPLATE.format(value="completed")),
    "in_progress": re.compile(_STATUS_TEMPLATE.format(value="in_progress")),
    "pending": re.compile(_STATUS_TEMPLATE.format(value="pending")),
}


@dataclass(frozen=True)
class CompletionResult:
    complete: bool
    reason: str


class CompletionRule:
    """One row of the rule table. ``check`` returns None when the rule has no opinion."""

    label = ""

    def check(self, content: str) -> Optional[CompletionResult]:
        raise NotImplementedError


class TodoCensusRule(CompletionRule):
    label = "todo-census"

    def counts(self, content: str) -> dict:
        return {status: len(pattern.findall(content)) for status, pattern in TODO_STATUS_PATTERNS.items()}

    def check(self, content: str) -> Optional[CompletionResult]:
        counts = self.counts(content)
        completed = counts["completed"]
        in_progress = counts["in_progress"]
        pending = counts["pending"]

        if completed > 0 and in_progress == 0 and pending == 0:
            return CompletionResult(True, f"All todos complete ({completed})")

        if completed or in_progress or pending:
            return CompletionResult(
                False,
                f"Todos incomplete - completed: {completed}, "
                f"in_progress: {in_progress}, pending: {pending}",
            )

        return None


class MarkerRule(CompletionRule):
    label = "custom-marker"

    def __init__(self, marker: str):
        self.marker = marker

    def check(self, content: str) -> Optional[CompletionResult]:
        if self.marker and self.marker in content:
            return CompletionResult(True, f'Custom marker "{self.marker}"')
        return None


class PatternRule(CompletionRule):
    def __init__(self, label: str, pattern: str, flags: int = 0):
        self.label = label
        self.pattern = re.compile(pattern, flags)

    def check(self, content: str) -> Optional[CompletionResult]:
        if self.pattern.search(content):
            return CompletionResult(True, f"Text pattern match ({self.label})")
        return None


DEFAULT_PATTERN_RULES: tuple = (
    PatternRule("promise-tag", r"<promise>[\s\S]*?COMPLETE[\s\S]*?</promise>", re.IGNORECASE),
    PatternRule("task-complete-token", r"TASK_COMPLETE"),
    PatternRule("bracket-complete", r"\[COMPLETE\]"),
    PatternRule("task-complete-text", r"task\s*complete", re.IGNORECASE),
    PatternRule("all-tasks-complete", r"all\s*tasks.*complete", re.IGNORECASE),
)


def build_rules(marker: str) -> list:
    """Rule table in priority order."""
    return [TodoCensusRule(), MarkerRule(marker), *DEFAULT_PATTERN_RULES]


def detect(content: str, marker: str = "COMPLETE", rules: Optional[Sequence[CompletionRule]] = None) -> CompletionResult:
    """Run the rule table over one piece of content."""
    if rules is None:
        rules = build_rules(marker)
    for rule in rules:
        result = rule.check(content)
        if result is not None:
            return result
    return CompletionResult(False, NO_SIGNAL)


def detect_any(envelope_content: str, transcript: Optional[str], marker: str = "COMPLETE") -> CompletionResult:
    """Evaluate envelope and transcript independently; complete if either is.

    The envelope's reason is reported when neither source is complete.
    """
    rules = build_rules(marker)
    envelope_result = detect(envelope_content, rules=rules)
    if envelope_result.complete:
        return envelope_result

    if transcript:
        transcript_result = detect(transcript, rules=rules)
        if transcript_result.complete:
            return CompletionResult(True, f"{transcript_result.reason} (transcript)")
        if envelope_result.reason == NO_SIGNAL:
            return transcript_result

    return envelope_result
